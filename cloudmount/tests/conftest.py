"""Module with fixtures shared by the tests."""

import pytest


@pytest.fixture
def endpoint(tmp_path):
    """Return an ipc endpoint that is unique to the test."""
    return f"ipc://{tmp_path}/rpc.sock"
