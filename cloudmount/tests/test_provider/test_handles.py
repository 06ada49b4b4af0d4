import pytest

from cloudmount.errors import HandleNotFoundError, InternalConsistencyError
from cloudmount.provider.handles import HandleTable


def test_open_lookup():
    handles = HandleTable()

    handles.open(1, "/a.txt")

    assert handles.lookup(1) == "/a.txt"
    assert 1 in handles
    assert len(handles) == 1


def test_lookup_unknown():
    handles = HandleTable()

    with pytest.raises(HandleNotFoundError) as e:
        handles.lookup(42)

    assert e.value.request_id == 42
    assert e.value.code == "HANDLE_NOT_FOUND"


def test_close_then_lookup():
    handles = HandleTable()

    handles.open(1, "/a.txt")
    handles.close(1)

    assert 1 not in handles

    with pytest.raises(HandleNotFoundError):
        handles.lookup(1)


def test_close_idempotent():
    handles = HandleTable()

    handles.open(1, "/a.txt")
    handles.close(1)
    handles.close(1)
    handles.close(2)

    assert len(handles) == 0


def test_reopen_same_path():
    handles = HandleTable()

    handles.open(1, "/a.txt")
    handles.open(1, "/a.txt")

    assert handles.lookup(1) == "/a.txt"


def test_reuse_for_different_path():
    handles = HandleTable()

    handles.open(1, "/a.txt")

    with pytest.raises(InternalConsistencyError):
        handles.open(1, "/b.txt")

    assert handles.lookup(1) == "/a.txt"


def test_distinct_handles():
    handles = HandleTable()

    handles.open(1, "/a.txt")
    handles.open(2, "/a.txt")
    handles.open(3, "/b.txt")

    handles.close(2)

    assert handles.lookup(1) == "/a.txt"
    assert handles.lookup(3) == "/b.txt"


def test_clear():
    handles = HandleTable()

    handles.open(1, "/a.txt")
    handles.open(2, "/b.txt")
    handles.clear()

    assert len(handles) == 0
