"""Shared functionality between provider and storage operations."""

from abc import ABC
import contextlib

from cloudmount.args import Arguments
from cloudmount.config import Config


class Operations(ABC):
    """Base class for provider or storage operations logic."""

    def __init__(self, args: Arguments, config: Config):
        """Initialize operations based on command-line arguments and configuration."""
        self._args = args
        self._config = config

    def run(self) -> int:
        """Run the operations and clean up properly in case of errors."""
        with contextlib.ExitStack() as stack:
            return self._run(stack)

        # https://github.com/python/mypy/issues/7726
        assert False, "unreachable"

    def _run(self, stack: contextlib.ExitStack) -> int:
        """Run the actual operations."""
        raise NotImplementedError()

    @property
    def _storage_endpoint(self) -> str:
        """Return the storage endpoint, preferring the one from the command-line."""
        return self._args.storage_endpoint or self._config.storage.endpoint

    @property
    def _host_endpoint(self) -> str:
        """Return the host endpoint, preferring the one from the command-line."""
        return self._args.host_endpoint or self._config.host.endpoint
