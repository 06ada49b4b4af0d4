"""Module with durable key-value storage that survives process restarts."""

from typing import Any, Optional

from cloudmount.host.common import JsonFile
import cloudmount.rpc as rpc


class PersistentStore:
    """
    Durable key-value storage for small JSON-serializable values.

    This is where the session keeps the access token of the mounted account, so that a
    new provider process can resume the session without authorizing again.
    """

    def __init__(self, path: str):
        """Instantiate storage backed by the file at the given path."""
        self._file = JsonFile(path, rpc.Encoding())

    def get(self, key: str) -> Optional[Any]:
        """Retrieve the value for a key, or None if it isn't stored."""
        return self._file.read().get(key)

    def set(self, key: str, value: Any) -> None:
        """Store the value for a key, replacing any previous value."""
        with self._file.update() as items:
            items[key] = value

    def remove(self, key: str) -> None:
        """Remove the value for a key if there is one."""
        with self._file.update() as items:
            items.pop(key, None)
