"""Utilities for JSON documents on disk shared between processes."""

from contextlib import contextmanager
import os
import tempfile
from typing import Any, Callable, Iterator

import fasteners

import cloudmount.rpc as rpc


class JsonFile:
    """
    JSON document on disk that is read and updated under an inter-process lock.

    Updates are written to a temporary file first and then renamed over the document,
    so that readers never observe a partially written document.
    """

    def __init__(
        self, path: str, encoding: rpc.Encoding, default: Callable[[], Any] = dict
    ):
        """Instantiate access to the document at the given path."""
        self._path = path
        self._encoding = encoding
        self._default = default

    @property
    def path(self) -> str:
        """Return the path to the document."""
        return self._path

    @property
    def _lock_path(self) -> str:
        """Return the path to the lock file of the document."""
        return self._path + ".lock"

    def read(self) -> Any:
        """Read the current contents of the document."""
        with self._lock():
            return self._read()

    @contextmanager
    def update(self) -> Iterator[Any]:
        """Read the document for modification and write it back afterwards."""
        with self._lock():
            contents = self._read()
            yield contents
            self._write(contents)

    def _lock(self) -> fasteners.InterProcessLock:
        os.makedirs(os.path.dirname(self._path) or ".", exist_ok=True)
        return fasteners.InterProcessLock(self._lock_path)

    def _read(self) -> Any:
        try:
            with open(self._path, "r") as f:
                return self._encoding.load_json(f)
        except FileNotFoundError:
            return self._default()

    def _write(self, contents: Any) -> None:
        fd, tmp_path = tempfile.mkstemp(
            dir=os.path.dirname(self._path) or ".", prefix=".tmp"
        )

        try:
            with os.fdopen(fd, "w") as f:
                self._encoding.dump_json(contents, f)

            os.replace(tmp_path, self._path)
        except BaseException:
            os.unlink(tmp_path)
            raise
