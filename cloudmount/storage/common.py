"""Data structures shared by the storage backend, its clients and the provider."""

from __future__ import annotations

from dataclasses import dataclass
import mimetypes
import os
import posixpath
import stat
from typing import Optional


class OpenFileMode:
    """Access modes that a file can be opened with."""

    READ = "READ"
    WRITE = "WRITE"

    ALL = (READ, WRITE)


@dataclass
class EntryMetadata:
    """
    Metadata of a single file system entry in the remote storage.

    The modification time is in seconds since the epoch and may be unknown. The root
    directory has an empty name.
    """

    name: str
    is_directory: bool
    size: int = 0
    modification_time: Optional[float] = None
    mime_type: Optional[str] = None

    @staticmethod
    def from_stat(name: str, st: os.stat_result) -> EntryMetadata:
        """Instantiate from the attributes contained within an os.stat_result object."""
        if stat.S_ISDIR(st.st_mode):
            return EntryMetadata(
                name=name, is_directory=True, modification_time=st.st_mtime
            )

        return EntryMetadata(
            name=name,
            is_directory=False,
            size=st.st_size,
            modification_time=st.st_mtime,
            mime_type=mimetypes.guess_type(name)[0],
        )

    @staticmethod
    def directory(path: str) -> EntryMetadata:
        """Describe a directory of which nothing but its existence is known."""
        return EntryMetadata(name=posixpath.basename(path), is_directory=True)


@dataclass
class FileChunk:
    """Chunk of file data along with whether more data follows it."""

    data: bytes
    has_more: bool


def normalize_path(path: str) -> str:
    """Turn a path into its canonical absolute form, e.g. "a//b/" into "/a/b"."""
    normalized = posixpath.normpath("/" + path)

    # POSIX allows exactly two leading slashes to be preserved
    if normalized.startswith("//"):
        normalized = normalized[1:]

    return normalized
