"""Module defining the interface of a client for the remote storage."""

from abc import ABC, abstractmethod
from typing import List, Optional

from cloudmount.storage.common import EntryMetadata, FileChunk


class RemoteStorageClient(ABC):
    """
    Base class for clients that perform operations against the remote storage.

    Every remote operation is a coroutine that either returns its result or raises
    errors.RemoteOperationError with a reason code. Clients don't retry failed calls
    themselves unless their transport does so.

    A client is bound to at most one access token at a time. It is obtained either
    interactively through authorize() or restored from a persisted token through
    set_credential().
    """

    #
    # Authorization
    #

    @abstractmethod
    async def authorize(self) -> None:
        """Obtain a new access token from the remote storage."""

    @abstractmethod
    def set_credential(self, token: str) -> None:
        """Bind the client to a previously obtained access token."""

    @abstractmethod
    def get_credential(self) -> Optional[str]:
        """Return the access token that the client is bound to."""

    @abstractmethod
    async def unauthorize(self) -> None:
        """Revoke the access token that the client is bound to."""

    #
    # Metadata access
    #

    @abstractmethod
    async def list_directory(self, path: str) -> List[EntryMetadata]:
        """List the metadata of all entries in a directory."""

    @abstractmethod
    async def get_metadata(self, path: str) -> EntryMetadata:
        """Retrieve the metadata of a single entry."""

    #
    # File operations
    #

    @abstractmethod
    async def open_file(self, path: str, request_id: int, mode: str) -> None:
        """Open a file for reading or writing on behalf of an open request."""

    @abstractmethod
    async def read_file(self, path: str, offset: int, length: int) -> FileChunk:
        """Read the byte range [offset, offset + length) of a file."""

    @abstractmethod
    async def write_file(
        self, path: str, data: bytes, offset: int, request_id: int
    ) -> None:
        """Write data at an offset in a file opened by the open request."""

    @abstractmethod
    async def close_file(self, path: str, request_id: int) -> None:
        """Release the state of a file opened by the open request."""

    @abstractmethod
    async def truncate(self, path: str, length: int) -> None:
        """Truncate or extend a file to the specified length."""

    @abstractmethod
    async def create_file(self, path: str) -> None:
        """Create a new empty file."""

    #
    # File system structure
    #

    @abstractmethod
    async def create_directory(self, path: str, recursive: bool = False) -> None:
        """Create a directory, including missing parents if recursive."""

    @abstractmethod
    async def delete_entry(self, path: str, recursive: bool = False) -> None:
        """Delete a file or directory, including contents if recursive."""

    @abstractmethod
    async def move_entry(self, source: str, target: str) -> None:
        """Move a file or directory to a new path."""

    @abstractmethod
    async def copy_entry(self, source: str, target: str) -> None:
        """Copy a file or directory to a new path."""

    def close(self) -> None:
        """Release any resources held by the client, like network connections."""
