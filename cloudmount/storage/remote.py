"""Module that implements the remote storage client on top of the RPC transport."""

import asyncio
import errno
import functools
from typing import Any, List, Optional

from cloudmount.errors import RemoteOperationError
import cloudmount.rpc as rpc
from cloudmount.storage.client import RemoteStorageClient
from cloudmount.storage.common import EntryMetadata, FileChunk
from cloudmount.storage.service import LocalStorageService

# Reason codes reported to the host for I/O errors raised by the storage service
_ERRNO_REASONS = {
    errno.ENOENT: "NOT_FOUND",
    errno.EEXIST: "EXISTS",
    errno.EACCES: "ACCESS_DENIED",
    errno.EPERM: "ACCESS_DENIED",
    errno.EISDIR: "NOT_A_FILE",
    errno.ENOTDIR: "NOT_A_DIRECTORY",
    errno.ENOTEMPTY: "NOT_EMPTY",
    errno.EINVAL: "INVALID_OPERATION",
    errno.EBADF: "INVALID_OPERATION",
    errno.ENOSPC: "NO_SPACE",
}


class RpcStorageClient(RemoteStorageClient):
    """
    Client for a storage service exposed through RPC.

    The underlying RPC client is blocking, so every call is made from the default
    executor of the running event loop. The RPC client keeps a socket per thread, which
    means that calls from different tasks can be in flight at the same time.
    """

    def __init__(
        self, endpoint: str, secret: Optional[str] = None, timeout_ms: int = -1
    ) -> None:
        """Instantiate a client for the storage service at the given endpoint."""
        self._client = rpc.Client(LocalStorageService, endpoint, timeout_ms=timeout_ms)
        self._secret = secret

    #
    # Authorization
    #

    async def authorize(self) -> None:
        self._client.token = await self._call("authorize", self._secret)

    def set_credential(self, token: str) -> None:
        self._client.token = token

    def get_credential(self) -> Optional[str]:
        return self._client.token

    async def unauthorize(self) -> None:
        token = self._client.token

        if token is not None:
            await self._call("unauthorize", token)
            self._client.token = None

    #
    # Metadata access
    #

    async def list_directory(self, path: str) -> List[EntryMetadata]:
        return await self._call("list_directory", path)

    async def get_metadata(self, path: str) -> EntryMetadata:
        return await self._call("get_metadata", path)

    #
    # File operations
    #

    async def open_file(self, path: str, request_id: int, mode: str) -> None:
        await self._call("open_file", path, request_id, mode)

    async def read_file(self, path: str, offset: int, length: int) -> FileChunk:
        return await self._call("read_file", path, offset, length)

    async def write_file(
        self, path: str, data: bytes, offset: int, request_id: int
    ) -> None:
        await self._call("write_file", path, data, offset, request_id)

    async def close_file(self, path: str, request_id: int) -> None:
        await self._call("close_file", path, request_id)

    async def truncate(self, path: str, length: int) -> None:
        await self._call("truncate", path, length)

    async def create_file(self, path: str) -> None:
        await self._call("create_file", path)

    #
    # File system structure
    #

    async def create_directory(self, path: str, recursive: bool = False) -> None:
        await self._call("create_directory", path, recursive)

    async def delete_entry(self, path: str, recursive: bool = False) -> None:
        await self._call("delete_entry", path, recursive)

    async def move_entry(self, source: str, target: str) -> None:
        await self._call("move_entry", source, target)

    async def copy_entry(self, source: str, target: str) -> None:
        await self._call("copy_entry", source, target)

    def close(self) -> None:
        self._client.close()

    async def _call(self, function: str, *args: Any) -> Any:
        """Make a blocking RPC call from the executor and translate its errors."""
        loop = asyncio.get_running_loop()
        call = functools.partial(getattr(self._client, function), *args)

        try:
            return await loop.run_in_executor(None, call)
        except rpc.InvalidTokenError as e:
            raise RemoteOperationError("ACCESS_DENIED", str(e)) from e
        except OSError as e:
            raise RemoteOperationError(self._reason(e), str(e)) from e
        except ValueError as e:
            raise RemoteOperationError("INVALID_OPERATION", str(e)) from e
        except Exception as e:
            raise RemoteOperationError("FAILED", str(e)) from e

    @staticmethod
    def _reason(e: OSError) -> str:
        """Determine the reason code for an I/O error."""
        if e.errno is None:
            # Transport failures like timeouts don't have an errno
            return "IO"

        return _ERRNO_REASONS.get(e.errno, "FAILED")
