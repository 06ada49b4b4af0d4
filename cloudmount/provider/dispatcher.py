"""Module that handles the file system requests delivered by the host."""

import functools
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from cloudmount.errors import (
    HandleNotFoundError,
    InternalConsistencyError,
    ProviderError,
)
from cloudmount.logger import log, summarize
from cloudmount.provider.cache import MetadataCache
from cloudmount.provider.handles import HandleTable
from cloudmount.provider.requests import (
    CloseFileRequest,
    CopyEntryRequest,
    CreateDirectoryRequest,
    CreateFileRequest,
    DeleteEntryRequest,
    DirectoryListing,
    GetMetadataRequest,
    MoveEntryRequest,
    OpenFileRequest,
    ReadDirectoryRequest,
    ReadFileRequest,
    RequestKind,
    TruncateRequest,
    UnmountRequest,
    WriteFileRequest,
)
from cloudmount.provider.session import SessionManager
from cloudmount.storage.client import RemoteStorageClient
from cloudmount.storage.common import EntryMetadata, FileChunk

Handler = Callable[[Any], Awaitable[Any]]


class Dispatcher:
    """
    Class that implements a handler for every kind of request the host delivers.

    Handlers translate requests into calls to the storage client of the session and
    keep the metadata cache and handle table up to date. A handler either returns the
    result of the request or raises the error it failed with, exactly once. Remote
    failures are passed through as-is without retrying.

    The metadata cache is filled by directory listings and consulted for metadata
    requests. Any change made through the provider removes the affected paths from the
    cache rather than patching them, so the next request fetches them again from the
    remote storage instead of serving stale metadata.

    Handlers run concurrently on the event loop, interleaving at every remote call.
    They only touch the cache and handle table in between remote calls.
    """

    def __init__(
        self,
        session: SessionManager,
        cache: MetadataCache,
        handles: HandleTable,
        unmount_callback: Optional[Callable[[], None]] = None,
    ) -> None:
        """Instantiate a dispatcher for the session, cache and handle table."""
        self._session = session
        self._cache = cache
        self._handles = handles
        self._unmount_callback = unmount_callback

        self._handlers = self.handlers()

    def handlers(self) -> Dict[RequestKind, Handler]:
        """Return the handler for every kind of request, guarded by resume on demand."""
        table: Dict[RequestKind, Handler] = {
            RequestKind.UNMOUNT: self.unmount,
            RequestKind.READ_DIRECTORY: self.read_directory,
            RequestKind.GET_METADATA: self.get_metadata,
            RequestKind.OPEN_FILE: self.open_file,
            RequestKind.READ_FILE: self.read_file,
            RequestKind.CLOSE_FILE: self.close_file,
            RequestKind.CREATE_DIRECTORY: self.create_directory,
            RequestKind.DELETE_ENTRY: self.delete_entry,
            RequestKind.MOVE_ENTRY: self.move_entry,
            RequestKind.COPY_ENTRY: self.copy_entry,
            RequestKind.WRITE_FILE: self.write_file,
            RequestKind.TRUNCATE: self.truncate,
            RequestKind.CREATE_FILE: self.create_file,
        }

        return {kind: self._guarded(kind, handler) for kind, handler in table.items()}

    async def dispatch(self, kind: RequestKind, request: Any) -> Any:
        """Handle a single request of the specified kind."""
        return await self._handlers[kind](request)

    def _guarded(self, kind: RequestKind, handler: Handler) -> Handler:
        """
        Wrap a handler to resume the session before handling a request if needed.

        If the session can't be resumed then the request fails with that error and the
        handler is never invoked.
        """

        @functools.wraps(handler)
        async def guarded(request: Any) -> Any:
            t_start = time.time()

            try:
                if self._session.client is None:
                    await self._session.resume()

                result = await handler(request)
            except (HandleNotFoundError, InternalConsistencyError) as e:
                log.error(f"{kind.value}: {summarize(request)} violated protocol: {e}")
                raise
            except ProviderError as e:
                log.debug(f"{kind.value}: {summarize(request)} failed: {e.code} ({e})")
                raise

            # Explicit check before logging because summarize is relatively slow
            if log.isEnabledFor(logging.DEBUG):
                t_millis = round((time.time() - t_start) * 1000)
                log.debug(f"{kind.value}: {summarize(request)} - {t_millis} ms")

            return result

        return guarded

    @property
    def _client(self) -> RemoteStorageClient:
        """Return the storage client of the (resumed) session."""
        client = self._session.client

        if client is None:
            raise InternalConsistencyError("session has no storage client")

        return client

    #
    # Lifecycle
    #

    async def unmount(self, request: UnmountRequest) -> None:
        """Unmount the file system and forget all open files and cached metadata."""
        await self._session.unmount()

        self._handles.clear()
        self._cache.clear()

        if self._unmount_callback is not None:
            self._unmount_callback()

    #
    # Metadata access
    #

    async def read_directory(self, request: ReadDirectoryRequest) -> DirectoryListing:
        """
        List a directory and cache the listing.

        The listing is not cached if a path it covers was changed while it was being
        fetched, since it may predate that change.
        """
        generation = self._cache.generation(request.directory_path)

        entries = await self._client.list_directory(request.directory_path)

        if self._cache.generation(request.directory_path) == generation:
            self._cache.put(request.directory_path, entries)
        else:
            log.debug(f"not caching listing of {request.directory_path} (changed)")

        return DirectoryListing(entries=entries, has_more=False)

    async def get_metadata(self, request: GetMetadataRequest) -> EntryMetadata:
        """
        Retrieve the metadata of an entry from the cache or else the remote storage.

        Only known existing entries are served from the cache. Metadata fetched from the
        remote storage is not cached, since the cache only holds directory listings.
        """
        entry = self._cache.get(request.entry_path)

        if entry.resolved and entry.exists and entry.metadata is not None:
            return entry.metadata

        return await self._client.get_metadata(request.entry_path)

    #
    # File operations
    #

    async def open_file(self, request: OpenFileRequest) -> None:
        """Open a file and record the handle once the remote storage has opened it."""
        await self._client.open_file(
            request.file_path, request.request_id, request.mode
        )

        self._handles.open(request.request_id, request.file_path)

    async def read_file(self, request: ReadFileRequest) -> FileChunk:
        """Read a range of bytes from an opened file."""
        path = self._handles.lookup(request.open_request_id)

        return await self._client.read_file(path, request.offset, request.length)

    async def write_file(self, request: WriteFileRequest) -> None:
        """Write data to an opened file."""
        path = self._handles.lookup(request.open_request_id)

        await self._client.write_file(
            path, request.data, request.offset, request.open_request_id
        )

        self._cache.remove(path)

    async def close_file(self, request: CloseFileRequest) -> None:
        """Close an opened file, forgetting the handle only if that succeeded."""
        path = self._handles.lookup(request.open_request_id)

        await self._client.close_file(path, request.open_request_id)

        self._handles.close(request.open_request_id)

    async def truncate(self, request: TruncateRequest) -> bool:
        """Truncate a file, which never has more results to report."""
        await self._client.truncate(request.file_path, request.length)

        self._cache.remove(request.file_path)

        return False

    async def create_file(self, request: CreateFileRequest) -> None:
        """Create an empty file."""
        await self._client.create_file(request.file_path)

        # A metadata request may have found that the file didn't exist yet
        self._cache.remove(request.file_path)

    #
    # File system structure
    #

    async def create_directory(self, request: CreateDirectoryRequest) -> None:
        """Create a directory."""
        await self._client.create_directory(request.directory_path, request.recursive)

    async def delete_entry(self, request: DeleteEntryRequest) -> None:
        """Delete a file or directory."""
        await self._client.delete_entry(request.entry_path, request.recursive)

        self._cache.remove(request.entry_path)

    async def move_entry(self, request: MoveEntryRequest) -> None:
        """Move an entry, which changes both the source and the target path."""
        await self._client.move_entry(request.source_path, request.target_path)

        self._cache.remove(request.source_path)
        self._cache.remove(request.target_path)

    async def copy_entry(self, request: CopyEntryRequest) -> None:
        """Copy an entry to a new path."""
        await self._client.copy_entry(request.source_path, request.target_path)

        self._cache.remove(request.source_path)
        self._cache.remove(request.target_path)
