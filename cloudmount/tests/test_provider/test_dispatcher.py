import asyncio
import logging
from unittest import mock

import pytest

from cloudmount.constants import ACCESS_TOKEN_KEY
from cloudmount.errors import (
    CredentialNotFoundError,
    HandleNotFoundError,
    InternalConsistencyError,
    RemoteOperationError,
)
from cloudmount.host import MountRegistry, PersistentStore
from cloudmount.provider import Dispatcher, HandleTable, MetadataCache, SessionManager
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
from cloudmount.storage.client import RemoteStorageClient
from cloudmount.storage.common import EntryMetadata, FileChunk, OpenFileMode


@pytest.fixture
def client():
    client = mock.MagicMock(spec=RemoteStorageClient)
    client.get_credential.return_value = "token"
    return client


@pytest.fixture
def store(tmp_path):
    store = PersistentStore(str(tmp_path / "storage.json"))
    store.set(ACCESS_TOKEN_KEY, "token")
    return store


@pytest.fixture
def session(tmp_path, client, store):
    registry = MountRegistry(str(tmp_path / "mounts.json"))
    return SessionManager(lambda: client, registry, store)


@pytest.fixture
def cache():
    return MetadataCache()


@pytest.fixture
def handles():
    return HandleTable()


@pytest.fixture
def dispatcher(session, cache, handles):
    return Dispatcher(session, cache, handles)


def dispatch(dispatcher, kind, request):
    return asyncio.run(dispatcher.dispatch(kind, request))


def test_handler_for_every_request_kind(dispatcher):
    handlers = dispatcher.handlers()

    assert set(handlers) == set(RequestKind)
    assert handlers[RequestKind.READ_FILE].__name__ == "read_file"


#
# Resume on demand
#


def test_resume_on_first_request(dispatcher, session, client):
    client.list_directory.return_value = []

    dispatch(dispatcher, RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/"))

    client.set_credential.assert_called_once_with("token")
    assert session.client is client


def test_resume_once(dispatcher, client):
    client.list_directory.return_value = []

    dispatch(dispatcher, RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/"))
    dispatch(dispatcher, RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/"))

    assert client.set_credential.call_count == 1


def test_resume_failure_fails_request(dispatcher, client, store):
    store.remove(ACCESS_TOKEN_KEY)

    for kind, request in [
        (RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/")),
        (RequestKind.GET_METADATA, GetMetadataRequest("/a")),
        (RequestKind.OPEN_FILE, OpenFileRequest(1, "/a")),
        (RequestKind.CREATE_FILE, CreateFileRequest("/a")),
        (RequestKind.DELETE_ENTRY, DeleteEntryRequest("/a")),
    ]:
        with pytest.raises(CredentialNotFoundError):
            dispatch(dispatcher, kind, request)

    client.list_directory.assert_not_awaited()
    client.get_metadata.assert_not_awaited()
    client.open_file.assert_not_awaited()
    client.create_file.assert_not_awaited()
    client.delete_entry.assert_not_awaited()


def test_concurrent_requests_resume_once(dispatcher, client):
    client.get_metadata.return_value = EntryMetadata("a", False)

    async def run():
        return await asyncio.gather(
            *[
                dispatcher.dispatch(RequestKind.GET_METADATA, GetMetadataRequest("/a"))
                for _ in range(5)
            ]
        )

    results = asyncio.run(run())

    assert results == [EntryMetadata("a", False)] * 5
    assert client.set_credential.call_count == 1


#
# Metadata access
#


def test_read_directory(dispatcher, client, cache):
    listing = [EntryMetadata("a.txt", False, size=3), EntryMetadata("sub", True)]
    client.list_directory.return_value = listing

    result = dispatch(
        dispatcher, RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/dir")
    )

    assert result == DirectoryListing(entries=listing, has_more=False)
    client.list_directory.assert_awaited_once_with("/dir")
    assert cache.get("/dir").children == listing


def test_read_directory_failure(dispatcher, client, cache):
    client.list_directory.side_effect = RemoteOperationError("NOT_FOUND")

    with pytest.raises(RemoteOperationError) as e:
        dispatch(dispatcher, RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/dir"))

    assert e.value.code == "NOT_FOUND"
    assert "/dir" not in cache


def test_get_metadata_of_listed_directory_from_cache(dispatcher, client):
    client.list_directory.return_value = [EntryMetadata("a.txt", False)]

    dispatch(dispatcher, RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/dir"))
    result = dispatch(dispatcher, RequestKind.GET_METADATA, GetMetadataRequest("/dir"))

    assert result == EntryMetadata("dir", True)
    client.get_metadata.assert_not_awaited()


def test_get_metadata_of_listed_child_from_cache(dispatcher, client):
    a = EntryMetadata("a.txt", False, size=3, modification_time=1.0)
    client.list_directory.return_value = [a]

    dispatch(dispatcher, RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/dir"))
    result = dispatch(
        dispatcher, RequestKind.GET_METADATA, GetMetadataRequest("/dir/a.txt")
    )

    assert result == a
    client.get_metadata.assert_not_awaited()


def test_get_metadata_uncached(dispatcher, client, cache):
    a = EntryMetadata("a.txt", False, size=3)
    client.get_metadata.return_value = a

    result = dispatch(
        dispatcher, RequestKind.GET_METADATA, GetMetadataRequest("/a.txt")
    )

    assert result == a
    client.get_metadata.assert_awaited_once_with("/a.txt")

    # Single fetches don't populate the cache
    assert "/a.txt" not in cache


def test_get_metadata_of_missing_child_asks_remote(dispatcher, client):
    client.list_directory.return_value = []
    client.get_metadata.side_effect = RemoteOperationError("NOT_FOUND")

    dispatch(dispatcher, RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/dir"))

    with pytest.raises(RemoteOperationError) as e:
        dispatch(dispatcher, RequestKind.GET_METADATA, GetMetadataRequest("/dir/b"))

    assert e.value.code == "NOT_FOUND"
    client.get_metadata.assert_awaited_once_with("/dir/b")


#
# File operations
#


def test_open_read_close(dispatcher, client, handles):
    client.read_file.return_value = FileChunk(data=b"0123456789", has_more=True)

    dispatch(dispatcher, RequestKind.OPEN_FILE, OpenFileRequest(1, "/a.txt"))
    client.open_file.assert_awaited_once_with("/a.txt", 1, OpenFileMode.READ)
    assert handles.lookup(1) == "/a.txt"

    chunk = dispatch(dispatcher, RequestKind.READ_FILE, ReadFileRequest(1, 0, 10))
    assert chunk == FileChunk(data=b"0123456789", has_more=True)
    client.read_file.assert_awaited_once_with("/a.txt", 0, 10)

    dispatch(dispatcher, RequestKind.CLOSE_FILE, CloseFileRequest(1))
    client.close_file.assert_awaited_once_with("/a.txt", 1)
    assert 1 not in handles

    with pytest.raises(HandleNotFoundError):
        dispatch(dispatcher, RequestKind.READ_FILE, ReadFileRequest(1, 0, 10))

    assert client.read_file.await_count == 1


def test_open_failure_records_no_handle(dispatcher, client, handles):
    client.open_file.side_effect = RemoteOperationError("NOT_FOUND")

    with pytest.raises(RemoteOperationError):
        dispatch(dispatcher, RequestKind.OPEN_FILE, OpenFileRequest(1, "/a.txt"))

    assert 1 not in handles


def test_open_reused_request_id(dispatcher, handles):
    dispatch(dispatcher, RequestKind.OPEN_FILE, OpenFileRequest(1, "/a.txt"))

    with pytest.raises(InternalConsistencyError):
        dispatch(dispatcher, RequestKind.OPEN_FILE, OpenFileRequest(1, "/b.txt"))

    assert handles.lookup(1) == "/a.txt"


def test_unopened_handle_is_protocol_violation(dispatcher, client, caplog):
    caplog.set_level(logging.ERROR, logger="cloudmount")

    for kind, request in [
        (RequestKind.READ_FILE, ReadFileRequest(9, 0, 10)),
        (RequestKind.WRITE_FILE, WriteFileRequest(9, 0, b"abc")),
        (RequestKind.CLOSE_FILE, CloseFileRequest(9)),
    ]:
        with pytest.raises(HandleNotFoundError):
            dispatch(dispatcher, kind, request)

    assert "violated protocol" in caplog.text
    client.read_file.assert_not_awaited()
    client.write_file.assert_not_awaited()
    client.close_file.assert_not_awaited()


def test_close_failure_keeps_handle(dispatcher, client, handles):
    client.close_file.side_effect = RemoteOperationError("IO")

    dispatch(dispatcher, RequestKind.OPEN_FILE, OpenFileRequest(1, "/a.txt"))

    with pytest.raises(RemoteOperationError):
        dispatch(dispatcher, RequestKind.CLOSE_FILE, CloseFileRequest(1))

    assert handles.lookup(1) == "/a.txt"


def test_write_file(dispatcher, client, cache):
    client.list_directory.return_value = [EntryMetadata("a.txt", False, size=0)]

    dispatch(dispatcher, RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/"))
    dispatch(
        dispatcher,
        RequestKind.OPEN_FILE,
        OpenFileRequest(2, "/a.txt", mode=OpenFileMode.WRITE),
    )
    dispatch(dispatcher, RequestKind.WRITE_FILE, WriteFileRequest(2, 5, b"abc"))

    client.open_file.assert_awaited_once_with("/a.txt", 2, OpenFileMode.WRITE)
    client.write_file.assert_awaited_once_with("/a.txt", b"abc", 5, 2)

    # The size in the cached listing is stale now
    assert "/a.txt" not in cache
    assert "/" in cache


def test_truncate(dispatcher, client, cache):
    client.list_directory.return_value = [EntryMetadata("a.txt", False, size=10)]

    dispatch(dispatcher, RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/"))
    result = dispatch(dispatcher, RequestKind.TRUNCATE, TruncateRequest("/a.txt", 4))

    assert result is False
    client.truncate.assert_awaited_once_with("/a.txt", 4)
    assert "/a.txt" not in cache


def test_create_file_forgets_nonexistence(dispatcher, client, cache):
    client.list_directory.return_value = []

    dispatch(dispatcher, RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/"))
    assert cache.get("/new.txt").resolved

    dispatch(dispatcher, RequestKind.CREATE_FILE, CreateFileRequest("/new.txt"))

    client.create_file.assert_awaited_once_with("/new.txt")
    assert "/new.txt" not in cache


#
# File system structure
#


def test_create_directory(dispatcher, client, cache):
    client.list_directory.return_value = []

    dispatch(dispatcher, RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/"))
    dispatch(
        dispatcher,
        RequestKind.CREATE_DIRECTORY,
        CreateDirectoryRequest("/a/b", recursive=True),
    )

    client.create_directory.assert_awaited_once_with("/a/b", True)
    assert len(cache) == 1


def test_delete_entry(dispatcher, client, cache):
    client.list_directory.return_value = [EntryMetadata("sub", True)]

    dispatch(dispatcher, RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/"))
    dispatch(dispatcher, RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/sub"))
    dispatch(
        dispatcher, RequestKind.DELETE_ENTRY, DeleteEntryRequest("/sub", recursive=True)
    )

    client.delete_entry.assert_awaited_once_with("/sub", True)
    assert "/sub" not in cache
    assert "/" in cache


def test_delete_failure_keeps_cache(dispatcher, client, cache):
    client.list_directory.return_value = []
    client.delete_entry.side_effect = RemoteOperationError("NOT_EMPTY")

    dispatch(dispatcher, RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/dir"))

    with pytest.raises(RemoteOperationError) as e:
        dispatch(dispatcher, RequestKind.DELETE_ENTRY, DeleteEntryRequest("/dir"))

    assert e.value.code == "NOT_EMPTY"
    assert "/dir" in cache


def test_move_entry(dispatcher, client, cache):
    client.list_directory.return_value = [EntryMetadata("a", False)]

    dispatch(dispatcher, RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/"))
    assert "/a" in cache and "/b" in cache

    dispatch(dispatcher, RequestKind.MOVE_ENTRY, MoveEntryRequest("/a", "/b"))

    client.move_entry.assert_awaited_once_with("/a", "/b")
    assert "/a" not in cache
    assert "/b" not in cache

    # Metadata is fetched again
    client.get_metadata.return_value = EntryMetadata("b", False)
    dispatch(dispatcher, RequestKind.GET_METADATA, GetMetadataRequest("/b"))
    client.get_metadata.assert_awaited_once_with("/b")


def test_copy_entry(dispatcher, client, cache):
    client.list_directory.return_value = [EntryMetadata("a", False)]

    dispatch(dispatcher, RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/"))
    dispatch(dispatcher, RequestKind.COPY_ENTRY, CopyEntryRequest("/a", "/b"))

    client.copy_entry.assert_awaited_once_with("/a", "/b")
    assert "/a" not in cache
    assert "/b" not in cache


#
# Interleaved requests
#


@pytest.mark.parametrize(
    "kind,request_",
    [
        (RequestKind.DELETE_ENTRY, DeleteEntryRequest("/d/f")),
        (RequestKind.MOVE_ENTRY, MoveEntryRequest("/d/f", "/d/g")),
        (RequestKind.COPY_ENTRY, CopyEntryRequest("/d/f", "/d/g")),
    ],
)
def test_listing_during_change_not_cached(dispatcher, client, cache, kind, request_):
    client.get_metadata.return_value = EntryMetadata("f", False, size=4)

    async def run():
        listing_started = asyncio.Event()
        listing_released = asyncio.Event()

        async def list_directory(path):
            listing_started.set()
            await listing_released.wait()
            return [EntryMetadata("f", False, size=3)]

        client.list_directory.side_effect = list_directory

        listing = asyncio.create_task(
            dispatcher.dispatch(RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/d"))
        )
        await listing_started.wait()

        await dispatcher.dispatch(kind, request_)

        listing_released.set()
        result = await listing

        metadata = await dispatcher.dispatch(
            RequestKind.GET_METADATA, GetMetadataRequest("/d/f")
        )

        return result, metadata

    result, metadata = asyncio.run(run())

    # The host still gets the listing it asked for
    assert [entry.name for entry in result.entries] == ["f"]

    assert "/d" not in cache
    assert metadata.size == 4
    client.get_metadata.assert_awaited_once_with("/d/f")


def test_listing_during_unrelated_change_cached(dispatcher, client, cache):
    async def run():
        listing_started = asyncio.Event()
        listing_released = asyncio.Event()

        async def list_directory(path):
            listing_started.set()
            await listing_released.wait()
            return [EntryMetadata("f", False)]

        client.list_directory.side_effect = list_directory

        listing = asyncio.create_task(
            dispatcher.dispatch(RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/d"))
        )
        await listing_started.wait()

        await dispatcher.dispatch(
            RequestKind.DELETE_ENTRY, DeleteEntryRequest("/other/f")
        )

        listing_released.set()
        await listing

    asyncio.run(run())

    assert "/d/f" in cache


def test_reads_on_different_handles_interleave(dispatcher, client, handles):
    async def run():
        read_started = asyncio.Event()
        read_released = asyncio.Event()

        async def read_file(path, offset, length):
            if path == "/one" and not read_released.is_set():
                read_started.set()
                await read_released.wait()

            return FileChunk(path.encode(), False)

        client.read_file.side_effect = read_file

        await dispatcher.dispatch(RequestKind.OPEN_FILE, OpenFileRequest(1, "/one"))

        first = asyncio.create_task(
            dispatcher.dispatch(RequestKind.READ_FILE, ReadFileRequest(1, 0, 10))
        )
        await read_started.wait()

        # The second file is opened, read and closed while the first read is blocked
        await dispatcher.dispatch(RequestKind.OPEN_FILE, OpenFileRequest(2, "/two"))
        second = await dispatcher.dispatch(
            RequestKind.READ_FILE, ReadFileRequest(2, 0, 10)
        )
        await dispatcher.dispatch(RequestKind.CLOSE_FILE, CloseFileRequest(2))

        assert 1 in handles
        assert 2 not in handles

        read_released.set()

        first_chunk = await first
        again = await dispatcher.dispatch(
            RequestKind.READ_FILE, ReadFileRequest(1, 0, 10)
        )
        await dispatcher.dispatch(RequestKind.CLOSE_FILE, CloseFileRequest(1))

        return first_chunk, second, again

    first, second, again = asyncio.run(run())

    assert first == FileChunk(b"/one", False)
    assert second == FileChunk(b"/two", False)
    assert again == FileChunk(b"/one", False)
    assert len(handles) == 0

    client.close_file.assert_any_await("/two", 2)
    client.close_file.assert_any_await("/one", 1)


#
# Lifecycle
#


def test_unmount(session, client, cache, handles, store):
    unmounted = mock.Mock()
    dispatcher = Dispatcher(session, cache, handles, unmount_callback=unmounted)

    client.list_directory.return_value = []

    dispatch(dispatcher, RequestKind.READ_DIRECTORY, ReadDirectoryRequest("/"))
    dispatch(dispatcher, RequestKind.OPEN_FILE, OpenFileRequest(1, "/a.txt"))
    dispatch(dispatcher, RequestKind.UNMOUNT, UnmountRequest())

    client.unauthorize.assert_awaited_once()
    assert unmounted.called
    assert session.client is None
    assert store.get(ACCESS_TOKEN_KEY) is None
    assert len(cache) == 0
    assert len(handles) == 0


def test_unmount_without_credential(dispatcher, store):
    store.remove(ACCESS_TOKEN_KEY)

    with pytest.raises(CredentialNotFoundError):
        dispatch(dispatcher, RequestKind.UNMOUNT, UnmountRequest())
