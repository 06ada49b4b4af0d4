"""Parameters and results of the file system requests delivered by the host."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List

from cloudmount.constants import FILE_SYSTEM_ID
from cloudmount.storage.common import EntryMetadata, OpenFileMode


class RequestKind(Enum):
    """Kinds of requests, with the RPC function names that the host calls them by."""

    UNMOUNT = "unmount"
    READ_DIRECTORY = "read_directory"
    GET_METADATA = "get_metadata"
    OPEN_FILE = "open_file"
    READ_FILE = "read_file"
    CLOSE_FILE = "close_file"
    CREATE_DIRECTORY = "create_directory"
    DELETE_ENTRY = "delete_entry"
    MOVE_ENTRY = "move_entry"
    COPY_ENTRY = "copy_entry"
    WRITE_FILE = "write_file"
    TRUNCATE = "truncate"
    CREATE_FILE = "create_file"


#
# Requests
#


@dataclass
class UnmountRequest:
    file_system_id: str = FILE_SYSTEM_ID


@dataclass
class ReadDirectoryRequest:
    directory_path: str


@dataclass
class GetMetadataRequest:
    entry_path: str
    thumbnail: bool = False


@dataclass
class OpenFileRequest:
    """
    Request to open a file.

    The request id identifies the opened file in subsequent read, write and close
    requests, where it is called the open request id.
    """

    request_id: int
    file_path: str
    mode: str = OpenFileMode.READ


@dataclass
class ReadFileRequest:
    open_request_id: int
    offset: int
    length: int


@dataclass
class CloseFileRequest:
    open_request_id: int


@dataclass
class CreateDirectoryRequest:
    directory_path: str
    recursive: bool = False


@dataclass
class DeleteEntryRequest:
    entry_path: str
    recursive: bool = False


@dataclass
class MoveEntryRequest:
    source_path: str
    target_path: str


@dataclass
class CopyEntryRequest:
    source_path: str
    target_path: str


@dataclass
class WriteFileRequest:
    open_request_id: int
    offset: int
    data: bytes


@dataclass
class TruncateRequest:
    file_path: str
    length: int


@dataclass
class CreateFileRequest:
    file_path: str


#
# Results
#


@dataclass
class DirectoryListing:
    """
    Entries of a directory.

    Directories are always listed in a single response, so there is never more to come.
    """

    entries: List[EntryMetadata] = field(default_factory=list)
    has_more: bool = False
