"""
Modules that provide access to the remote storage that is exposed as a file system.

The provider only depends on the abstract RemoteStorageClient, which describes all of
the operations it needs from a cloud storage backend: authorization, directory listings,
metadata, reading and writing of files, and structural changes like moving and copying.

cloudmount ships with one backend: a storage service that serves a local directory over
the RPC transport (LocalStorageService), together with the client that talks to it
(RpcStorageClient). Besides being useful for testing, it shows what a backend has to
implement. Access tokens are issued by the service in exchange for a shared secret and
are presented with every call.
"""

from .client import RemoteStorageClient
from .common import EntryMetadata, FileChunk, OpenFileMode
from .remote import RpcStorageClient
from .service import LocalStorageService

__all__ = [
    "EntryMetadata",
    "FileChunk",
    "LocalStorageService",
    "OpenFileMode",
    "RemoteStorageClient",
    "RpcStorageClient",
]
