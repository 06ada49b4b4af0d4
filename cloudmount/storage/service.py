"""Module that exposes a local directory as remote storage through an RPC service."""

import errno
import hmac
import os
import os.path
import secrets
import shutil
import stat
import threading
from typing import Dict, List, Optional, Set, Tuple

from cloudmount.logger import log
from cloudmount.storage.common import (
    EntryMetadata,
    FileChunk,
    normalize_path,
    OpenFileMode,
)


class LocalStorageService:
    """
    RPC service that serves the contents of a local directory as cloud storage.

    Paths are interpreted relative to the root directory and can't escape it. Access
    tokens are issued by authorize() in exchange for the shared secret (if one is
    configured) and are only valid for the lifetime of the service. The server should
    use is_authorized() as its token check.

    Files opened for writing are kept open per open request until they're closed, while
    reads always work on the file by path.
    """

    PUBLIC_FUNCTIONS = ("authorize",)

    def __init__(self, root: str, secret: Optional[str] = None):
        """Instantiate the service for the given root directory."""
        self._root = os.path.realpath(root)
        self._secret = secret

        self._lock = threading.Lock()
        self._tokens: Set[str] = set()
        self._open_files: Dict[Tuple[str, int], int] = {}

    #
    # Authorization
    #

    def authorize(self, secret: Optional[str]) -> str:
        """Issue a new access token if the secret matches."""
        if self._secret is not None and not hmac.compare_digest(
            secret or "", self._secret
        ):
            raise PermissionError(errno.EACCES, "invalid secret")

        token = secrets.token_hex(32)

        with self._lock:
            self._tokens.add(token)

        log.info("issued new access token")

        return token

    def unauthorize(self, token: str) -> None:
        """Revoke an access token."""
        with self._lock:
            self._tokens.discard(token)

    def is_authorized(self, token: Optional[str]) -> bool:
        """Check if a token is a currently valid access token."""
        with self._lock:
            return token in self._tokens

    #
    # Metadata access
    #

    def list_directory(self, path: str) -> List[EntryMetadata]:
        with os.scandir(self._resolve(path)) as it:
            entries = [EntryMetadata.from_stat(e.name, e.stat()) for e in it]

        return sorted(entries, key=lambda e: e.name)

    def get_metadata(self, path: str) -> EntryMetadata:
        name = os.path.basename(normalize_path(path))
        return EntryMetadata.from_stat(name, os.stat(self._resolve(path)))

    #
    # File operations
    #

    def open_file(self, path: str, request_id: int, mode: str) -> None:
        if mode == OpenFileMode.READ:
            flags = os.O_RDONLY
        elif mode == OpenFileMode.WRITE:
            flags = os.O_WRONLY
        else:
            raise ValueError(f"invalid open mode {mode}")

        fd = os.open(self._resolve(path), flags)

        if stat.S_ISDIR(os.fstat(fd).st_mode):
            os.close(fd)
            raise IsADirectoryError(errno.EISDIR, os.strerror(errno.EISDIR))

        with self._lock:
            previous_fd = self._open_files.get(self._session_key(path, request_id))
            self._open_files[self._session_key(path, request_id)] = fd

        if previous_fd is not None:
            os.close(previous_fd)

    def read_file(self, path: str, offset: int, length: int) -> FileChunk:
        fd = os.open(self._resolve(path), os.O_RDONLY)

        try:
            data = os.pread(fd, length, offset)
            size = os.fstat(fd).st_size
        finally:
            os.close(fd)

        return FileChunk(data=data, has_more=offset + len(data) < size)

    def write_file(self, path: str, data: bytes, offset: int, request_id: int) -> None:
        os.pwrite(self._session_fd(path, request_id), data, offset)

    def close_file(self, path: str, request_id: int) -> None:
        with self._lock:
            fd = self._open_files.pop(self._session_key(path, request_id), None)

        if fd is None:
            raise OSError(errno.EBADF, os.strerror(errno.EBADF))

        os.close(fd)

    def truncate(self, path: str, length: int) -> None:
        os.truncate(self._resolve(path), length)

    def create_file(self, path: str) -> None:
        fd = os.open(self._resolve(path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o666)
        os.close(fd)

    #
    # File system structure
    #

    def create_directory(self, path: str, recursive: bool = False) -> None:
        if recursive:
            os.makedirs(self._resolve(path))
        else:
            os.mkdir(self._resolve(path))

    def delete_entry(self, path: str, recursive: bool = False) -> None:
        resolved = self._resolve(path)

        if resolved == self._root:
            raise PermissionError(errno.EPERM, "can't delete the root directory")

        if os.path.isdir(resolved) and not os.path.islink(resolved):
            if recursive:
                shutil.rmtree(resolved)
            else:
                os.rmdir(resolved)
        else:
            os.unlink(resolved)

    def move_entry(self, source: str, target: str) -> None:
        resolved_target = self._check_target(target)
        os.rename(self._resolve(source), resolved_target)

    def copy_entry(self, source: str, target: str) -> None:
        resolved_source = self._resolve(source)
        resolved_target = self._check_target(target)

        if os.path.isdir(resolved_source):
            shutil.copytree(resolved_source, resolved_target, symlinks=True)
        else:
            shutil.copy2(resolved_source, resolved_target)

    #
    # Helpers
    #

    def _resolve(self, path: str) -> str:
        """Map a storage path onto the local file system."""
        return os.path.normpath(
            os.path.join(self._root, normalize_path(path).lstrip("/"))
        )

    def _check_target(self, target: str) -> str:
        """Resolve the target of a move or copy, which may not exist yet."""
        resolved = self._resolve(target)

        if os.path.lexists(resolved):
            raise FileExistsError(errno.EEXIST, os.strerror(errno.EEXIST))

        return resolved

    @staticmethod
    def _session_key(path: str, request_id: int) -> Tuple[str, int]:
        return (normalize_path(path), request_id)

    def _session_fd(self, path: str, request_id: int) -> int:
        """Return the file descriptor of a file opened by an open request."""
        with self._lock:
            fd = self._open_files.get(self._session_key(path, request_id))

        if fd is None:
            raise OSError(errno.EBADF, os.strerror(errno.EBADF))

        return fd
