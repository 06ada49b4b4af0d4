"""Module that keeps track of the file systems that are mounted with the host."""

from dataclasses import dataclass
from typing import List

from cloudmount.errors import MountRegistrationError
from cloudmount.host.common import JsonFile
from cloudmount.logger import log
import cloudmount.rpc as rpc


@dataclass
class MountInfo:
    """Registration of a mounted file system."""

    file_system_id: str
    display_name: str
    writable: bool = True


class MountRegistry:
    """
    Registry of mounted file systems, keyed by file system identifier.

    At most one file system can be registered per identifier.
    """

    def __init__(self, path: str):
        """Instantiate a registry backed by the file at the given path."""
        self._file = JsonFile(path, rpc.Encoding(MountInfo))

    def list_mounts(self) -> List[MountInfo]:
        """Return all registered file systems."""
        return list(self._file.read().values())

    def is_mounted(self, file_system_id: str) -> bool:
        """Check if a file system with the given identifier is registered."""
        return any(m.file_system_id == file_system_id for m in self.list_mounts())

    def mount(self, info: MountInfo) -> None:
        """Register a file system, failing if its identifier is already in use."""
        try:
            with self._file.update() as mounts:
                if info.file_system_id in mounts:
                    raise MountRegistrationError(
                        f"{info.file_system_id} is already registered"
                    )

                mounts[info.file_system_id] = info
        except OSError as e:
            raise MountRegistrationError(f"failed to register mount: {e}") from e

        log.info(f"registered mount {info.file_system_id}")

    def unmount(self, file_system_id: str) -> None:
        """Remove the registration of a file system if there is one."""
        with self._file.update() as mounts:
            mounts.pop(file_system_id, None)

        log.info(f"removed mount {file_system_id}")
