"""
Modules that keep the state which the host environment holds on behalf of the provider.

Two pieces of state have to survive restarts of the provider process: the access token
of the mounted account (PersistentStore) and the registration of the mount itself
(MountRegistry). Both are small JSON documents on disk that may be accessed by multiple
processes at the same time, e.g. a "cloudmount unmount" racing with the provider, so
they are always read and written under an inter-process lock.
"""

from .registry import MountInfo, MountRegistry
from .store import PersistentStore

__all__ = [
    "MountInfo",
    "MountRegistry",
    "PersistentStore",
]
