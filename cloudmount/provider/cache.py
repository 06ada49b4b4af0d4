"""Module that implements the cache of remote file system metadata."""

from dataclasses import dataclass
import posixpath
from typing import Dict, List, Optional, Set, Tuple

from cloudmount.logger import log
from cloudmount.storage.common import EntryMetadata, normalize_path


@dataclass
class CacheEntry:
    """
    Cached knowledge about a single path.

    An entry is resolved if the cache can tell whether the path exists. Unresolved
    entries carry no information and mean that the remote storage has to be asked.
    Resolved entries for existing paths carry the metadata of the path, and directories
    that have been listed themselves also carry their children.
    """

    path: str

    resolved: bool = False
    exists: bool = False
    is_directory: bool = False

    metadata: Optional[EntryMetadata] = None
    children: Optional[List[EntryMetadata]] = None


class MetadataCache:
    """
    Path-keyed cache of directory listings.

    The cache is populated exclusively with directory listings. A listing describes the
    directory itself, which evidently exists, and resolves the existence of all paths
    directly inside of it: a name that's missing from the listing doesn't exist.

    The cache has no notion of freshness. It only reflects the remote state as of the
    last listing, and it's up to the user to remove paths that have been changed. A
    removed path stays unresolved even if the listing of its parent is still cached,
    until that parent is listed again.

    Listings can be in flight while paths are removed. The generation of a directory
    changes whenever a removal may have invalidated its listing, so a listing that was
    requested before such a removal can be recognized and left out of the cache.

    Every operation is a plain dict or set update without suspension points, so the
    cache can be shared by all tasks on an event loop without locking.
    """

    def __init__(self) -> None:
        """Instantiate an empty cache."""
        self._listings: Dict[str, List[EntryMetadata]] = {}
        self._removed: Set[str] = set()

        self._generations: Dict[str, int] = {}
        self._epoch = 0

    def put(self, path: str, listing: List[EntryMetadata]) -> None:
        """Replace the cached listing of a directory."""
        path = normalize_path(path)

        self._listings[path] = list(listing)

        # The listing is authoritative for the directory and its children
        self._removed = {
            p for p in self._removed if p != path and posixpath.dirname(p) != path
        }

    def get(self, path: str) -> CacheEntry:
        """Return everything known about a path."""
        path = normalize_path(path)

        if path in self._removed:
            return CacheEntry(path)

        metadata = self._lookup_in_parent(path)
        children = self._listings.get(path)

        if children is not None:
            return CacheEntry(
                path,
                resolved=True,
                exists=True,
                is_directory=True,
                metadata=metadata or EntryMetadata.directory(path),
                children=list(children),
            )
        elif metadata is not None:
            return CacheEntry(
                path,
                resolved=True,
                exists=True,
                is_directory=metadata.is_directory,
                metadata=metadata,
            )
        elif self._parent_listed(path):
            return CacheEntry(path, resolved=True, exists=False)
        else:
            return CacheEntry(path)

    def remove(self, path: str) -> None:
        """Forget everything about a path and anything beneath it."""
        path = normalize_path(path)
        prefix = path.rstrip("/") + "/"

        stale = [p for p in self._listings if p == path or p.startswith(prefix)]

        for p in stale:
            del self._listings[p]

        self._removed = {p for p in self._removed if not p.startswith(prefix)}
        self._removed.add(path)

        self._bump(path)

        if path != "/":
            self._bump(posixpath.dirname(path))

        log.debug(f"invalidated metadata cache for {path} ({len(stale)} listings)")

    def clear(self) -> None:
        """Forget everything."""
        self._listings.clear()
        self._removed.clear()
        self._generations.clear()
        self._epoch += 1

    def generation(self, path: str) -> Tuple[int, int]:
        """
        Return the generation of a directory listing.

        It changes when the directory, one of its ancestors or one of its direct
        children is removed, and when the cache is cleared.
        """
        path = normalize_path(path)
        total = self._generations.get(path, 0)

        while path != "/":
            path = posixpath.dirname(path)
            total += self._generations.get(path, 0)

        return self._epoch, total

    def __contains__(self, path: str) -> bool:
        """Check if the existence of a path is known."""
        return self.get(path).resolved

    def __len__(self) -> int:
        """Return the number of cached directory listings."""
        return len(self._listings)

    def _bump(self, path: str) -> None:
        self._generations[path] = self._generations.get(path, 0) + 1

    def _parent_listed(self, path: str) -> bool:
        return path != "/" and posixpath.dirname(path) in self._listings

    def _lookup_in_parent(self, path: str) -> Optional[EntryMetadata]:
        """Find the metadata of a path in the cached listing of its parent."""
        if not self._parent_listed(path):
            return None

        name = posixpath.basename(path)

        for metadata in self._listings[posixpath.dirname(path)]:
            if metadata.name == name:
                return metadata

        return None
