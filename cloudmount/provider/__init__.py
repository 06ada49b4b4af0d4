"""
Modules that implement the file system provider: the adapter between host and storage.

The host delivers file system operations as separate requests: list a directory, get
the metadata of an entry, open a file, read a chunk of it, and so on. The provider
translates each of those into calls to the remote storage and answers every request
exactly once, either with its result or with the error it failed with.

This involves a bit more than forwarding calls:

* Session management
    * The provider authorizes with the remote storage when the file system is mounted
    and persists the resulting access token.
    * The provider process may be restarted at any time while the file system stays
    mounted. The first request that arrives afterwards resumes the session from the
    persisted token.
* Open files
    * Reads, writes and closes refer to a file by the id of the request that opened it,
    so the provider keeps track of which path every open request refers to.
* Metadata caching
    * Hosts tend to ask for the metadata of every entry in a directory right after
    listing it, which would cost a round trip per entry. Listings are therefore cached
    and used to answer those metadata requests.
    * Every change made through the provider removes the affected paths from the cache.
    The remote storage doesn't guarantee fresh metadata right after a change, so the
    paths are fetched again when they're next needed rather than patched up locally.

Requests are handled concurrently on a single asyncio event loop. A request that waits
on the remote storage doesn't hold up others, like metadata requests that arrive while
a large file is being read.
"""

from .cache import CacheEntry, MetadataCache
from .dispatcher import Dispatcher
from .handles import HandleTable
from .session import Phase, SessionManager

__all__ = [
    "CacheEntry",
    "Dispatcher",
    "HandleTable",
    "MetadataCache",
    "Phase",
    "SessionManager",
]
