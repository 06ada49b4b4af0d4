"""Module that keeps track of the files opened by the host."""

from typing import Dict

from cloudmount.errors import HandleNotFoundError, InternalConsistencyError


class HandleTable:
    """
    Mapping of open request ids to the paths of the files they opened.

    The host guarantees that open request ids are unique, so the table only has to
    detect protocol violations: an id that is reused for a different file, or a read,
    write or close for an id that was never opened.

    Closing is idempotent so that an unmount that clears the table can't race with
    in-flight close requests.
    """

    def __init__(self) -> None:
        """Instantiate an empty handle table."""
        self._paths: Dict[int, str] = {}

    def open(self, request_id: int, path: str) -> None:
        """Record that a file was opened by the open request."""
        existing_path = self._paths.setdefault(request_id, path)

        if existing_path != path:
            raise InternalConsistencyError(
                f"request {request_id} already opened {existing_path}, not {path}"
            )

    def lookup(self, request_id: int) -> str:
        """Return the path of the file opened by the open request."""
        try:
            return self._paths[request_id]
        except KeyError:
            raise HandleNotFoundError(request_id) from None

    def close(self, request_id: int) -> None:
        """Forget the file opened by the open request (if it's still known)."""
        self._paths.pop(request_id, None)

    def clear(self) -> None:
        """Forget all opened files."""
        self._paths.clear()

    def __contains__(self, request_id: int) -> bool:
        """Check if the open request has an opened file."""
        return request_id in self._paths

    def __len__(self) -> int:
        """Return the number of opened files."""
        return len(self._paths)
