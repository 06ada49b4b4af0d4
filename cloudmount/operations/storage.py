"""Module that implements serving a local directory as remote storage."""

import contextlib
import os

from cloudmount.logger import log
import cloudmount.rpc as rpc
from cloudmount.storage import LocalStorageService
from .common import Operations


class StorageOperations(Operations):
    """Class that serves a local directory to providers through RPC."""

    def _run(self, stack: contextlib.ExitStack) -> int:
        """Serve the root directory until the process is interrupted."""
        root = self._args.root

        if root is None or not os.path.isdir(root):
            raise RuntimeError(f"storage root {root} is not a directory")

        service = LocalStorageService(root, self._config.storage.secret)

        server = rpc.Server(
            service, token=service.is_authorized, worker_count=self._args.workers
        )

        log.info(f"serving {root} on {self._storage_endpoint}")

        server.serve(self._storage_endpoint)
