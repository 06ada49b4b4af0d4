"""Module that implements the provider side of cloudmount."""

import asyncio
import contextlib
import signal

from cloudmount.errors import ALL_ERRORS, CredentialNotFoundError
from cloudmount.host import MountRegistry, PersistentStore
from cloudmount.logger import log
from cloudmount.provider import Dispatcher, HandleTable, MetadataCache, SessionManager
import cloudmount.rpc as rpc
from cloudmount.storage import RemoteStorageClient, RpcStorageClient
from .common import Operations


class ProviderOperations(Operations):
    """
    Class that mounts, serves or unmounts the file system.

    Serving ends when the file system is unmounted through a host request or when the
    process receives SIGINT or SIGTERM. In the latter case the file system stays
    mounted and the session is merely suspended, so that a new provider process can
    pick it up again.
    """

    def _run(self, stack: contextlib.ExitStack) -> int:
        """Run the command on a new event loop."""
        session = SessionManager(
            self._create_client,
            MountRegistry(self._config.state.registry_path),
            PersistentStore(self._config.state.store_path),
        )

        if self._args.command == "unmount":
            asyncio.run(self._unmount(session))
        else:
            asyncio.run(self._serve(session, self._args.command == "mount"))

        return 0

    def _create_client(self) -> RemoteStorageClient:
        """Create a new client for the configured storage service."""
        return RpcStorageClient(
            self._storage_endpoint,
            secret=self._config.storage.secret,
            timeout_ms=self._args.timeout or self._config.storage.timeout,
        )

    @staticmethod
    async def _unmount(session: SessionManager) -> None:
        """Unmount the file system and revoke the persisted access token, if any."""
        try:
            await session.resume()
        except CredentialNotFoundError:
            log.warning("no access token persisted, unmounting without revoking it")

        await session.unmount()

    async def _serve(self, session: SessionManager, mount: bool) -> None:
        """Handle host requests until unmounted or stopped by a signal."""
        stopped = asyncio.Event()

        dispatcher = Dispatcher(
            session, MetadataCache(), HandleTable(), unmount_callback=stopped.set
        )

        if mount:
            await session.mount()

        server = rpc.AsyncServer(
            {kind.value: handler for kind, handler in dispatcher.handlers().items()},
            token=self._config.host.token,
            exceptions=ALL_ERRORS,
        )

        loop = asyncio.get_running_loop()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stopped.set)

        serving = asyncio.create_task(server.serve(self._host_endpoint))
        waiting = asyncio.create_task(stopped.wait())

        log.info(f"serving host requests on {self._host_endpoint}")

        try:
            await asyncio.wait(
                [serving, waiting], return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiting.cancel()
            serving.cancel()

            # Re-raises the error if serving failed rather than being cancelled
            with contextlib.suppress(asyncio.CancelledError):
                await serving

            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)

            session.suspend()
