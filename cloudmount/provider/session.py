"""Module that manages the mount and authorization lifecycle of the provider."""

import asyncio
from dataclasses import dataclass
from enum import auto, Enum
from typing import Callable, Optional

from cloudmount.constants import ACCESS_TOKEN_KEY, FILE_SYSTEM_ID, FILE_SYSTEM_NAME
from cloudmount.errors import (
    AlreadyMountedError,
    AuthorizationFailedError,
    CredentialNotFoundError,
    RemoteOperationError,
)
from cloudmount.host import MountInfo, MountRegistry, PersistentStore
from cloudmount.logger import log
from cloudmount.storage.client import RemoteStorageClient


class Phase(Enum):
    """Lifecycle phase of a session."""

    UNMOUNTED = auto()
    AUTHORIZING = auto()
    MOUNTED = auto()
    SUSPENDED = auto()


@dataclass
class Session:
    """The storage client that requests are made with, and the lifecycle phase."""

    client: Optional[RemoteStorageClient] = None
    phase: Phase = Phase.UNMOUNTED


class SessionManager:
    """
    Class that owns the session and takes it through its lifecycle.

        UNMOUNTED --mount()--> MOUNTED --unmount()--> UNMOUNTED
        UNMOUNTED --resume()--> MOUNTED --suspend()--> SUSPENDED --resume()--> MOUNTED

    Mounting authorizes a new client with the remote storage (passing through the
    transient AUTHORIZING phase), registers the file system with the host, and
    persists the access token. The token is what allows a later process, or this one
    after suspend(), to resume the session without authorizing again.

    Mounting and unmounting are serialized. Resuming has no suspension points, so
    concurrent requests that all find the session without a client resume it once.
    """

    def __init__(
        self,
        client_factory: Callable[[], RemoteStorageClient],
        registry: MountRegistry,
        store: PersistentStore,
        file_system_id: str = FILE_SYSTEM_ID,
        display_name: str = FILE_SYSTEM_NAME,
    ) -> None:
        """Instantiate an unmounted session."""
        self._client_factory = client_factory
        self._registry = registry
        self._store = store

        self.file_system_id = file_system_id
        self.display_name = display_name

        self._session = Session()
        self._lifecycle_lock = asyncio.Lock()

    @property
    def client(self) -> Optional[RemoteStorageClient]:
        """Return the active storage client, if any."""
        return self._session.client

    @property
    def phase(self) -> Phase:
        """Return the current lifecycle phase."""
        return self._session.phase

    async def mount(self) -> None:
        """
        Authorize with the remote storage and mount the file system.

        Fails if the host already has a file system mounted under our identifier. If
        the host refuses the mount after a successful authorization, or the access token
        can't be persisted, then the mount is rolled back and the newly authorized
        client is discarded again.
        """
        async with self._lifecycle_lock:
            if self._registry.is_mounted(self.file_system_id):
                raise AlreadyMountedError(f"{self.file_system_id} is already mounted")

            self._session.phase = Phase.AUTHORIZING
            client = self._client_factory()

            try:
                await client.authorize()
            except RemoteOperationError as e:
                log.error(f"authorization failed: {e}")
                client.close()
                self._session.phase = Phase.UNMOUNTED
                raise AuthorizationFailedError(str(e)) from e

            self._session.client = client
            registered = False

            try:
                self._registry.mount(
                    MountInfo(
                        file_system_id=self.file_system_id,
                        display_name=self.display_name,
                        writable=True,
                    )
                )
                registered = True

                self._store.set(ACCESS_TOKEN_KEY, client.get_credential())
            except Exception:
                self._reset(Phase.UNMOUNTED)

                # A mount without a persisted token can never be resumed
                if registered:
                    self._registry.unmount(self.file_system_id)

                raise

            self._session.phase = Phase.MOUNTED

        log.info(f"mounted {self.file_system_id}")

    async def resume(self) -> None:
        """
        Restore a client from the persisted access token, if there's no client yet.

        No authorization takes place, so a revoked or expired token only shows up as
        failures of the remote operations made with it.
        """
        if self._session.client is not None:
            return

        token = self._store.get(ACCESS_TOKEN_KEY)

        if token is None:
            raise CredentialNotFoundError("no access token has been persisted")

        client = self._client_factory()
        client.set_credential(token)

        self._session.client = client
        self._session.phase = Phase.MOUNTED

        log.info(f"resumed session for {self.file_system_id}")

    async def unmount(self) -> None:
        """
        Revoke the authorization and unmount the file system.

        Revoking is best effort. The host mount and the persisted access token are
        always removed, so that the host is never left with a mount that can't be used.
        """
        async with self._lifecycle_lock:
            client = self._session.client

            if client is not None:
                try:
                    await client.unauthorize()
                except Exception as e:
                    log.warning(f"failed to revoke authorization: {e}")
            else:
                log.warning("unmounting without a client, authorization not revoked")

            self._registry.unmount(self.file_system_id)
            self._store.remove(ACCESS_TOKEN_KEY)

            self._reset(Phase.UNMOUNTED)

        log.info(f"unmounted {self.file_system_id}")

    def suspend(self) -> None:
        """
        Drop the client but keep the mount and the persisted access token.

        Used when the provider process shuts down while still mounted, so that the next
        request (possibly in a new process) resumes the session.
        """
        if self._session.client is None:
            return

        self._reset(Phase.SUSPENDED)

        log.info(f"suspended session for {self.file_system_id}")

    def _reset(self, phase: Phase) -> None:
        """Discard the client and move to the specified phase."""
        client = self._session.client
        self._session.client = None
        self._session.phase = phase

        if client is not None:
            client.close()
