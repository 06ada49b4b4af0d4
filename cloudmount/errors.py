"""
Module defining the errors that are reported back to the host as request outcomes.

Every error carries a reason code that the host translates into its own file system
level error (e.g. "not found" or "access denied"). The exceptions can be sent over the
RPC transport and are reconstructed with their original type on the other side, which
requires that each one can be instantiated again from its args.
"""

from typing import Tuple


class ProviderError(Exception):
    """Base class of errors that terminate a host request."""

    code = "FAILED"


class MountError(ProviderError):
    """Exception raised when the file system could not be mounted."""

    code = "MOUNT_FAILED"


class AlreadyMountedError(MountError):
    """Exception raised when a mount is attempted while one is already registered."""

    code = "ALREADY_MOUNTED"


class AuthorizationFailedError(MountError):
    """Exception raised when the remote storage rejected the authorization."""

    code = "AUTHORIZATION_FAILED"


class MountRegistrationError(MountError):
    """Exception raised when the host refused to register the mount."""

    code = "MOUNT_FAILED"


class ResumeError(ProviderError):
    """Exception raised when a session could not be resumed."""


class CredentialNotFoundError(ResumeError):
    """Exception raised when resuming without a persisted access token."""

    code = "ACCESS_TOKEN_NOT_FOUND"


class HandleNotFoundError(ProviderError):
    """
    Exception raised when a request refers to a file that isn't open.

    This means that a read, write or close arrived without a preceding successful open,
    which is a protocol violation by the host.
    """

    code = "HANDLE_NOT_FOUND"

    def __init__(self, request_id: int) -> None:
        """Instantiate the exception for the unknown open request id."""
        super().__init__(request_id)

        self.request_id = request_id

    def __str__(self) -> str:
        return f"no open file for request {self.request_id}"


class InternalConsistencyError(ProviderError):
    """Exception raised when the adapter state contradicts itself."""

    code = "INTERNAL_CONSISTENCY"


class RemoteOperationError(ProviderError):
    """
    Exception raised when a call to the remote storage failed.

    The reason is passed through to the host as-is.
    """

    def __init__(self, reason: str, detail: str = "") -> None:
        """Instantiate the exception with a reason code and optional description."""
        super().__init__(reason, detail)

        self.reason = reason
        self.detail = detail

    @property  # type: ignore
    def code(self) -> str:  # type: ignore
        return self.reason

    def __str__(self) -> str:
        if self.detail:
            return f"{self.reason}: {self.detail}"
        else:
            return self.reason


# All errors that need to survive a trip over the RPC transport
ALL_ERRORS: Tuple[type, ...] = (
    ProviderError,
    MountError,
    AlreadyMountedError,
    AuthorizationFailedError,
    MountRegistrationError,
    ResumeError,
    CredentialNotFoundError,
    HandleNotFoundError,
    InternalConsistencyError,
    RemoteOperationError,
)
