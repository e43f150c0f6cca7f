"""Exception hierarchy for sync failures.

Every exception carries an ErrorKind. The orchestrator uses the kind to
decide whether a failure aborts the cycle and which status it ends in.
"""

from __future__ import annotations

from casesync.core.types import ErrorKind


class SyncError(Exception):
    """Base exception for sync errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnconfiguredError(SyncError):
    """No remote endpoint is configured."""

    kind = ErrorKind.UNCONFIGURED


class UninitializedError(SyncError):
    """The remote schema or one of its tables is missing."""

    kind = ErrorKind.UNINITIALIZED


class TransientError(SyncError):
    """Network failure, timeout, rate limiting or a 5xx response."""

    kind = ErrorKind.TRANSIENT


class PermissionDeniedError(SyncError):
    """The remote service refused the request."""

    kind = ErrorKind.PERMISSION


class NotFoundError(SyncError):
    """A binary object does not exist in remote storage."""


class UnknownSyncError(SyncError):
    """A failure that matches no other kind."""


REMEDIATION = {
    ErrorKind.UNCONFIGURED: (
        "No remote service is configured. Run 'casesync configure' "
        "with the service URL and API key."
    ),
    ErrorKind.UNINITIALIZED: (
        "The remote database is missing its tables. Apply the database "
        "setup script on the remote service, then sync again."
    ),
}
