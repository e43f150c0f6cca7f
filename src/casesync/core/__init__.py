"""Core module - Shared configuration, errors, types and record schemas."""

from casesync.core.config import RemoteConfig, SyncSettings
from casesync.core.errors import (
    NotFoundError,
    PermissionDeniedError,
    SyncError,
    TransientError,
    UnconfiguredError,
    UninitializedError,
    UnknownSyncError,
)
from casesync.core.schemas import (
    TABLES,
    AppData,
    CaseDocument,
    SyncRecord,
    parse_graph,
    parse_records,
)
from casesync.core.types import DocumentState, ErrorKind, SyncStatus

__all__ = [
    # Config
    "RemoteConfig",
    "SyncSettings",
    # Errors
    "SyncError",
    "UnconfiguredError",
    "UninitializedError",
    "TransientError",
    "PermissionDeniedError",
    "NotFoundError",
    "UnknownSyncError",
    # Schemas
    "TABLES",
    "AppData",
    "CaseDocument",
    "SyncRecord",
    "parse_graph",
    "parse_records",
    # Types
    "DocumentState",
    "ErrorKind",
    "SyncStatus",
]
