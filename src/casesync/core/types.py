"""Shared types for casesync.

This module defines the enums used across the replica, the merge engine
and the status surface.
"""

from __future__ import annotations

from enum import Enum


class SyncStatus(str, Enum):
    """State of the sync orchestrator.

    LOADING is the initial state until the first cycle runs.
    UNCONFIGURED and UNINITIALIZED stay until the user fixes the setup.
    """

    LOADING = "loading"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"
    UNCONFIGURED = "unconfigured"
    UNINITIALIZED = "uninitialized"


class ErrorKind(str, Enum):
    """Classification of sync failures."""

    UNCONFIGURED = "unconfigured"
    UNINITIALIZED = "uninitialized"
    TRANSIENT = "transient"
    PERMISSION = "permission"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


class DocumentState(str, Enum):
    """Device-local state of a case document's binary payload."""

    PENDING_UPLOAD = "pending_upload"
    UPLOADING = "uploading"
    PENDING_DOWNLOAD = "pending_download"
    DOWNLOADING = "downloading"
    SYNCED = "synced"
    ERROR = "error"
