"""Offline-first synchronization of the office data.

Architecture:
    OfficeData (mutation) → AutoSyncScheduler → SyncOrchestrator
        → DeletionTracker (push) → RemoteDataSource (fetch)
        → transcoder + merge → AttachmentPipeline → commit

Components:
- **SyncOrchestrator**: Runs one cycle at a time and owns the status
- **DeletionTracker**: Pending local deletions until acknowledged
- **AttachmentPipeline**: Document payload upload, download and retention
- **AutoSyncScheduler**: Start, debounce and reconnection triggers
- **domain**: Pure transcoding, merge and document state rules

All public symbols are re-exported here.
"""

from casesync.client.sync.attachments import AttachmentPipeline, UploadBatch
from casesync.client.sync.deletions import DELETION_ORDER, DeletionTracker
from casesync.client.sync.orchestrator import (
    FETCH_ORDER,
    UPSERT_ORDER,
    SyncOrchestrator,
)
from casesync.client.sync.retry import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_BACKOFF,
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT,
    NETWORK_CHECK_INTERVAL,
    call_with_timeout,
    retry_with_backoff,
    wait_for_network,
)
from casesync.client.sync.scheduler import AutoSyncScheduler
from casesync.client.sync.types import (
    TOMBSTONE_TABLE,
    CycleStats,
    DeletedIds,
    DocumentCallback,
    RemoteDataSource,
    StatusCallback,
    Tombstone,
)

__all__ = [
    # Orchestration
    "SyncOrchestrator",
    "AutoSyncScheduler",
    "FETCH_ORDER",
    "UPSERT_ORDER",
    # Deletions
    "DeletionTracker",
    "DELETION_ORDER",
    # Attachments
    "AttachmentPipeline",
    "UploadBatch",
    # Retry
    "DEFAULT_BACKOFF_MULTIPLIER",
    "DEFAULT_INITIAL_BACKOFF",
    "DEFAULT_MAX_BACKOFF",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_TIMEOUT",
    "NETWORK_CHECK_INTERVAL",
    "call_with_timeout",
    "retry_with_backoff",
    "wait_for_network",
    # Types
    "TOMBSTONE_TABLE",
    "CycleStats",
    "DeletedIds",
    "DocumentCallback",
    "RemoteDataSource",
    "StatusCallback",
    "Tombstone",
]
