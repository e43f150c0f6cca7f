"""Domain modules for sync business rules.

This package centralizes business logic for the sync system:
- transcoder: Nested graph <-> flat table conversion
- merge: Record-level last-writer-wins merge with tombstones
- documents: Document payload state machine

Architecture:
    domain/ contains pure business logic without external dependencies.
    Remote calls and persistence stay in the orchestrator and pipelines.
"""

from casesync.client.sync.domain.documents import (
    VALID_TRANSITIONS,
    InvalidTransitionError,
    can_transition,
    settle,
    transition,
)
from casesync.client.sync.domain.merge import (
    MergeResult,
    contain_orphans,
    index_tombstones,
    merge,
    merge_table,
)
from casesync.client.sync.domain.transcoder import (
    FlatData,
    empty_flat,
    flatten,
    reconstruct,
)

__all__ = [
    # transcoder
    "FlatData",
    "empty_flat",
    "flatten",
    "reconstruct",
    # merge
    "MergeResult",
    "merge",
    "merge_table",
    "contain_orphans",
    "index_tombstones",
    # documents
    "VALID_TRANSITIONS",
    "InvalidTransitionError",
    "can_transition",
    "transition",
    "settle",
]
