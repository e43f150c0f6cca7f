"""Shared types and dataclasses for sync operations.

This module provides:
- Tombstone: A remote deletion record
- DeletedIds: Local deletions awaiting acknowledgement
- RemoteDataSource: Protocol of the remote relational and binary store
- CycleStats: Counters of one sync cycle
- Type aliases for callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from casesync.core.schemas import CaseDocument
from casesync.core.types import SyncStatus

TOMBSTONE_TABLE = "sync_deletions"


@dataclass(frozen=True)
class Tombstone:
    """A deletion recorded in the remote store.

    Attributes:
        table: Wire name of the table the record was deleted from.
        record_id: Id (or assistant name) of the deleted record.
        deleted_at: When the deletion happened.
    """

    table: str
    record_id: str
    deleted_at: datetime

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Tombstone:
        """Create from a ``sync_deletions`` row."""
        deleted_at = data["deleted_at"]
        if isinstance(deleted_at, str):
            deleted_at = datetime.fromisoformat(deleted_at)
        if deleted_at.tzinfo is None:
            deleted_at = deleted_at.replace(tzinfo=UTC)
        return cls(
            table=data["table_name"],
            record_id=str(data["record_id"]),
            deleted_at=deleted_at,
        )


@dataclass
class DeletedIds:
    """Local deletions not yet acknowledged by the remote store.

    Attributes:
        ids: Deleted record ids per table, in deletion order.
        document_paths: Storage paths of deleted document binaries.
    """

    ids: dict[str, list[str]] = field(default_factory=dict)
    document_paths: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> DeletedIds:
        """Create from the stored form, tolerating missing keys."""
        if not data:
            return cls()
        ids = {
            table: [str(i) for i in values]
            for table, values in (data.get("ids") or {}).items()
            if isinstance(values, list)
        }
        return cls(ids=ids, document_paths=list(data.get("document_paths") or []))

    def to_dict(self) -> dict[str, Any]:
        """Convert to the stored form."""
        return {"ids": self.ids, "document_paths": self.document_paths}

    def copy(self) -> DeletedIds:
        """Create an independent snapshot."""
        return DeletedIds(
            ids={table: list(values) for table, values in self.ids.items()},
            document_paths=list(self.document_paths),
        )

    @property
    def is_empty(self) -> bool:
        """Check if nothing is pending."""
        return not self.document_paths and not any(self.ids.values())

    def count(self) -> int:
        """Total number of pending record deletions."""
        return sum(len(values) for values in self.ids.values())


class RemoteDataSource(Protocol):
    """Protocol for the remote relational store and its object storage.

    Implementations raise casesync.core.errors exceptions: UninitializedError
    when the schema is missing, TransientError on network failures,
    PermissionDeniedError on refusal and NotFoundError for missing objects.
    """

    async def check_schema(self) -> None:
        """Verify the remote tables exist."""
        ...

    async def fetch(self, table: str) -> list[dict[str, Any]]:
        """Fetch every row of a table visible to the user."""
        ...

    async def fetch_tombstones(self, since: datetime) -> list[Tombstone]:
        """Fetch deletions recorded since the given time."""
        ...

    async def upsert(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Insert or update rows, returning their canonical form."""
        ...

    async def delete(self, table: str, ids: list[str]) -> None:
        """Delete rows and record a tombstone for each."""
        ...

    async def upload(self, path: str, data: bytes, content_type: str | None = None) -> None:
        """Store a binary object."""
        ...

    async def download(self, path: str) -> bytes:
        """Fetch a binary object."""
        ...

    async def remove(self, paths: list[str]) -> None:
        """Delete binary objects."""
        ...

    async def health_check(self) -> bool:
        """Check if the remote store is reachable."""
        ...


@dataclass
class CycleStats:
    """Counters of one sync cycle."""

    deleted: int = 0
    fetched: int = 0
    upserted: int = 0
    tombstoned: int = 0
    orphaned: int = 0
    expired_documents: int = 0
    uploaded: int = 0
    downloaded: int = 0
    mutated_during_cycle: bool = False


# Type aliases for callbacks
StatusCallback = Callable[[SyncStatus, str | None], None]
DocumentCallback = Callable[[CaseDocument], None]
