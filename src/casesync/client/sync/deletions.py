"""Tracking of local deletions until the remote store acknowledges them.

Deletions are recorded the moment the user deletes something and are
persisted immediately, so they survive a restart. The orchestrator pushes
them at the start of each cycle and acknowledges exactly the ids the
remote store confirmed, which keeps deletions recorded while a push is in
flight.
"""

from __future__ import annotations

import logging

from casesync.client.state import LocalReplicaStore
from casesync.client.sync.types import DeletedIds
from casesync.core.schemas import TABLES

logger = logging.getLogger(__name__)

# Children before parents, then the flat tables.
DELETION_ORDER: tuple[str, ...] = (
    "sessions",
    "stages",
    "cases",
    "clients",
    "invoice_items",
    "invoices",
) + tuple(
    table
    for table in TABLES
    if table not in {"sessions", "stages", "cases", "clients", "invoice_items", "invoices"}
)


class DeletionTracker:
    """Append-only list of pending deletions of one owner."""

    def __init__(self, store: LocalReplicaStore, owner_id: str) -> None:
        """Initialize the tracker from the persisted deletions.

        Args:
            store: Local replica store.
            owner_id: Effective owner id.
        """
        self._store = store
        self._owner_id = owner_id
        self._deleted = DeletedIds.from_dict(store.get_deleted_ids(owner_id))

    def _persist(self) -> None:
        self._store.put_deleted_ids(self._owner_id, self._deleted.to_dict())

    def record(self, table: str, record_id: str) -> None:
        """Record the deletion of a record.

        Args:
            table: Wire name of the table.
            record_id: Id of the record (assistant name for assistants).
        """
        if table not in TABLES:
            raise ValueError(f"Unknown table: {table}")
        ids = self._deleted.ids.setdefault(table, [])
        if record_id not in ids:
            ids.append(record_id)
            self._persist()
            logger.debug(f"Recorded deletion of {table}/{record_id}")

    def record_many(self, table: str, record_ids: list[str]) -> None:
        """Record the deletion of several records of one table."""
        for record_id in record_ids:
            self.record(table, record_id)

    def record_document(self, doc_id: str, storage_path: str | None) -> None:
        """Record the deletion of a document and its binary object."""
        self.record("case_documents", doc_id)
        if storage_path and storage_path not in self._deleted.document_paths:
            self._deleted.document_paths.append(storage_path)
            self._persist()

    def pending(self) -> DeletedIds:
        """Get a snapshot of the pending deletions."""
        return self._deleted.copy()

    def is_pending(self, table: str, record_id: str) -> bool:
        """Check if a record's deletion is awaiting acknowledgement."""
        return record_id in self._deleted.ids.get(table, [])

    def batches(self, deleted: DeletedIds | None = None) -> list[tuple[str, list[str]]]:
        """Group pending deletions by table in propagation order.

        Args:
            deleted: Snapshot to group (defaults to the current state).

        Returns:
            List of (table, ids) with no empty batch.
        """
        deleted = deleted or self._deleted
        return [(table, list(deleted.ids[table])) for table in DELETION_ORDER if deleted.ids.get(table)]

    def acknowledge(self, table: str, record_ids: list[str]) -> None:
        """Remove acknowledged deletions. Unknown ids are ignored."""
        ids = self._deleted.ids.get(table)
        if not ids:
            return
        gone = set(record_ids)
        remaining = [i for i in ids if i not in gone]
        if len(remaining) == len(ids):
            return
        if remaining:
            self._deleted.ids[table] = remaining
        else:
            del self._deleted.ids[table]
        self._persist()

    def acknowledge_paths(self, paths: list[str]) -> None:
        """Remove acknowledged binary object deletions."""
        gone = set(paths)
        remaining = [p for p in self._deleted.document_paths if p not in gone]
        if len(remaining) != len(self._deleted.document_paths):
            self._deleted.document_paths = remaining
            self._persist()
