"""Sync orchestrator running one synchronization cycle at a time.

A cycle:
1. Checks the remote schema.
2. Snapshots the local graph, the pending deletions and the revision.
3. Pushes pending deletions, children before parents.
4. Fetches remote tombstones and every remote table, purging expired
   document binaries.
5. Flattens the snapshot and merges it with the remote data.
6. Uploads pending document payloads, then upserts the local winners,
   parents before children.
7. Commits: persists the reconstructed graph, acknowledges the pushed
   deletions and clears the dirty flag. Uploaded documents are recorded
   and reported, and documents that left the data are cleaned up.
8. Downloads missing document payloads.

Nothing is written to the local replica before step 7. A failure in steps
1-6 leaves the replica exactly as it was and sets the status from the
error kind. Retention purges in step 4 never fail the cycle.

State machine:
    LOADING -> SYNCING -> SYNCED | ERROR | UNCONFIGURED | UNINITIALIZED
    SYNCED/ERROR -> SYNCING on the next trigger
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, TypeVar

from casesync.client.sync.attachments import AttachmentPipeline
from casesync.client.sync.domain.merge import merge
from casesync.client.sync.domain.transcoder import FlatData, empty_flat, flatten, reconstruct
from casesync.client.sync.retry import retry_with_backoff
from casesync.client.sync.types import (
    CycleStats,
    DeletedIds,
    DocumentCallback,
    RemoteDataSource,
    StatusCallback,
    Tombstone,
)
from casesync.core.config import SyncSettings
from casesync.core.errors import REMEDIATION, SyncError, UnknownSyncError
from casesync.core.schemas import (
    TABLES,
    UNOWNED_TABLES,
    CaseDocument,
    SyncRecord,
    parse_records,
    to_wire,
)
from casesync.core.types import ErrorKind, SyncStatus

if TYPE_CHECKING:
    from casesync.client.data import OfficeData

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Parents before children, then the flat tables.
UPSERT_ORDER: tuple[str, ...] = (
    "clients",
    "cases",
    "stages",
    "sessions",
    "invoices",
    "invoice_items",
) + tuple(
    table
    for table in TABLES
    if table not in {"clients", "cases", "stages", "sessions", "invoices", "invoice_items"}
)

# Order in which remote tables are fetched.
FETCH_ORDER: tuple[str, ...] = (
    "clients",
    "admin_tasks",
    "appointments",
    "accounting_entries",
    "assistants",
    "invoices",
    "cases",
    "stages",
    "sessions",
    "invoice_items",
    "case_documents",
    "profiles",
    "site_finances",
)

STATUS_BY_KIND: dict[ErrorKind, SyncStatus] = {
    ErrorKind.UNCONFIGURED: SyncStatus.UNCONFIGURED,
    ErrorKind.UNINITIALIZED: SyncStatus.UNINITIALIZED,
}


def _documents(records: list[SyncRecord]) -> list[CaseDocument]:
    return [record for record in records if isinstance(record, CaseDocument)]


class SyncOrchestrator:
    """Runs sync cycles for one signed-in user and effective owner.

    Usage:
        orchestrator = SyncOrchestrator(data, remote, user_id="u1")
        orchestrator.on_status_change(lambda status, error: print(status))
        await orchestrator.request_sync()
    """

    def __init__(
        self,
        data: OfficeData,
        remote: RemoteDataSource | None,
        user_id: str,
        settings: SyncSettings | None = None,
        pipeline: AttachmentPipeline | None = None,
        on_uploaded: DocumentCallback | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            data: Working copy of the effective owner's data.
            remote: Remote store, or None when no endpoint is configured.
            user_id: Id of the signed-in user.
            settings: Sync tunables.
            pipeline: Attachment pipeline (built from remote if omitted).
            on_uploaded: Called once per document whose upload succeeds,
                after the cycle that uploaded it commits.
            clock: Source of the current time.
        """
        self._data = data
        self._remote = remote
        self._user_id = user_id
        self._settings = settings or SyncSettings()
        self._clock = clock or (lambda: datetime.now(UTC))
        if pipeline is None and remote is not None:
            pipeline = AttachmentPipeline(remote, data.store, self._settings)
        self._pipeline = pipeline
        self._on_uploaded = on_uploaded

        self._status = SyncStatus.LOADING
        self._last_error: str | None = None
        self._in_flight = False
        self._listeners: list[StatusCallback] = []
        self.last_stats: CycleStats | None = None

    # === Status surface ===

    @property
    def status(self) -> SyncStatus:
        """Get the current sync status."""
        return self._status

    @property
    def last_error(self) -> str | None:
        """Get the message of the last failure, if the status is a failure."""
        return self._last_error

    @property
    def is_dirty(self) -> bool:
        """Check if local mutations are waiting for a sync."""
        return self._data.is_dirty

    @property
    def is_syncing(self) -> bool:
        """Check if a cycle is in flight."""
        return self._in_flight

    @property
    def user_id(self) -> str:
        """Get the signed-in user id."""
        return self._user_id

    @property
    def owner_id(self) -> str:
        """Get the effective owner id."""
        return self._data.owner_id

    def on_status_change(self, callback: StatusCallback) -> Callable[[], None]:
        """Register a callback run on every status change.

        Returns:
            A function removing the callback.
        """
        self._listeners.append(callback)
        return lambda: self._listeners.remove(callback)

    def _set_status(self, status: SyncStatus, error: str | None = None) -> None:
        self._status = status
        self._last_error = error
        for callback in list(self._listeners):
            try:
                callback(status, error)
            except Exception:
                logger.exception("Status callback failed")

    def _fail(self, error: SyncError) -> None:
        status = STATUS_BY_KIND.get(error.kind, SyncStatus.ERROR)
        message = REMEDIATION.get(error.kind, str(error))
        if error.kind in REMEDIATION and str(error):
            message = f"{message} ({error})"
        logger.error(f"Sync failed ({error.kind.value}): {error}")
        self._set_status(status, message)

    # === Triggers ===

    async def request_sync(self) -> bool:
        """Run one sync cycle unless one is already in flight.

        Returns:
            True if a cycle ran and ended in SYNCED.
        """
        return await self._guarded(self._sync)

    async def refresh(self) -> bool:
        """Replace the local replica with a full fetch, bypassing the merge.

        Returns:
            True if the refresh ended in SYNCED.
        """
        return await self._guarded(self._refresh)

    async def _guarded(
        self, cycle: Callable[[RemoteDataSource, AttachmentPipeline], Awaitable[None]]
    ) -> bool:
        if self._in_flight:
            logger.debug("Sync already in flight, ignoring trigger")
            return False
        self._in_flight = True
        try:
            if self._remote is None or self._pipeline is None:
                self._set_status(SyncStatus.UNCONFIGURED, REMEDIATION[ErrorKind.UNCONFIGURED])
                return False

            self._set_status(SyncStatus.SYNCING)
            try:
                await cycle(self._remote, self._pipeline)
            except SyncError as e:
                self._fail(e)
            except Exception as e:
                logger.exception("Unexpected error during sync")
                self._fail(UnknownSyncError(str(e) or type(e).__name__))
            else:
                self._set_status(SyncStatus.SYNCED)
        finally:
            self._in_flight = False
        return self._status == SyncStatus.SYNCED

    # === Remote calls ===

    async def _call(self, func: Callable[[], Awaitable[T]]) -> T:
        s = self._settings
        return await retry_with_backoff(
            func,
            max_retries=s.max_retries,
            initial_backoff=s.initial_backoff,
            max_backoff=s.max_backoff,
            backoff_multiplier=s.backoff_multiplier,
            timeout=s.call_timeout,
        )

    async def _push_deletions(self, remote: RemoteDataSource, pending: DeletedIds) -> DeletedIds:
        """Push pending deletions, returning what the remote store accepted."""
        pushed = DeletedIds()
        for table, ids in self._data.deletions.batches(pending):
            await self._call(functools.partial(remote.delete, table, ids))
            pushed.ids[table] = ids
            logger.debug(f"Pushed {len(ids)} deletions of {table}")
        if pending.document_paths:
            await self._call(functools.partial(remote.remove, list(pending.document_paths)))
            pushed.document_paths = list(pending.document_paths)
        return pushed

    async def _fetch_all(self, remote: RemoteDataSource) -> FlatData:
        flat = empty_flat()
        for table in FETCH_ORDER:
            rows = await self._call(functools.partial(remote.fetch, table))
            flat[table] = parse_records(table, rows)
        return flat

    async def _push_upserts(self, remote: RemoteDataSource, to_upsert: FlatData) -> dict[str, list[SyncRecord]]:
        """Upsert local winners, returning the canonical records per table."""
        canonical: dict[str, list[SyncRecord]] = {}
        for table in UPSERT_ORDER:
            records = to_upsert.get(table)
            if not records:
                continue
            rows = [to_wire(table, record) for record in records]
            if table not in UNOWNED_TABLES:
                for row in rows:
                    row["user_id"] = self._data.owner_id
            stored = await self._call(functools.partial(remote.upsert, table, rows))
            canonical[table] = parse_records(table, stored)
            logger.debug(f"Upserted {len(rows)} records to {table}")
        return canonical

    # === Cycle ===

    async def _sync(self, remote: RemoteDataSource, pipeline: AttachmentPipeline) -> None:
        stats = CycleStats()
        started = self._clock()
        logger.info(f"Sync started for owner {self._data.owner_id}")

        await self._call(remote.check_schema)

        snapshot = self._data.graph
        revision = self._data.revision
        pending = self._data.deletions.pending()
        excluded = self._data.store.get_excluded_documents(self._data.owner_id)

        pushed = await self._push_deletions(remote, pending)
        stats.deleted = pushed.count()

        since = started - self._settings.tombstone_window
        tombstones: list[Tombstone] = await self._call(functools.partial(remote.fetch_tombstones, since))
        remote_flat = await self._fetch_all(remote)
        stats.fetched = sum(len(records) for records in remote_flat.values())

        expired = await pipeline.purge_expired(_documents(remote_flat["case_documents"]), started)
        archived = {t.record_id for t in expired}
        if expired:
            remote_flat["case_documents"] = [d for d in remote_flat["case_documents"] if d.key not in archived]
            tombstones = tombstones + expired
            stats.expired_documents = len(expired)

        local_flat = flatten(snapshot)
        result = merge(
            local_flat,
            remote_flat,
            tombstones,
            pending=pending.ids,
            excluded=excluded,
            skew=self._settings.skew_buffer,
        )
        stats.tombstoned = sum(len(ids) for ids in result.discarded.values())
        stats.orphaned = sum(len(ids) for ids in result.orphans.values())

        local_documents = _documents(local_flat["case_documents"])
        documents = pipeline.settle(_documents(result.merged["case_documents"]), local_documents)
        batch = await pipeline.upload_pending(documents)
        stats.uploaded = len(batch.uploaded)
        result.merged["case_documents"] = list(batch.documents)
        by_id = {doc.id: doc for doc in batch.documents}
        result.to_upsert["case_documents"] = [
            by_id[doc.key] for doc in result.to_upsert["case_documents"]
            if doc.key in by_id and doc.key not in batch.held_back
        ]

        canonical = await self._push_upserts(remote, result.to_upsert)
        stats.upserted = sum(len(records) for records in canonical.values())
        merged = self._apply_canonical(result.merged, canonical)

        stats.mutated_during_cycle = self._commit(merged, tombstones, revision, pushed)
        self._settle_documents(pipeline, batch.uploaded, local_documents, archived)
        self.last_stats = stats
        logger.info(
            f"Sync finished: {stats.upserted} upserted, {stats.deleted} deleted, "
            f"{stats.tombstoned} tombstoned, {stats.uploaded} uploaded"
        )

        await self._download_missing(pipeline)

    def _apply_canonical(self, merged: FlatData, canonical: dict[str, list[SyncRecord]]) -> FlatData:
        """Replace merged records with the versions the remote store returned."""
        for table, records in canonical.items():
            if not records:
                continue
            stored = {record.key: record for record in records}
            replaced = []
            for record in merged[table]:
                theirs = stored.get(record.key)
                if theirs is None:
                    replaced.append(record)
                elif isinstance(record, CaseDocument):
                    replaced.append(theirs.model_copy(update={"local_state": record.local_state}))
                else:
                    replaced.append(theirs)
            merged[table] = replaced
        return merged

    def _commit(self, merged: FlatData, tombstones: list[Tombstone], revision: int, pushed: DeletedIds) -> bool:
        """Persist the merged result and acknowledge pushed deletions.

        If the user mutated the data while the cycle ran, the latest local
        data is merged over the result so that no edit is lost, and the
        data stays dirty for the next cycle.

        Returns:
            True if a mutation landed during the cycle.
        """
        mutated = self._data.revision != revision
        if mutated:
            logger.info("Local data changed during sync, keeping the newer edits")
            latest = flatten(self._data.graph)
            current = self._data.deletions.pending()
            merged = merge(
                latest,
                merged,
                tombstones,
                pending=current.ids,
                excluded=self._data.store.get_excluded_documents(self._data.owner_id),
                skew=self._settings.skew_buffer,
            ).merged

        self._data.replace(reconstruct(merged), clear_dirty=not mutated)
        for table, ids in pushed.ids.items():
            self._data.deletions.acknowledge(table, ids)
        self._data.deletions.acknowledge_paths(pushed.document_paths)
        return mutated

    def _settle_documents(
        self,
        pipeline: AttachmentPipeline,
        uploaded: list[CaseDocument],
        previous: list[CaseDocument],
        archived: set[str],
    ) -> None:
        """Record committed uploads and clean up documents that left the data."""
        committed = {doc.id: doc for doc in self._data.graph.documents}
        for document in uploaded:
            if document.id not in committed:
                continue
            pipeline.record(committed[document.id])
            if self._on_uploaded:
                try:
                    self._on_uploaded(committed[document.id])
                except Exception:
                    logger.exception("Upload callback failed")
        pipeline.release([doc for doc in previous if doc.id not in committed], archived)

    async def _download_missing(self, pipeline: AttachmentPipeline) -> None:
        excluded = self._data.store.get_excluded_documents(self._data.owner_id)
        changes = await pipeline.download_pending(self._data.graph.documents, excluded)
        self._data.set_document_states(changes)

    async def _refresh(self, remote: RemoteDataSource, pipeline: AttachmentPipeline) -> None:
        logger.info(f"Full refresh for owner {self._data.owner_id}")
        await self._call(remote.check_schema)
        remote_flat = await self._fetch_all(remote)

        excluded = self._data.store.get_excluded_documents(self._data.owner_id)
        previous = self._data.graph.documents
        remote_flat["case_documents"] = pipeline.settle(
            [doc for doc in _documents(remote_flat["case_documents"]) if doc.id not in excluded],
            previous,
        )
        self._data.replace(reconstruct(remote_flat), clear_dirty=True)
        self._settle_documents(pipeline, [], previous, set())
        await self._download_missing(pipeline)
