"""Record-level last-writer-wins merge.

For every table the merge compares the local and remote copies of each
record by ``updated_at``:

| Local          | Remote          | Result                               |
|----------------|-----------------|--------------------------------------|
| tombstoned     | any             | local dropped, remote rules apply    |
| present        | absent          | local kept and upserted              |
| newer          | older           | local kept and upserted              |
| older or equal | present         | remote kept                          |
| absent         | present         | remote kept unless tombstoned,       |
|                |                 | pending local deletion or excluded   |

A copy is tombstoned when a remote deletion for its id exists and the
copy was last updated before ``deleted_at + skew``. An edit made after
the deletion (beyond clock skew) therefore survives it.

After the per-table pass, children whose parent did not survive are
dropped from both the merged set and the upsert set.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from casesync.client.sync.domain.transcoder import FlatData, empty_flat
from casesync.client.sync.types import Tombstone
from casesync.core.schemas import TABLES, SyncRecord

logger = logging.getLogger(__name__)

DEFAULT_SKEW = timedelta(seconds=2)

# (child table, parent field, parent table), parents before children.
PARENT_LINKS: tuple[tuple[str, str, str], ...] = (
    ("cases", "client_id", "clients"),
    ("stages", "case_id", "cases"),
    ("sessions", "stage_id", "stages"),
    ("invoice_items", "invoice_id", "invoices"),
)


@dataclass
class MergeResult:
    """Outcome of a merge.

    Attributes:
        merged: The reconciled records of every table.
        to_upsert: Local records the remote store must receive.
        discarded: Ids dropped per table because a tombstone covers them.
        orphans: Ids dropped per table because their parent is gone.
    """

    merged: FlatData = field(default_factory=empty_flat)
    to_upsert: FlatData = field(default_factory=empty_flat)
    discarded: dict[str, list[str]] = field(default_factory=dict)
    orphans: dict[str, list[str]] = field(default_factory=dict)

    def upsert_count(self) -> int:
        """Total number of records to upsert."""
        return sum(len(records) for records in self.to_upsert.values())


def index_tombstones(tombstones: Iterable[Tombstone]) -> dict[str, dict[str, datetime]]:
    """Index tombstones by table then record id, keeping the latest deletion."""
    index: dict[str, dict[str, datetime]] = {}
    for tombstone in tombstones:
        table = index.setdefault(tombstone.table, {})
        previous = table.get(tombstone.record_id)
        if previous is None or tombstone.deleted_at > previous:
            table[tombstone.record_id] = tombstone.deleted_at
    return index


def is_tombstoned(record: SyncRecord, deletions: Mapping[str, datetime], skew: timedelta) -> bool:
    """Check whether a remote deletion covers this copy of a record."""
    deleted_at = deletions.get(record.key)
    return deleted_at is not None and record.updated_at < deleted_at + skew


def merge_table(
    local: Iterable[SyncRecord],
    remote: Iterable[SyncRecord],
    deletions: Mapping[str, datetime],
    pending: set[str] | frozenset[str] = frozenset(),
    excluded: set[str] | frozenset[str] = frozenset(),
    skew: timedelta = DEFAULT_SKEW,
) -> tuple[list[SyncRecord], list[SyncRecord], list[str]]:
    """Merge the local and remote copies of one table.

    Args:
        local: Local records.
        remote: Remote records.
        deletions: Remote deletion time per record id.
        pending: Ids deleted locally and not yet acknowledged.
        excluded: Ids the user removed from this device only.
        skew: Clock skew absorbed when comparing with a deletion.

    Returns:
        Tuple of (merged, to_upsert, discarded ids). Merged keeps the local
        order, followed by remote-only records in remote order.
    """
    remote_by_key: dict[str, SyncRecord] = {}
    for record in remote:
        remote_by_key[record.key] = record

    merged: dict[str, SyncRecord] = {}
    to_upsert: list[SyncRecord] = []
    discarded: list[str] = []

    for record in local:
        key = record.key
        if is_tombstoned(record, deletions, skew):
            discarded.append(key)
            continue
        theirs = remote_by_key.get(key)
        if theirs is None or record.updated_at > theirs.updated_at:
            merged[key] = record
            to_upsert.append(record)
        else:
            merged[key] = theirs

    for key, record in remote_by_key.items():
        if key in merged or key in pending or key in excluded:
            continue
        if is_tombstoned(record, deletions, skew):
            if key not in discarded:
                discarded.append(key)
            continue
        merged[key] = record

    return list(merged.values()), to_upsert, discarded


def contain_orphans(result: MergeResult) -> None:
    """Drop children whose parent is absent from the merged data.

    Runs parents first so that removing a case also removes its stages
    and their sessions.
    """
    for child_table, parent_field, parent_table in PARENT_LINKS:
        parents = {record.key for record in result.merged[parent_table]}
        kept = []
        dropped = []
        for record in result.merged[child_table]:
            if getattr(record, parent_field) in parents:
                kept.append(record)
            else:
                dropped.append(record.key)
        if not dropped:
            continue

        logger.debug(f"Dropping {len(dropped)} orphaned {child_table}")
        result.merged[child_table] = kept
        gone = set(dropped)
        result.to_upsert[child_table] = [r for r in result.to_upsert[child_table] if r.key not in gone]
        result.orphans.setdefault(child_table, []).extend(dropped)


def merge(
    local: FlatData,
    remote: FlatData,
    tombstones: Iterable[Tombstone] = (),
    pending: Mapping[str, Iterable[str]] | None = None,
    excluded: Iterable[str] = (),
    skew: timedelta = DEFAULT_SKEW,
) -> MergeResult:
    """Merge local and remote flat data table by table.

    Args:
        local: Flattened local replica.
        remote: Records fetched from the remote store.
        tombstones: Remote deletions within the tombstone window.
        pending: Local deletions not yet acknowledged, per table.
        excluded: Document ids removed from this device only.
        skew: Clock skew absorbed when comparing with a deletion.

    Returns:
        MergeResult with merged data, the upsert set and what was dropped.
    """
    deletions = index_tombstones(tombstones)
    pending = pending or {}
    excluded_docs = frozenset(excluded)
    result = MergeResult()

    for table in TABLES:
        merged, to_upsert, discarded = merge_table(
            local.get(table, []),
            remote.get(table, []),
            deletions.get(table, {}),
            pending=frozenset(pending.get(table, ())),
            excluded=excluded_docs if table == "case_documents" else frozenset(),
            skew=skew,
        )
        result.merged[table] = merged
        result.to_upsert[table] = to_upsert
        if discarded:
            result.discarded[table] = discarded
        logger.debug(
            f"Merged {table}: {len(merged)} records, {len(to_upsert)} to upsert, "
            f"{len(discarded)} tombstoned"
        )

    contain_orphans(result)
    return result
