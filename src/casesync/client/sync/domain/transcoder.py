"""Graph <-> table transcoding.

The local replica keeps the office data as a nested graph
(Client > Case > Stage > Session, Invoice > InvoiceItem). The remote store
keeps one flat table per entity type, each child carrying the id of its
immediate parent. This module converts between the two shapes.

Both directions are pure. ``reconstruct(flatten(graph)) == graph`` holds
for every graph without orphans.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from typing import Any

from casesync.core.schemas import (
    TABLES,
    AppData,
    Case,
    CaseRecord,
    Client,
    ClientRecord,
    Invoice,
    InvoiceItem,
    InvoiceItemRecord,
    InvoiceRecord,
    Session,
    SessionRecord,
    Stage,
    StageRecord,
    SyncRecord,
)

logger = logging.getLogger(__name__)

FlatData = dict[str, list[SyncRecord]]

# Graph collections stored as-is in a table of the same shape.
FLAT_COLLECTIONS: dict[str, str] = {
    "admin_tasks": "admin_tasks",
    "appointments": "appointments",
    "accounting_entries": "accounting_entries",
    "assistants": "assistants",
    "documents": "case_documents",
    "profiles": "profiles",
    "site_finances": "site_finances",
}


def empty_flat() -> FlatData:
    """Create flat data with every table present and empty."""
    return {table: [] for table in TABLES}


def _annotate(model: type[SyncRecord], node: SyncRecord, exclude: set[str], **parent: str) -> SyncRecord:
    data = node.model_dump(exclude=exclude)
    data.update(parent)
    return model.model_validate(data)


def _nest(model: type[SyncRecord], record: SyncRecord, parent_field: str | None, **children: Any) -> Any:
    data = record.model_dump(exclude={parent_field} if parent_field else None)
    data.update(children)
    return model.model_validate(data)


def flatten(graph: AppData) -> FlatData:
    """Flatten the nested graph into per-table record lists.

    Each child is annotated with its immediate parent id and its own nested
    collections are stripped.

    Args:
        graph: The office data graph.

    Returns:
        Mapping of table name to flat records, one entry per table.
    """
    flat = empty_flat()

    for client in graph.clients:
        flat["clients"].append(_annotate(ClientRecord, client, {"cases"}))
        for case in client.cases:
            flat["cases"].append(_annotate(CaseRecord, case, {"stages"}, client_id=client.id))
            for stage in case.stages:
                flat["stages"].append(_annotate(StageRecord, stage, {"sessions"}, case_id=case.id))
                for session in stage.sessions:
                    flat["sessions"].append(_annotate(SessionRecord, session, set(), stage_id=stage.id))

    for invoice in graph.invoices:
        flat["invoices"].append(_annotate(InvoiceRecord, invoice, {"items"}))
        for item in invoice.items:
            flat["invoice_items"].append(_annotate(InvoiceItemRecord, item, set(), invoice_id=invoice.id))

    for attr, table in FLAT_COLLECTIONS.items():
        flat[table].extend(getattr(graph, attr))

    return flat


def _group(records: Iterable[SyncRecord], parent_field: str) -> dict[str, list[SyncRecord]]:
    groups: dict[str, list[SyncRecord]] = defaultdict(list)
    for record in records:
        groups[getattr(record, parent_field)].append(record)
    return groups


def _count_orphans(groups: dict[str, list[SyncRecord]], parents: Sequence[SyncRecord], table: str) -> None:
    known = {parent.key for parent in parents}
    orphans = sum(len(children) for parent_id, children in groups.items() if parent_id not in known)
    if orphans:
        logger.debug(f"Dropped {orphans} orphaned {table} during reconstruction")


def reconstruct(flat: FlatData) -> AppData:
    """Rebuild the nested graph from per-table record lists.

    Children whose parent id is not present are dropped silently.

    Args:
        flat: Mapping of table name to flat records. Missing tables are
            treated as empty.

    Returns:
        The office data graph.
    """
    sessions = _group(flat.get("sessions", []), "stage_id")
    stages = _group(flat.get("stages", []), "case_id")
    cases = _group(flat.get("cases", []), "client_id")
    items = _group(flat.get("invoice_items", []), "invoice_id")

    _count_orphans(sessions, flat.get("stages", []), "sessions")
    _count_orphans(stages, flat.get("cases", []), "stages")
    _count_orphans(cases, flat.get("clients", []), "cases")
    _count_orphans(items, flat.get("invoices", []), "invoice_items")

    def build_stage(record: SyncRecord) -> Stage:
        return _nest(
            Stage,
            record,
            "case_id",
            sessions=[_nest(Session, s, "stage_id") for s in sessions.get(record.key, [])],
        )

    def build_case(record: SyncRecord) -> Case:
        return _nest(Case, record, "client_id", stages=[build_stage(s) for s in stages.get(record.key, [])])

    clients = [
        _nest(Client, record, None, cases=[build_case(c) for c in cases.get(record.key, [])])
        for record in flat.get("clients", [])
    ]
    invoices = [
        _nest(
            Invoice,
            record,
            None,
            items=[_nest(InvoiceItem, i, "invoice_id") for i in items.get(record.key, [])],
        )
        for record in flat.get("invoices", [])
    ]

    collections = {attr: list(flat.get(table, [])) for attr, table in FLAT_COLLECTIONS.items()}
    return AppData(clients=clients, invoices=invoices, **collections)
