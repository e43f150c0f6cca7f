"""Per-owner working copy of the office data.

This module provides:
- OfficeData: The in-memory graph of one owner with its mutation API

Every mutation works on a copy of the graph, stamps ``updated_at`` on the
records it changes, persists the new graph, marks the data dirty and bumps
the revision counter. The sync orchestrator compares revisions to detect
mutations that landed while a cycle was running.

Saving a graph node (client, case, stage, invoice) keeps the children
already stored under it. Children are added and removed through their
own helpers.
"""

from __future__ import annotations

import logging
import mimetypes
import time
from collections.abc import Callable, Iterable, Iterator
from datetime import UTC, datetime
from pathlib import PurePath
from typing import Any, TypeVar

from casesync.client.state import LocalReplicaStore
from casesync.client.sync.deletions import DeletionTracker
from casesync.client.sync.domain.transcoder import FLAT_COLLECTIONS
from casesync.core.schemas import (
    AppData,
    Assistant,
    Case,
    CaseDocument,
    Client,
    Invoice,
    InvoiceItem,
    Session,
    Stage,
    SyncRecord,
    parse_graph,
    parse_items,
)
from casesync.core.types import DocumentState

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=SyncRecord)

DEFAULT_ASSISTANTS = ("أحمد", "فاطمة", "سارة", "بدون تخصيص")

ChangeListener = Callable[[], None]


def _now() -> datetime:
    return datetime.now(UTC)


def _upsert_node(items: list[R], node: R, children: str | None = None) -> R:
    """Replace the item with the same key, or append it.

    When replacing, the children collection of the stored item is kept.
    """
    for index, existing in enumerate(items):
        if existing.key == node.key:
            if children is not None:
                node = node.model_copy(update={children: getattr(existing, children)})
            items[index] = node
            return node
    items.append(node)
    return node


def _remove(items: list[R], key: str) -> R | None:
    for index, existing in enumerate(items):
        if existing.key == key:
            return items.pop(index)
    return None


class OfficeData:
    """The office data graph of one owner, backed by the replica store."""

    def __init__(
        self,
        store: LocalReplicaStore,
        owner_id: str,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the working copy. Call load() before use.

        Args:
            store: Local replica store.
            owner_id: Effective owner id partitioning the replica.
            clock: Source of mutation timestamps (defaults to UTC now).
        """
        self._store = store
        self._owner_id = owner_id
        self._clock = clock or _now
        self.deletions = DeletionTracker(store, owner_id)

        self._graph = AppData()
        self._revision = 0
        self._dirty = store.get_setting(self._dirty_key) == "1"
        self._has_replica = False
        self._listeners: list[ChangeListener] = []

    @property
    def _dirty_key(self) -> str:
        return f"dirty:{self._owner_id}"

    # === State ===

    @property
    def owner_id(self) -> str:
        """Get the effective owner id."""
        return self._owner_id

    @property
    def store(self) -> LocalReplicaStore:
        """Get the replica store."""
        return self._store

    @property
    def graph(self) -> AppData:
        """Get the current graph. Treat it as read-only."""
        return self._graph

    @property
    def revision(self) -> int:
        """Get the number of local mutations since load."""
        return self._revision

    @property
    def is_dirty(self) -> bool:
        """Check if local mutations are waiting for a sync."""
        return self._dirty

    @property
    def has_replica(self) -> bool:
        """Check if a graph was stored for this owner before load()."""
        return self._has_replica

    def now(self) -> datetime:
        """Get the current mutation time."""
        return self._clock()

    def load(self) -> AppData:
        """Load the owner's graph from the replica store.

        Invalid records are dropped with a warning. A fresh owner starts
        with the default assistants.

        Returns:
            The loaded graph.
        """
        raw = self._store.get_graph(self._owner_id)
        self._has_replica = raw is not None
        graph = parse_graph(raw)
        if raw is None:
            now = self.now()
            graph.assistants = [Assistant(name=name, updated_at=now) for name in DEFAULT_ASSISTANTS]
        self._graph = graph
        logger.debug(f"Loaded replica of {self._owner_id} ({len(graph.clients)} clients)")
        return graph

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a callback run after every dirtying mutation.

        Returns:
            A function removing the listener.
        """
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _persist(self) -> None:
        self._store.put_graph(self._owner_id, self._graph.model_dump(mode="json"))

    def _set_dirty(self, dirty: bool) -> None:
        self._dirty = dirty
        self._store.set_setting(self._dirty_key, "1" if dirty else "0")

    def update(self, mutator: Callable[[AppData], Any], mark_dirty: bool = True) -> AppData:
        """Apply a mutation to a copy of the graph and persist it.

        Args:
            mutator: Receives the copy; may modify it in place or return a
                replacement.
            mark_dirty: Whether the change must be synchronized.

        Returns:
            The new graph.
        """
        graph = self._graph.model_copy(deep=True)
        result = mutator(graph)
        self._graph = result if isinstance(result, AppData) else graph
        self._persist()
        if mark_dirty:
            self._revision += 1
            self._set_dirty(True)
            for listener in list(self._listeners):
                listener()
        return self._graph

    def replace(self, graph: AppData, clear_dirty: bool) -> None:
        """Replace the graph with a synchronized one.

        Args:
            graph: The merged graph.
            clear_dirty: Whether no local mutation is left to synchronize.
        """
        self._graph = graph
        self._persist()
        if clear_dirty:
            self._set_dirty(False)

    def set_document_states(self, states: dict[str, DocumentState]) -> None:
        """Patch the payload state of documents without dirtying the data."""
        if not states:
            return

        def patch(graph: AppData) -> None:
            graph.documents = [
                doc.model_copy(update={"local_state": states[doc.id]}) if doc.id in states else doc
                for doc in graph.documents
            ]

        self.update(patch, mark_dirty=False)

    # === Lookups ===

    def iter_cases(self, graph: AppData | None = None) -> Iterator[tuple[Client, Case]]:
        for client in (graph if graph is not None else self._graph).clients:
            for case in client.cases:
                yield client, case

    def iter_stages(self, graph: AppData | None = None) -> Iterator[tuple[Case, Stage]]:
        for _, case in self.iter_cases(graph):
            for stage in case.stages:
                yield case, stage

    def iter_sessions(self, graph: AppData | None = None) -> Iterator[tuple[Stage, Session]]:
        for _, stage in self.iter_stages(graph):
            for session in stage.sessions:
                yield stage, session

    def _find(self, items: Iterable[tuple[Any, R]], key: str, kind: str) -> tuple[Any, R]:
        for parent, item in items:
            if item.key == key:
                return parent, item
        raise KeyError(f"{kind} not found: {key}")

    def _stamp(self, record: R) -> R:
        return record.model_copy(update={"updated_at": self.now()})

    # === Saves ===

    def save_client(self, client: Client) -> Client:
        """Create or update a client, keeping its stored cases."""
        client = self._stamp(client)
        self.update(lambda g: _upsert_node(g.clients, client, "cases"))
        return client

    def save_case(self, client_id: str, case: Case) -> Case:
        """Create or update a case of a client, keeping its stored stages."""
        case = self._stamp(case)

        def mutate(graph: AppData) -> None:
            client = next((c for c in graph.clients if c.id == client_id), None)
            if client is None:
                raise KeyError(f"Client not found: {client_id}")
            _upsert_node(client.cases, case, "stages")

        self.update(mutate)
        return case

    def save_stage(self, case_id: str, stage: Stage) -> Stage:
        """Create or update a stage of a case, keeping its stored sessions."""
        stage = self._stamp(stage)

        def mutate(graph: AppData) -> None:
            _, case = self._find(self.iter_cases(graph), case_id, "Case")
            _upsert_node(case.stages, stage, "sessions")

        self.update(mutate)
        return stage

    def save_session(self, stage_id: str, session: Session) -> Session:
        """Create or update a session of a stage."""
        session = self._stamp(session)

        def mutate(graph: AppData) -> None:
            _, stage = self._find(self.iter_stages(graph), stage_id, "Stage")
            _upsert_node(stage.sessions, session)

        self.update(mutate)
        return session

    def save_invoice(self, invoice: Invoice) -> Invoice:
        """Create or update an invoice, keeping its stored items."""
        invoice = self._stamp(invoice)
        self.update(lambda g: _upsert_node(g.invoices, invoice, "items"))
        return invoice

    def save_invoice_item(self, invoice_id: str, item: InvoiceItem) -> InvoiceItem:
        """Create or update an item of an invoice."""
        item = self._stamp(item)

        def mutate(graph: AppData) -> None:
            invoice = next((i for i in graph.invoices if i.id == invoice_id), None)
            if invoice is None:
                raise KeyError(f"Invoice not found: {invoice_id}")
            _upsert_node(invoice.items, item)

        self.update(mutate)
        return item

    def save_record(self, collection: str, record: R) -> R:
        """Create or update a record of a flat collection.

        Args:
            collection: Graph collection name (e.g. "admin_tasks").
            record: The record.
        """
        if collection not in FLAT_COLLECTIONS:
            raise ValueError(f"Not a flat collection: {collection}")
        record = self._stamp(record)
        self.update(lambda g: _upsert_node(getattr(g, collection), record))
        return record

    # === Deletes ===

    def delete_client(self, client_id: str) -> None:
        """Delete a client."""
        self.update(lambda g: _remove(g.clients, client_id))
        self.deletions.record("clients", client_id)

    def delete_case(self, case_id: str) -> None:
        """Delete a case."""

        def mutate(graph: AppData) -> None:
            client, _ = self._find(self.iter_cases(graph), case_id, "Case")
            _remove(client.cases, case_id)

        self.update(mutate)
        self.deletions.record("cases", case_id)

    def delete_stage(self, stage_id: str) -> None:
        """Delete a stage."""

        def mutate(graph: AppData) -> None:
            case, _ = self._find(self.iter_stages(graph), stage_id, "Stage")
            _remove(case.stages, stage_id)

        self.update(mutate)
        self.deletions.record("stages", stage_id)

    def delete_session(self, session_id: str) -> None:
        """Delete a session."""

        def mutate(graph: AppData) -> None:
            stage, _ = self._find(self.iter_sessions(graph), session_id, "Session")
            _remove(stage.sessions, session_id)

        self.update(mutate)
        self.deletions.record("sessions", session_id)

    def delete_invoice(self, invoice_id: str) -> None:
        """Delete an invoice."""
        self.update(lambda g: _remove(g.invoices, invoice_id))
        self.deletions.record("invoices", invoice_id)

    def delete_invoice_item(self, item_id: str) -> None:
        """Delete an invoice item."""

        def mutate(graph: AppData) -> None:
            for invoice in graph.invoices:
                if _remove(invoice.items, item_id) is not None:
                    return
            raise KeyError(f"Invoice item not found: {item_id}")

        self.update(mutate)
        self.deletions.record("invoice_items", item_id)

    def delete_record(self, collection: str, key: str) -> None:
        """Delete a record of a flat collection.

        Args:
            collection: Graph collection name (e.g. "appointments").
            key: Record id (assistant name for assistants).
        """
        if collection not in FLAT_COLLECTIONS:
            raise ValueError(f"Not a flat collection: {collection}")
        if collection == "documents":
            self.delete_document(key)
            return
        self.update(lambda g: _remove(getattr(g, collection), key))
        self.deletions.record(FLAT_COLLECTIONS[collection], key)

    def delete_assistant(self, name: str) -> None:
        """Delete an assistant."""
        self.delete_record("assistants", name)

    # === Documents ===

    def add_documents(self, case_id: str, files: Iterable[tuple[str, bytes]]) -> list[CaseDocument]:
        """Attach files to a case.

        Payloads are stored locally at once and uploaded by the next cycle.

        Args:
            case_id: Id of the case.
            files: (file name, content) pairs.

        Returns:
            The new documents, in PENDING_UPLOAD.
        """
        millis = int(time.time() * 1000)
        now = self.now()
        documents = []
        for index, (name, content) in enumerate(files):
            doc_id = f"doc-{millis}-{index}"
            extension = PurePath(name).suffix
            content_type, _ = mimetypes.guess_type(name)
            document = CaseDocument(
                id=doc_id,
                case_id=case_id,
                user_id=self._owner_id,
                name=name,
                type=content_type or "application/octet-stream",
                size=len(content),
                storage_path=f"{self._owner_id}/{case_id}/{doc_id}{extension}",
                added_at=now,
                updated_at=now,
                local_state=DocumentState.PENDING_UPLOAD,
            )
            self._store.put_document_file(doc_id, content)
            self._store.put_document_metadata(doc_id, document.model_dump(mode="json"))
            documents.append(document)

        if documents:
            self.update(lambda g: g.documents.extend(documents))
        return documents

    def get_document_file(self, doc_id: str) -> bytes | None:
        """Get the locally stored payload of a document."""
        return self._store.get_document_file(doc_id)

    def archived_documents(self) -> list[CaseDocument]:
        """Get documents purged remotely whose payload is still cached here.

        Retention removes old documents from the synchronized data, but this
        device keeps its copy. Archived documents are read with
        get_document_file() until forget_document() drops them.

        Returns:
            The archived documents of this owner.
        """
        live = {doc.id for doc in self._graph.documents}
        prefix = f"{self._owner_id}/"
        return [
            doc
            for doc in parse_items(CaseDocument, self._store.list_document_metadata(), source="archive")
            if doc.id not in live and doc.storage_path.startswith(prefix) and self._store.has_document_file(doc.id)
        ]

    def forget_document(self, doc_id: str) -> None:
        """Drop the cached copy of an archived document from this device."""
        if doc_id not in {doc.id for doc in self.archived_documents()}:
            raise KeyError(f"Archived document not found: {doc_id}")
        self._store.delete_document_file(doc_id)
        self._store.delete_document_metadata(doc_id)

    def delete_document(self, doc_id: str) -> None:
        """Delete a document everywhere, payload included."""
        document = next((d for d in self._graph.documents if d.id == doc_id), None)
        if document is None:
            raise KeyError(f"Document not found: {doc_id}")
        self._store.delete_document_file(doc_id)
        self._store.delete_document_metadata(doc_id)
        self.update(lambda g: _remove(g.documents, doc_id))
        self.deletions.record_document(doc_id, document.storage_path)

    def exclude_document(self, doc_id: str) -> None:
        """Remove a document from this device only.

        The remote copy stays and is no longer merged into this device.
        """
        self._store.add_excluded_document(self._owner_id, doc_id)
        self._store.delete_document_file(doc_id)
        self._store.delete_document_metadata(doc_id)
        self.update(lambda g: _remove(g.documents, doc_id), mark_dirty=False)

    # === Sessions ===

    def postpone_session(self, session_id: str, new_date: datetime, reason: str) -> Session:
        """Postpone a session to a new date.

        The session is marked postponed and a new session is added to the
        same stage, whose timestamp is refreshed too.

        Args:
            session_id: Id of the session to postpone.
            new_date: Date of the new session.
            reason: Postponement reason.

        Returns:
            The new session.
        """
        now = self.now()
        _, old = self._find(self.iter_sessions(), session_id, "Session")
        new_session = Session(
            id=f"session-{int(time.time() * 1000)}",
            court=old.court,
            case_number=old.case_number,
            date=new_date,
            client_name=old.client_name,
            opponent_name=old.opponent_name,
            postponement_reason=reason,
            is_postponed=False,
            assignee=old.assignee,
            updated_at=now,
        )
        postponed = old.model_copy(
            update={
                "is_postponed": True,
                "next_session_date": new_date,
                "next_postponement_reason": reason,
                "updated_at": now,
            }
        )

        def mutate(graph: AppData) -> None:
            stage, _ = self._find(self.iter_sessions(graph), session_id, "Session")
            stage.sessions = [postponed if s.id == session_id else s for s in stage.sessions]
            stage.sessions.append(new_session)
            stage.updated_at = now

        self.update(mutate)
        return new_session
