"""Pydantic schemas for the office data graph and its flat tables.

Graph nodes (Client, Case, Stage, Invoice) carry their nested children.
Flat records (CaseRecord, StageRecord, SessionRecord, InvoiceItemRecord)
carry the id of their immediate parent instead. Unknown columns are kept
as extra fields so that a record survives a round trip through a device
running an older schema.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from casesync.core.types import DocumentState

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

CASE_STATUSES = ("active", "closed", "on_hold")
IMPORTANCE_LEVELS = ("normal", "important", "urgent")
INVOICE_STATUSES = ("draft", "sent", "paid", "overdue")
ENTRY_TYPES = ("income", "expense")


def _choice(value: Any, allowed: tuple[str, ...], default: str) -> str:
    """Return value if it is one of allowed, else the default."""
    return value if value in allowed else default


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# === Base records ===


class SyncRecord(BaseModel):
    """A row that takes part in synchronization.

    Every syncable row has a mutable ``updated_at``, the only conflict
    signal. Missing timestamps are read as the epoch so that any dated
    copy of the same record wins over them.
    """

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    key_field: ClassVar[str] = "id"

    updated_at: datetime = EPOCH

    @field_validator("updated_at", mode="before")
    @classmethod
    def _default_updated_at(cls, value: Any) -> Any:
        return EPOCH if value in (None, "") else value

    @field_validator("updated_at", mode="after")
    @classmethod
    def _updated_at_aware(cls, value: datetime) -> datetime:
        return _aware(value)  # type: ignore[return-value]

    @property
    def key(self) -> str:
        """Identity of the record within its table."""
        return getattr(self, self.key_field)


class Record(SyncRecord):
    """A syncable row identified by an immutable id."""

    id: str


# === Leaf tables ===


class Session(Record):
    """A court session."""

    court: str = ""
    case_number: str = ""
    date: datetime | None = None
    client_name: str = ""
    opponent_name: str = ""
    postponement_reason: str | None = None
    next_postponement_reason: str | None = None
    is_postponed: bool = False
    next_session_date: datetime | None = None
    assignee: str | None = None

    @field_validator("date", "next_session_date", mode="after")
    @classmethod
    def _dates_aware(cls, value: datetime | None) -> datetime | None:
        return _aware(value)


class SessionRecord(Session):
    """Flat session row."""

    stage_id: str


class InvoiceItem(Record):
    """A line of an invoice."""

    description: str = ""
    amount: float = 0.0


class InvoiceItemRecord(InvoiceItem):
    """Flat invoice item row."""

    invoice_id: str


class AdminTask(Record):
    """An administrative task of the office."""

    task: str = ""
    due_date: datetime | None = None
    completed: bool = False
    importance: str = "normal"
    assignee: str | None = None
    location: str | None = None
    order_index: int = 0

    @field_validator("importance", mode="before")
    @classmethod
    def _importance(cls, value: Any) -> str:
        return _choice(value, IMPORTANCE_LEVELS, "normal")


class Appointment(Record):
    """A calendar appointment."""

    title: str = ""
    time: str = "00:00"
    date: datetime | None = None
    importance: str = "normal"
    completed: bool = False
    notified: bool = False
    reminder_time_in_minutes: int = 15
    assignee: str | None = None

    @field_validator("importance", mode="before")
    @classmethod
    def _importance(cls, value: Any) -> str:
        return _choice(value, IMPORTANCE_LEVELS, "normal")


class AccountingEntry(Record):
    """An income or expense entry."""

    type: str = "income"
    amount: float = 0.0
    date: datetime | None = None
    description: str = ""
    client_id: str = ""
    case_id: str = ""
    client_name: str = ""

    @field_validator("type", mode="before")
    @classmethod
    def _entry_type(cls, value: Any) -> str:
        return _choice(value, ENTRY_TYPES, "income")


class Assistant(SyncRecord):
    """A delegated assistant, identified by name."""

    key_field: ClassVar[str] = "name"

    name: str


class CaseDocument(Record):
    """Metadata of a document attached to a case.

    ``local_state`` is device-local and never leaves the device. Rows read
    from the remote store have no payload yet, hence the default.
    """

    case_id: str = ""
    user_id: str | None = None
    name: str = ""
    type: str = "application/octet-stream"
    size: int = 0
    storage_path: str = ""
    added_at: datetime | None = None
    local_state: DocumentState = DocumentState.PENDING_DOWNLOAD

    @field_validator("added_at", mode="after")
    @classmethod
    def _added_at_aware(cls, value: datetime | None) -> datetime | None:
        return _aware(value)


class Profile(Record):
    """A user profile. ``lawyer_id`` links an assistant to its lawyer."""

    full_name: str | None = None
    role: str | None = None
    lawyer_id: str | None = None


class SiteFinancialEntry(Record):
    """A financial entry of the hosting site."""


# === Nested tables ===


class StageFields(Record):
    """Columns of a litigation stage."""

    court: str = ""
    case_number: str = ""
    first_session_date: datetime | None = None
    decision_date: datetime | None = None
    decision_number: str = ""
    decision_summary: str = ""
    decision_notes: str = ""


class Stage(StageFields):
    sessions: list[Session] = Field(default_factory=list)


class StageRecord(StageFields):
    case_id: str


class CaseFields(Record):
    """Columns of a case."""

    subject: str = ""
    client_name: str = ""
    opponent_name: str = ""
    fee_agreement: str = ""
    status: str = "active"

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value: Any) -> str:
        return _choice(value, CASE_STATUSES, "active")


class Case(CaseFields):
    stages: list[Stage] = Field(default_factory=list)


class CaseRecord(CaseFields):
    client_id: str


class ClientRecord(Record):
    """Columns of a client."""

    name: str
    contact_info: str = ""


class Client(ClientRecord):
    cases: list[Case] = Field(default_factory=list)


class InvoiceRecord(Record):
    """Columns of an invoice."""

    client_id: str = ""
    client_name: str = ""
    case_id: str | None = None
    case_subject: str | None = None
    issue_date: datetime | None = None
    due_date: datetime | None = None
    tax_rate: float = 0.0
    discount: float = 0.0
    status: str = "draft"
    notes: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value: Any) -> str:
        return _choice(value, INVOICE_STATUSES, "draft")


class Invoice(InvoiceRecord):
    items: list[InvoiceItem] = Field(default_factory=list)


# === Graph ===


class AppData(BaseModel):
    """The full office data graph of one owner."""

    clients: list[Client] = Field(default_factory=list)
    admin_tasks: list[AdminTask] = Field(default_factory=list)
    appointments: list[Appointment] = Field(default_factory=list)
    accounting_entries: list[AccountingEntry] = Field(default_factory=list)
    invoices: list[Invoice] = Field(default_factory=list)
    assistants: list[Assistant] = Field(default_factory=list)
    documents: list[CaseDocument] = Field(default_factory=list)
    profiles: list[Profile] = Field(default_factory=list)
    site_finances: list[SiteFinancialEntry] = Field(default_factory=list)


# Flat row model per wire table name.
TABLE_RECORDS: dict[str, type[SyncRecord]] = {
    "clients": ClientRecord,
    "cases": CaseRecord,
    "stages": StageRecord,
    "sessions": SessionRecord,
    "admin_tasks": AdminTask,
    "appointments": Appointment,
    "accounting_entries": AccountingEntry,
    "assistants": Assistant,
    "invoices": InvoiceRecord,
    "invoice_items": InvoiceItemRecord,
    "case_documents": CaseDocument,
    "profiles": Profile,
    "site_finances": SiteFinancialEntry,
}

TABLES = tuple(TABLE_RECORDS)

# Nested child collection of each graph node type.
CHILDREN: dict[type[BaseModel], tuple[str, type[Record]]] = {
    Client: ("cases", Case),
    Case: ("stages", Stage),
    Stage: ("sessions", Session),
    Invoice: ("items", InvoiceItem),
}

# Fields kept on the device only.
LOCAL_ONLY_FIELDS: dict[str, set[str]] = {
    "case_documents": {"local_state"},
}

# Tables whose rows are not stamped with the owner id on upsert.
UNOWNED_TABLES = frozenset({"profiles", "site_finances"})


def parse_items(model: type[SyncRecord], items: Any, source: str = "local") -> list[Any]:
    """Validate a list of raw items, dropping the malformed ones.

    Nested child collections are validated item by item too, so a bad
    session drops only that session and not its whole client.

    Args:
        model: Model to validate each item against.
        items: Raw list (anything else yields an empty list).
        source: Where the items come from, for log messages.

    Returns:
        The valid items as model instances.
    """
    if not isinstance(items, list):
        if items is not None:
            logger.warning(f"Expected a list of {model.__name__} from {source}, got {type(items).__name__}")
        return []

    result = []
    for raw in items:
        if isinstance(raw, model):
            result.append(raw)
            continue
        if not isinstance(raw, dict):
            logger.warning(f"Dropping malformed {model.__name__} from {source}: {raw!r}")
            continue

        data = dict(raw)
        child = CHILDREN.get(model)
        if child is not None:
            attr, child_model = child
            data[attr] = parse_items(child_model, data.get(attr), source)

        try:
            result.append(model.model_validate(data))
        except ValidationError as e:
            logger.warning(
                f"Dropping invalid {model.__name__} {data.get(model.key_field)!r} "
                f"from {source}: {e.error_count()} error(s)"
            )
    return result


def parse_records(table: str, rows: Iterable[Any]) -> list[SyncRecord]:
    """Validate rows fetched from a remote table.

    Args:
        table: Wire name of the table.
        rows: Raw rows as returned by the remote store.

    Returns:
        The valid rows as flat record instances.
    """
    return parse_items(TABLE_RECORDS[table], list(rows), source=f"remote {table}")


def parse_assistants(items: Any) -> list[Assistant]:
    """Validate assistants, accepting bare names from older replicas."""
    if isinstance(items, list):
        items = [{"name": item} if isinstance(item, str) else item for item in items]
    return parse_items(Assistant, items)


def parse_graph(raw: Any) -> AppData:
    """Validate a stored graph record by record.

    Missing or malformed top-level collections default to empty lists.

    Args:
        raw: Graph as loaded from the replica store.

    Returns:
        A validated AppData graph.
    """
    if not isinstance(raw, dict):
        return AppData()
    return AppData(
        clients=parse_items(Client, raw.get("clients")),
        admin_tasks=parse_items(AdminTask, raw.get("admin_tasks")),
        appointments=parse_items(Appointment, raw.get("appointments")),
        accounting_entries=parse_items(AccountingEntry, raw.get("accounting_entries")),
        invoices=parse_items(Invoice, raw.get("invoices")),
        assistants=parse_assistants(raw.get("assistants")),
        documents=parse_items(CaseDocument, raw.get("documents")),
        profiles=parse_items(Profile, raw.get("profiles")),
        site_finances=parse_items(SiteFinancialEntry, raw.get("site_finances")),
    )


def to_wire(table: str, record: SyncRecord) -> dict[str, Any]:
    """Serialize a flat record for the remote store, without local fields."""
    return record.model_dump(mode="json", exclude=LOCAL_ONLY_FIELDS.get(table))
