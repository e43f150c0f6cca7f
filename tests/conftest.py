"""Shared pytest fixtures.

FakeRemote is an in-memory remote store with the same contract as
RemoteStore: one list of rows per table, a tombstone log and an object
bucket. Failures can be queued per operation and any operation can be
held open with a gate to simulate a slow network.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from casesync.client.data import OfficeData
from casesync.client.state import LocalReplicaStore
from casesync.client.sync.orchestrator import SyncOrchestrator
from casesync.client.sync.types import Tombstone
from casesync.core.config import SyncSettings
from casesync.core.errors import NotFoundError
from casesync.core.schemas import TABLE_RECORDS, TABLES

OWNER_ID = "owner-1"


class FakeRemote:
    """In-memory remote store."""

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {table: [] for table in TABLES}
        self.tombstones: list[Tombstone] = []
        self.objects: dict[str, bytes] = {}
        self.calls: list[str] = []
        self.failures: dict[str, list[Exception]] = defaultdict(list)
        self.gates: dict[str, asyncio.Event] = {}
        self.online = True

    def fail(self, operation: str, *errors: Exception) -> None:
        """Queue errors raised by the next calls of an operation."""
        self.failures[operation].extend(errors)

    def seed(self, table: str, **row: Any) -> dict[str, Any]:
        """Insert a row as another device would."""
        row.setdefault("updated_at", datetime.now(UTC).isoformat())
        self.tables[table].append(row)
        return row

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables[table]

    def ids(self, table: str) -> list[str]:
        key = TABLE_RECORDS[table].key_field
        return [row[key] for row in self.tables[table]]

    async def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        gate = self.gates.get(operation)
        if gate is not None:
            await gate.wait()
        if self.failures[operation]:
            raise self.failures[operation].pop(0)

    async def check_schema(self) -> None:
        await self._enter("check_schema")

    async def fetch(self, table: str) -> list[dict[str, Any]]:
        await self._enter("fetch")
        return [dict(row) for row in self.tables[table]]

    async def fetch_tombstones(self, since: datetime) -> list[Tombstone]:
        await self._enter("fetch_tombstones")
        return [t for t in self.tombstones if t.deleted_at >= since]

    async def upsert(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        await self._enter("upsert")
        key = TABLE_RECORDS[table].key_field
        stored = self.tables[table]
        for row in rows:
            index = next((i for i, existing in enumerate(stored) if existing[key] == row[key]), None)
            if index is None:
                stored.append(dict(row))
            else:
                stored[index] = dict(row)
        return [dict(row) for row in rows]

    async def delete(self, table: str, ids: list[str]) -> None:
        await self._enter("delete")
        key = TABLE_RECORDS[table].key_field
        now = datetime.now(UTC)
        self.tombstones.extend(Tombstone(table=table, record_id=i, deleted_at=now) for i in ids)
        self.tables[table] = [row for row in self.tables[table] if row[key] not in ids]

    async def upload(self, path: str, data: bytes, content_type: str | None = None) -> None:
        await self._enter("upload")
        self.objects[path] = data

    async def download(self, path: str) -> bytes:
        await self._enter("download")
        if path not in self.objects:
            raise NotFoundError(f"Object not found: {path}", 404)
        return self.objects[path]

    async def remove(self, paths: list[str]) -> None:
        await self._enter("remove")
        for path in paths:
            self.objects.pop(path, None)

    async def health_check(self) -> bool:
        return self.online


async def wait_for_call(remote: FakeRemote, operation: str) -> None:
    """Yield to the event loop until the remote received a call."""
    for _ in range(1000):
        if operation in remote.calls:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"{operation} was never called")


@pytest.fixture
def remote() -> FakeRemote:
    """Create an empty in-memory remote store."""
    return FakeRemote()


@pytest.fixture
def settings() -> SyncSettings:
    """Create settings with instant retries and short timers."""
    return SyncSettings(
        max_retries=2,
        initial_backoff=0.0,
        max_backoff=0.0,
        call_timeout=5.0,
        debounce=0.01,
        health_check_interval=0.01,
    )


@pytest.fixture
def store(tmp_path: Path) -> Generator[LocalReplicaStore, None, None]:
    """Create a replica store in a temporary directory."""
    s = LocalReplicaStore(tmp_path / "replica.db")
    yield s
    s.close()


@pytest.fixture
def data(store: LocalReplicaStore) -> OfficeData:
    """Create a loaded working copy for the test owner."""
    d = OfficeData(store, OWNER_ID)
    d.load()
    return d


@pytest.fixture
def orchestrator(data: OfficeData, remote: FakeRemote, settings: SyncSettings) -> SyncOrchestrator:
    """Create an orchestrator wired to the fake remote."""
    return SyncOrchestrator(data, remote, user_id=OWNER_ID, settings=settings)
