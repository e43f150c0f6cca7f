"""Tests for automatic sync triggering."""

from __future__ import annotations

import asyncio

import pytest
from conftest import OWNER_ID, FakeRemote

from casesync.client.data import OfficeData
from casesync.client.sync.orchestrator import SyncOrchestrator
from casesync.client.sync.scheduler import AutoSyncScheduler
from casesync.core.config import SyncSettings
from casesync.core.schemas import Client
from casesync.core.types import SyncStatus


async def settle_for(seconds: float = 0.1) -> None:
    await asyncio.sleep(seconds)


@pytest.fixture
def scheduler(
    orchestrator: SyncOrchestrator, data: OfficeData, remote: FakeRemote, settings: SyncSettings
) -> AutoSyncScheduler:
    """Create a scheduler with short timers."""
    return AutoSyncScheduler(orchestrator, data, remote, settings)


class TestAutoSync:
    """Tests for AutoSyncScheduler."""

    @pytest.mark.asyncio
    async def test_initial_sync_on_start(
        self, scheduler: AutoSyncScheduler, orchestrator: SyncOrchestrator
    ) -> None:
        """Should run a cycle when started."""
        await scheduler.start()
        try:
            assert orchestrator.status == SyncStatus.SYNCED
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_mutation_triggers_debounced_sync(
        self, scheduler: AutoSyncScheduler, data: OfficeData, remote: FakeRemote
    ) -> None:
        """Should sync shortly after a local mutation."""
        await scheduler.start()
        try:
            data.save_client(Client(id="c1", name="Ali"))
            assert remote.ids("clients") == []

            await settle_for()

            assert remote.ids("clients") == ["c1"]
            assert data.is_dirty is False
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_burst_of_mutations_debounced(
        self, scheduler: AutoSyncScheduler, data: OfficeData, remote: FakeRemote
    ) -> None:
        """Should coalesce a burst of mutations into one cycle."""
        await scheduler.start()
        try:
            remote.calls.clear()
            for i in range(5):
                data.save_client(Client(id=f"c{i}", name="Client"))

            await settle_for()

            assert remote.calls.count("check_schema") == 1
            assert len(remote.ids("clients")) == 5
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_disabled_auto_sync(
        self, scheduler: AutoSyncScheduler, data: OfficeData, remote: FakeRemote
    ) -> None:
        """Should not sync on mutation when auto-sync is off."""
        await scheduler.start()
        try:
            scheduler.auto_sync = False
            data.save_client(Client(id="c1", name="Ali"))

            await settle_for()

            assert remote.ids("clients") == []
            assert data.is_dirty is True
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_unconfigured_never_schedules(self, data: OfficeData, settings: SyncSettings) -> None:
        """Should not schedule syncs without a remote store."""
        orchestrator = SyncOrchestrator(data, None, user_id=OWNER_ID, settings=settings)
        scheduler = AutoSyncScheduler(orchestrator, data, None, settings)
        await scheduler.start()
        try:
            data.save_client(Client(id="c1", name="Ali"))
            await settle_for(0.05)

            assert orchestrator.status == SyncStatus.UNCONFIGURED
            assert data.is_dirty is True
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_offline_pauses_and_reconnect_syncs(
        self, scheduler: AutoSyncScheduler, data: OfficeData, remote: FakeRemote
    ) -> None:
        """Should pause while offline and sync once the remote store is back."""
        await scheduler.start()
        try:
            remote.online = False
            await settle_for(0.05)
            assert scheduler.is_online is False

            data.save_client(Client(id="c1", name="Ali"))
            await settle_for(0.05)
            assert remote.ids("clients") == []

            remote.online = True
            await settle_for()

            assert scheduler.is_online is True
            assert remote.ids("clients") == ["c1"]
            assert data.is_dirty is False
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_unsubscribes(
        self, scheduler: AutoSyncScheduler, data: OfficeData, remote: FakeRemote
    ) -> None:
        """Should ignore mutations after stop."""
        await scheduler.start()
        await scheduler.stop()

        data.save_client(Client(id="c1", name="Ali"))
        await settle_for(0.05)

        assert remote.ids("clients") == []

    @pytest.mark.asyncio
    async def test_manual_sync_now(
        self, scheduler: AutoSyncScheduler, data: OfficeData, remote: FakeRemote
    ) -> None:
        """Should sync immediately on a manual trigger."""
        await scheduler.start()
        try:
            scheduler.auto_sync = False
            data.save_client(Client(id="c1", name="Ali"))

            assert await scheduler.sync_now() is True
            assert remote.ids("clients") == ["c1"]
        finally:
            await scheduler.stop()
