"""Automatic sync triggering.

The scheduler decides when the orchestrator runs:
- once on start,
- after a debounce delay following a local mutation,
- when connectivity comes back after an outage,
- again after a cycle that ended with mutations still pending.

A mutation only schedules a sync when auto-sync is enabled, the remote
store looked reachable at the last probe and the status is neither
SYNCING nor UNCONFIGURED. A mutation during a cycle is picked up once the
cycle settles.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from casesync.client.sync.retry import wait_for_network
from casesync.core.config import SyncSettings
from casesync.core.types import SyncStatus

if TYPE_CHECKING:
    from casesync.client.data import OfficeData
    from casesync.client.sync.orchestrator import SyncOrchestrator
    from casesync.client.sync.types import RemoteDataSource

logger = logging.getLogger(__name__)


class AutoSyncScheduler:
    """Triggers sync cycles on start, mutation and reconnection.

    Usage:
        scheduler = AutoSyncScheduler(orchestrator, data, remote)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        data: OfficeData,
        remote: RemoteDataSource | None,
        settings: SyncSettings | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            orchestrator: Orchestrator to trigger.
            data: Working copy whose mutations schedule syncs.
            remote: Remote store probed for connectivity.
            settings: Debounce, auto-sync and probe interval settings.
        """
        self._orchestrator = orchestrator
        self._data = data
        self._remote = remote
        self._settings = settings or SyncSettings()

        self._online = True
        self._debounce_task: asyncio.Task[None] | None = None
        self._monitor_task: asyncio.Task[None] | None = None
        self._sync_tasks: set[asyncio.Task[bool]] = set()
        self._unsubscribe: list[Callable[[], None]] = []

    @property
    def is_online(self) -> bool:
        """Check if the remote store answered the last probe."""
        return self._online

    @property
    def auto_sync(self) -> bool:
        """Check if mutations schedule a sync."""
        return self._settings.auto_sync

    @auto_sync.setter
    def auto_sync(self, enabled: bool) -> None:
        self._settings.auto_sync = enabled
        if not enabled:
            self._cancel_debounce()

    async def start(self) -> None:
        """Subscribe to mutations, start probing and run the initial sync."""
        self._unsubscribe.append(self._data.add_listener(self.notify_mutation))
        self._unsubscribe.append(self._orchestrator.on_status_change(self._on_status))
        if self._remote is not None:
            self._monitor_task = asyncio.create_task(self._monitor(self._remote))
        await self.sync_now()

    async def stop(self) -> None:
        """Stop scheduling and wait for a running cycle to finish."""
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        for task in (self._debounce_task, self._monitor_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._debounce_task = None
        self._monitor_task = None
        if self._sync_tasks:
            await asyncio.gather(*self._sync_tasks, return_exceptions=True)

    async def sync_now(self) -> bool:
        """Run a sync immediately (manual trigger)."""
        self._cancel_debounce()
        return await self._orchestrator.request_sync()

    def _spawn_sync(self) -> None:
        task = asyncio.create_task(self._orchestrator.request_sync())
        self._sync_tasks.add(task)
        task.add_done_callback(self._sync_tasks.discard)

    def _cancel_debounce(self) -> None:
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None

    def _should_schedule(self) -> bool:
        return (
            self._settings.auto_sync
            and self._online
            and self._data.is_dirty
            and self._orchestrator.status not in (SyncStatus.SYNCING, SyncStatus.UNCONFIGURED)
        )

    def notify_mutation(self) -> None:
        """Schedule a debounced sync after a local mutation."""
        if not self._should_schedule():
            return
        self._cancel_debounce()
        self._debounce_task = asyncio.create_task(self._debounced())

    async def _debounced(self) -> None:
        await asyncio.sleep(self._settings.debounce)
        self._debounce_task = None
        self._spawn_sync()

    def _on_status(self, status: SyncStatus, error: str | None) -> None:
        # Mutations made while the cycle ran were kept dirty.
        if status == SyncStatus.SYNCED and self._data.is_dirty:
            self.notify_mutation()

    def _on_network_lost(self) -> None:
        self._online = False
        logger.info("Remote store unreachable, automatic sync paused")

    def _on_network_restored(self) -> None:
        self._online = True
        logger.info("Remote store reachable again, syncing")
        self._spawn_sync()

    async def _monitor(self, remote: RemoteDataSource) -> None:
        interval = self._settings.health_check_interval
        while True:
            if await remote.health_check():
                await asyncio.sleep(interval)
                continue
            await wait_for_network(
                remote,
                check_interval=interval,
                on_waiting=self._on_network_lost,
                on_restored=self._on_network_restored,
            )
