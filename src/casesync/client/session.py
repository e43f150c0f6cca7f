"""Sync session of one signed-in user.

A session wires the replica store, the working copy, the remote store and
the orchestrator together for one authenticated user. The effective owner
is resolved once and cached per user: an assistant whose profile carries a
``lawyer_id`` works on the lawyer's data.

Closing the session discards the orchestrator. The local replica stays
on disk for the next sign-in.
"""

from __future__ import annotations

import logging

from casesync.client.data import OfficeData
from casesync.client.state import LocalReplicaStore
from casesync.client.sync.orchestrator import SyncOrchestrator
from casesync.client.sync.scheduler import AutoSyncScheduler
from casesync.client.sync.types import DocumentCallback, RemoteDataSource
from casesync.core.config import SyncSettings
from casesync.core.errors import SyncError
from casesync.core.schemas import Profile, parse_records

logger = logging.getLogger(__name__)


class SyncSession:
    """Per-user container of the sync engine."""

    def __init__(
        self,
        user_id: str,
        store: LocalReplicaStore,
        remote: RemoteDataSource | None,
        settings: SyncSettings | None = None,
        on_uploaded: DocumentCallback | None = None,
    ) -> None:
        """Initialize the session. Call open() before use.

        Args:
            user_id: Id of the signed-in user.
            store: Local replica store.
            remote: Remote store, or None when no endpoint is configured.
            settings: Sync tunables.
            on_uploaded: Called once per document whose upload is committed.
        """
        self._user_id = user_id
        self._store = store
        self._remote = remote
        self._settings = settings or SyncSettings()
        self._on_uploaded = on_uploaded

        self._data: OfficeData | None = None
        self._orchestrator: SyncOrchestrator | None = None
        self._scheduler: AutoSyncScheduler | None = None

    @property
    def user_id(self) -> str:
        """Get the signed-in user id."""
        return self._user_id

    @property
    def data(self) -> OfficeData:
        """Get the working copy (session must be open)."""
        if self._data is None:
            raise RuntimeError("Session is not open")
        return self._data

    @property
    def orchestrator(self) -> SyncOrchestrator:
        """Get the orchestrator (session must be open)."""
        if self._orchestrator is None:
            raise RuntimeError("Session is not open")
        return self._orchestrator

    @property
    def scheduler(self) -> AutoSyncScheduler | None:
        """Get the auto-sync scheduler, if started."""
        return self._scheduler

    @property
    def _owner_key(self) -> str:
        return f"owner:{self._user_id}"

    async def resolve_owner(self) -> str:
        """Resolve the effective owner of the user's data.

        The result is cached per user. When the profile cannot be read,
        the user's own id is used for this session without caching.

        Returns:
            The lawyer id of the user's profile, or the user id.
        """
        cached = self._store.get_setting(self._owner_key)
        if cached:
            return cached
        if self._remote is None:
            return self._user_id

        try:
            rows = await self._remote.fetch("profiles")
        except SyncError as e:
            logger.warning(f"Cannot read profile of {self._user_id}, using own data: {e}")
            return self._user_id

        profile = next(
            (p for p in parse_records("profiles", rows) if isinstance(p, Profile) and p.id == self._user_id),
            None,
        )
        owner_id = (profile.lawyer_id if profile else None) or self._user_id
        self._store.set_setting(self._owner_key, owner_id)
        if owner_id != self._user_id:
            logger.info(f"User {self._user_id} works on the data of {owner_id}")
        return owner_id

    async def open(self, hydrate: bool = True) -> SyncOrchestrator:
        """Load the owner's replica and build the orchestrator.

        Args:
            hydrate: Run a full refresh when no replica is stored yet.

        Returns:
            The orchestrator of the session.
        """
        owner_id = await self.resolve_owner()
        bind_owner = getattr(self._remote, "bind_owner", None)
        if bind_owner is not None:
            bind_owner(owner_id)

        self._data = OfficeData(self._store, owner_id)
        self._data.load()
        self._orchestrator = SyncOrchestrator(
            self._data,
            self._remote,
            user_id=self._user_id,
            settings=self._settings,
            on_uploaded=self._on_uploaded,
        )

        if hydrate and not self._data.has_replica and self._remote is not None:
            logger.info(f"No local replica for {owner_id}, fetching everything")
            await self._orchestrator.refresh()
        return self._orchestrator

    async def start_auto_sync(self) -> AutoSyncScheduler:
        """Start triggering syncs automatically."""
        self._scheduler = AutoSyncScheduler(self.orchestrator, self.data, self._remote, self._settings)
        await self._scheduler.start()
        return self._scheduler

    async def close(self) -> None:
        """Stop the scheduler and release the remote store."""
        if self._scheduler is not None:
            await self._scheduler.stop()
            self._scheduler = None
        self._orchestrator = None
        close = getattr(self._remote, "close", None)
        if close is not None:
            await close()
