"""Sync commands for casesync CLI.

Commands:
- sync: Run one sync cycle (or keep syncing with --watch)
- refresh: Replace the local replica with the remote data
- status: Show the state of the local replica
"""

from __future__ import annotations

import asyncio
import sys
from collections import Counter

import click

from casesync.client.cli.config import (
    get_remote_config,
    get_state_db,
    load_config,
)
from casesync.client.credentials import load_access_token
from casesync.client.state import LocalReplicaStore
from casesync.core.types import SyncStatus


def _require_user(config: dict[str, str]) -> str:
    user_id = config.get("user_id")
    if not user_id:
        click.echo("Error: Not signed in. Run 'casesync login' first.", err=True)
        sys.exit(1)
    return user_id


async def _run(user_id: str, config: dict[str, str], refresh: bool, watch: bool) -> tuple[SyncStatus, str | None]:
    from casesync.client.api import RemoteStore
    from casesync.client.session import SyncSession

    remote_config = get_remote_config(config, load_access_token(user_id))
    remote = RemoteStore(remote_config) if remote_config else None
    store = LocalReplicaStore(get_state_db())
    session = SyncSession(user_id, store, remote)
    try:
        orchestrator = await session.open(hydrate=False)
        if refresh:
            await orchestrator.refresh()
        elif watch:
            await session.start_auto_sync()
            click.echo("Watching for changes (Ctrl+C to stop)...")
            await asyncio.Event().wait()
        else:
            await orchestrator.request_sync()
        stats = orchestrator.last_stats
        if stats is not None and orchestrator.status == SyncStatus.SYNCED:
            click.echo(
                f"{stats.upserted} upserted, {stats.deleted} deleted, "
                f"{stats.uploaded} uploaded, {stats.tombstoned} removed by remote deletions"
            )
        return orchestrator.status, orchestrator.last_error
    finally:
        await session.close()
        store.close()


def _report(status: SyncStatus, error: str | None) -> None:
    if status == SyncStatus.SYNCED:
        click.echo("Synced.")
        return
    click.echo(f"Error ({status.value}): {error}", err=True)
    sys.exit(1)


@click.command()
@click.option("--watch", "-w", is_flag=True, help="Keep syncing on changes and reconnection.")
def sync(watch: bool) -> None:
    """Synchronize the local replica with the remote service."""
    config = load_config()
    user_id = _require_user(config)
    try:
        status, error = asyncio.run(_run(user_id, config, refresh=False, watch=watch))
    except KeyboardInterrupt:
        click.echo("\nStopped.")
        return
    _report(status, error)


@click.command()
def refresh() -> None:
    """Replace the local replica with a full download of the remote data."""
    config = load_config()
    user_id = _require_user(config)
    status, error = asyncio.run(_run(user_id, config, refresh=True, watch=False))
    _report(status, error)


@click.command()
def status() -> None:
    """Show the state of the local replica without contacting the service."""
    from casesync.client.data import OfficeData

    config = load_config()
    user_id = _require_user(config)

    store = LocalReplicaStore(get_state_db())
    try:
        owner_id = store.get_setting(f"owner:{user_id}") or user_id
        data = OfficeData(store, owner_id)
        graph = data.load()
        pending = data.deletions.pending()
        documents = Counter(doc.local_state.value for doc in graph.documents)
    finally:
        store.close()

    click.echo(f"User:               {user_id}")
    if owner_id != user_id:
        click.echo(f"Working on data of: {owner_id}")
    click.echo(f"Remote service:     {config.get('url') or 'not configured'}")
    click.echo(f"Local replica:      {'present' if data.has_replica else 'empty'}")
    click.echo(f"Unsynced changes:   {'yes' if data.is_dirty else 'no'}")
    click.echo(f"Pending deletions:  {pending.count()}")
    click.echo(f"Clients:            {len(graph.clients)}")
    click.echo(f"Cases:              {sum(len(c.cases) for c in graph.clients)}")
    click.echo(f"Invoices:           {len(graph.invoices)}")
    for state, count in sorted(documents.items()):
        click.echo(f"Documents {state + ':':<17}{count}")
