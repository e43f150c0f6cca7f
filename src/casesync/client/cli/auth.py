"""Setup and authentication commands for casesync CLI.

Commands:
- configure: Set the remote service URL and API key
- login: Sign in and hydrate the local replica
- logout: Forget the signed-in user
"""

from __future__ import annotations

import asyncio
import sys

import click

from casesync.client.cli.config import (
    get_remote_config,
    get_state_db,
    load_config,
    save_config,
)
from casesync.client.credentials import (
    CredentialsError,
    clear_access_token,
    save_access_token,
)


@click.command()
@click.option("--url", required=True, help="Remote service URL (e.g., https://project.example.co).")
@click.option("--api-key", required=True, help="Public API key of the remote service.")
@click.option("--bucket", default=None, help="Storage bucket for documents (default: documents).")
def configure(url: str, api_key: str, bucket: str | None) -> None:
    """Configure the remote service.

    Without a URL and an API key every sync ends in the
    'unconfigured' state.
    """
    config = load_config()
    config["url"] = url.rstrip("/")
    config["api_key"] = api_key
    if bucket:
        config["storage_bucket"] = bucket
    save_config(config)
    click.echo(f"Remote service set to {config['url']}")


@click.command()
@click.option("--email", required=True, help="Account email.")
@click.password_option("--password", confirmation_prompt=False, help="Account password.")
def login(email: str, password: str) -> None:
    """Sign in and download the office data on first use."""
    from casesync.client.api import RemoteStore
    from casesync.client.session import SyncSession
    from casesync.client.state import LocalReplicaStore
    from casesync.core.errors import SyncError

    config = load_config()
    remote_config = get_remote_config(config)
    if remote_config is None:
        click.echo("Error: Remote service not configured. Run 'casesync configure' first.", err=True)
        sys.exit(1)

    async def sign_in() -> str:
        async with RemoteStore(remote_config) as anonymous:
            auth = await anonymous.sign_in(email, password)
        save_access_token(auth.user_id, auth.access_token)

        remote_config.access_token = auth.access_token
        store = LocalReplicaStore(get_state_db())
        session = SyncSession(auth.user_id, store, RemoteStore(remote_config))
        try:
            orchestrator = await session.open(hydrate=True)
            if orchestrator.last_error:
                click.echo(f"Warning: {orchestrator.last_error}", err=True)
        finally:
            await session.close()
            store.close()
        return auth.user_id

    try:
        user_id = asyncio.run(sign_in())
    except (SyncError, CredentialsError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    config["user_id"] = user_id
    config["email"] = email
    save_config(config)
    click.echo(f"Signed in as {email}")


@click.command()
def logout() -> None:
    """Sign out. The local replica is kept on this device."""
    config = load_config()
    user_id = config.pop("user_id", None)
    config.pop("email", None)
    if user_id is None:
        click.echo("Not signed in.")
        return
    clear_access_token(user_id)
    save_config(config)
    click.echo("Signed out.")
