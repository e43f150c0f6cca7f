"""Command-line interface for casesync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Set the remote service URL and API key
- login: Sign in and download the office data on first use
- logout: Forget the signed-in user
- sync: Synchronize the local replica with the remote service
- refresh: Replace the local replica with the remote data
- status: Show the state of the local replica
"""

from __future__ import annotations

import logging

import click

from casesync.client.cli.auth import configure, login, logout
from casesync.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_remote_config,
    get_state_db,
    load_config,
    save_config,
)
from casesync.client.cli.sync import refresh, status, sync


@click.group()
@click.version_option(package_name="casesync")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logs.")
def cli(verbose: bool) -> None:
    """casesync - Offline-first sync of law office data."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Setup commands
cli.add_command(configure)
cli.add_command(login)
cli.add_command(logout)

# Sync commands
cli.add_command(sync)
cli.add_command(refresh)
cli.add_command(status)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "get_remote_config",
    "get_state_db",
    "load_config",
    "save_config",
]
