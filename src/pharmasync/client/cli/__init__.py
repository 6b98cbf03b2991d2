"""Command-line interface for PharmaSync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Store backend URL, API key and client id
- status: Show last sync time and pending mutations
- queue: List pending mutations
- enqueue: Record a local mutation and queue it for sync
- sync: Run one incremental sync
- backup: Push the whole local dataset
- pull: Count active remote records
"""

from __future__ import annotations

import logging

import click

from pharmasync.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_state_db,
    load_config,
    save_config,
)
from pharmasync.client.cli.configure import configure
from pharmasync.client.cli.queue import enqueue, queue, status
from pharmasync.client.cli.sync import backup, pull, sync


@click.group()
@click.version_option(package_name="pharmasync")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """PharmaSync - offline-first sync for pharmacy data."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


cli.add_command(configure)

# Queue commands
cli.add_command(status)
cli.add_command(queue)
cli.add_command(enqueue)

# Sync commands
cli.add_command(sync)
cli.add_command(backup)
cli.add_command(pull)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "get_config_dir",
    "get_config_file",
    "get_state_db",
    "load_config",
    "save_config",
]
