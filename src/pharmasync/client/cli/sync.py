"""Sync commands for PharmaSync CLI.

Commands:
- sync: Run one incremental sync of the queue
- backup: Push the whole local dataset
- pull: Count active remote records
"""

from __future__ import annotations

import asyncio
import sys
from typing import TYPE_CHECKING

import click

from pharmasync.client.api import APIError
from pharmasync.client.cli.config import build_service, load_config
from pharmasync.client.sync.types import SyncError

if TYPE_CHECKING:
    from pharmasync.client.service import SyncService
    from pharmasync.client.sync.types import BackupResult, SyncResult
    from pharmasync.core.types import EntityType


def _require_client_id(config: dict[str, str]) -> str:
    client_id = config.get("client_id")
    if not client_id:
        click.echo("Error: No client id. Run 'pharmasync configure --client-id ...'.", err=True)
        sys.exit(1)
    return client_id


async def _connect(service: SyncService, client_id: str) -> bool:
    """Initialize identity without background triggers and probe the backend."""
    service.initialize(client_id, auto_sync=False)
    return await service.connectivity.check_connectivity()


@click.command()
def sync() -> None:
    """Upload queued mutations to the backend."""
    config = load_config()
    client_id = _require_client_id(config)
    service = build_service(config)

    async def run() -> SyncResult:
        try:
            await _connect(service, client_id)
            return await service.sync_now()
        finally:
            await service.aclose()

    result = asyncio.run(run())

    click.echo(f"Synced: {result.synced_count}, failed: {result.failed_count}")
    for error in result.errors:
        prefix = f"{error.local_id}: " if error.local_id else ""
        click.echo(f"  {prefix}{error.error}", err=True)

    if not result.success:
        sys.exit(1)


@click.command()
def backup() -> None:
    """Push every local medicine and bill to the backend."""
    config = load_config()
    client_id = _require_client_id(config)
    service = build_service(config)

    async def run() -> BackupResult:
        try:
            await _connect(service, client_id)
            with click.progressbar(length=0, label="Backing up") as bar:

                def on_progress(current: int, total: int, entity_type: EntityType) -> None:
                    bar.length = total
                    bar.label = f"Backing up {entity_type.value}s"
                    bar.update(current - bar.pos)

                return await service.push_all(on_progress)
        finally:
            await service.aclose()

    try:
        result = asyncio.run(run())
    except SyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Medicines: {result.medicines}, bills: {result.bills}")
    for error in result.errors:
        click.echo(f"  {error}", err=True)

    if result.errors:
        sys.exit(1)


@click.command()
def pull() -> None:
    """Count the client's active records on the backend."""
    config = load_config()
    client_id = _require_client_id(config)
    service = build_service(config)

    async def run() -> dict[str, int]:
        try:
            service.initialize(client_id, auto_sync=False)
            return await service.pull_from_cloud()
        finally:
            await service.aclose()

    try:
        counts = asyncio.run(run())
    except APIError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Medicines: {counts['medicines']}, bills: {counts['bills']}")
