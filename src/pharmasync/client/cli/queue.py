"""Queue commands for PharmaSync CLI.

Commands:
- status: Show last sync time and pending mutations
- queue: List pending mutations
- enqueue: Record a local mutation and queue it for sync
"""

from __future__ import annotations

import asyncio
import json
import sys

import click

from pharmasync.client.cli.config import build_service, get_state_db, load_config
from pharmasync.client.state import LocalState
from pharmasync.client.status import StatusBroadcaster, humanize_last_synced
from pharmasync.client.sync.queue import DurableQueue
from pharmasync.core.types import EntityType, SyncOperation


@click.command()
def status() -> None:
    """Show last sync time and number of pending mutations."""
    with LocalState(get_state_db()) as state:
        snapshot = StatusBroadcaster(state).last_snapshot()
        pending = DurableQueue(state).count()

    click.echo(f"Last synced: {humanize_last_synced(snapshot['lastSyncedAt'])}")
    click.echo(f"Pending:     {pending}")


@click.command()
def queue() -> None:
    """List pending mutations."""
    with LocalState(get_state_db()) as state:
        items = DurableQueue(state).drain()

    if not items:
        click.echo("Queue is empty.")
        return

    for item in items:
        line = (
            f"{item.queued_at}  {item.operation.value:<6}  "
            f"{item.entity_type.value}:{item.local_id}  retries={item.retry_count}"
        )
        if item.last_error:
            line += f"  last_error={item.last_error}"
        click.echo(line)


@click.command()
@click.argument("entity_type", type=click.Choice([e.value for e in EntityType]))
@click.argument("local_id")
@click.argument("operation", type=click.Choice([o.value for o in SyncOperation]))
@click.option("--payload", default=None, help="Record body as JSON (create/update).")
def enqueue(entity_type: str, local_id: str, operation: str, payload: str | None) -> None:
    """Record a local mutation and queue it for sync."""
    entity = EntityType(entity_type)
    op = SyncOperation(operation)

    record = None
    if op is not SyncOperation.DELETE:
        if payload is None:
            click.echo("Error: --payload is required for create/update.", err=True)
            sys.exit(1)
        try:
            record = json.loads(payload)
        except json.JSONDecodeError as e:
            click.echo(f"Error: invalid JSON payload: {e}", err=True)
            sys.exit(1)
        if not isinstance(record, dict):
            click.echo("Error: payload must be a JSON object.", err=True)
            sys.exit(1)
        record.setdefault("id", local_id)

    service = build_service(load_config())

    async def run() -> None:
        try:
            if record is None:
                service.state.delete_record(entity, local_id)
            else:
                service.state.put_record(entity, record)
            await service.queue_sync(entity, local_id, op, record)
        finally:
            await service.aclose()

    asyncio.run(run())
    click.echo(f"Queued {op.value} {entity.value}:{local_id}")
