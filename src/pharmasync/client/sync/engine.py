"""Sync engine draining the durable queue against the remote store.

This module provides:
- SyncEngine: Runs incremental sync with per-item retry accounting

Run lifecycle:
    IDLE → RUNNING → COMPLETED | FAILED

Only one run is in flight at a time. The in-progress flag is set before
the first await, so an enqueue that fires mid-run cannot start a second
run. The flag is a SyncActivity shared with the backup pipeline, so a
run never starts while a backup is in flight either. A rejected start
is reported through SyncResult.outcome rather than raised.

Per item:
    create/update → upsert keyed by (client_id, local_id)
    delete        → soft delete (deleted_at set remotely)
    success       → remove from queue
    failure       → retry_count += 1; at max_retries remove and report,
                    otherwise save back to the queue for a later run
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from pharmasync.client.sync.types import (
    RunOutcome,
    RunState,
    SyncActivity,
    SyncItemError,
    SyncNotInitialized,
    SyncQueueItem,
    SyncResult,
    utc_now,
)
from pharmasync.core.config import DEFAULT_MAX_RETRIES
from pharmasync.core.types import EntityType, SyncOperation

if TYPE_CHECKING:
    from pharmasync.client.api import RemoteStore
    from pharmasync.client.connectivity import ConnectivityMonitor
    from pharmasync.client.status import StatusBroadcaster
    from pharmasync.client.sync.queue import DurableQueue

logger = logging.getLogger(__name__)


class SyncEngine:
    """Coordinates incremental synchronization of queued mutations."""

    def __init__(
        self,
        queue: DurableQueue,
        remote: RemoteStore,
        connectivity: ConnectivityMonitor,
        broadcaster: StatusBroadcaster,
        max_retries: int = DEFAULT_MAX_RETRIES,
        activity: SyncActivity | None = None,
    ) -> None:
        """Initialize the sync engine.

        Args:
            queue: Durable queue owning the pending items.
            remote: Remote store client.
            connectivity: Source of the online/offline state.
            broadcaster: Status hub notified after every state change.
            max_retries: Failed attempts before an item is abandoned.
            activity: In-progress flag shared with the backup pipeline.
        """
        self._queue = queue
        self._remote = remote
        self._connectivity = connectivity
        self._broadcaster = broadcaster
        self._max_retries = max_retries

        self._client_id: str | None = None
        self._activity = activity or SyncActivity()
        self._state = RunState.IDLE
        self._tasks: set[asyncio.Task[SyncResult]] = set()

    @property
    def client_id(self) -> str | None:
        return self._client_id

    @property
    def is_initialized(self) -> bool:
        return self._client_id is not None

    @property
    def is_running(self) -> bool:
        """True while a sync run or a backup holds the in-progress flag."""
        return self._activity.busy

    @property
    def state(self) -> RunState:
        """State of the current or most recent run."""
        return self._state

    def initialize(self, client_id: str) -> None:
        """Set the client identity that namespaces all remote rows."""
        if not client_id:
            raise ValueError("client_id must not be empty")
        self._client_id = client_id
        logger.info("Sync initialized for client: %s", client_id)

    def stop(self) -> None:
        """Drop the client identity; later runs are rejected until re-initialized."""
        self._client_id = None
        logger.info("Sync stopped")

    # === Producers ===

    async def queue_sync(
        self,
        entity_type: EntityType | str,
        local_id: str,
        operation: SyncOperation | str,
        payload: Any = None,
    ) -> SyncQueueItem:
        """Queue a local mutation for upload.

        This is the only write entry point for producers. When online,
        initialized and idle, a sync run is started in the background.

        Returns:
            The queued item.
        """
        item = SyncQueueItem.create(entity_type, local_id, operation, payload)
        self._queue.enqueue(item)
        self._broadcaster.publish(pending_count=self._queue.count())

        if self._connectivity.is_online and self.is_initialized and not self.is_running:
            self.schedule_run()

        return item

    def handle_connectivity_change(self, online: bool) -> None:
        """Connectivity subscriber: start a run when coming online."""
        if online:
            logger.info("Network online - starting sync")
            self.schedule_run()

    def schedule_run(self) -> asyncio.Task[SyncResult] | None:
        """Start sync_now() as a background task on the running loop.

        Returns:
            The task, or None when no event loop is running.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, sync run not scheduled")
            return None

        task = loop.create_task(self.sync_now())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def join(self) -> None:
        """Wait for background runs started by schedule_run()."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    # === Sync run ===

    async def sync_now(self) -> SyncResult:
        """Run one sync pass over the current queue.

        Never raises: preconditions and unexpected errors are reported
        through the returned SyncResult.
        """
        client_id = self._client_id
        if client_id is None:
            return SyncResult.rejected(RunOutcome.NOT_INITIALIZED, "Sync not initialized")
        if self._activity.busy:
            return SyncResult.rejected(RunOutcome.ALREADY_RUNNING, "Sync already in progress")
        if not self._connectivity.is_online:
            return SyncResult.rejected(RunOutcome.OFFLINE, "Offline")

        self._activity.begin("sync")
        self._state = RunState.RUNNING
        try:
            self._broadcaster.publish(syncing=True)
            result = await self._process_queue(client_id)
        except Exception as e:
            logger.exception("Sync run failed")
            result = SyncResult(
                success=False,
                failed_count=1,
                errors=[SyncItemError(local_id="", error=str(e))],
                outcome=RunOutcome.FAILED,
            )
            self._state = RunState.FAILED
            self._broadcaster.publish(
                syncing=False,
                pending_count=self._queue.count(),
                error=str(e),
            )
            return result
        finally:
            self._activity.end()

        self._state = RunState.COMPLETED if result.success else RunState.FAILED
        self._broadcaster.publish(
            syncing=False,
            last_synced_at=utc_now(),
            pending_count=self._queue.count(),
            error=None if result.success else _summarize(result),
        )
        self._broadcaster.save_snapshot(result)

        logger.info(
            "Sync run finished: %d synced, %d failed, %d pending",
            result.synced_count,
            result.failed_count,
            self._queue.count(),
        )
        return result

    async def _process_queue(self, client_id: str) -> SyncResult:
        """Upload every item of the current queue snapshot in order."""
        synced_count = 0
        failed_count = 0
        errors: list[SyncItemError] = []

        for item in self._queue.drain():
            try:
                await self._sync_item(item, client_id)
            except Exception as e:
                message = str(e) or type(e).__name__
                item.retry_count += 1
                item.last_error = message

                if item.retry_count >= self._max_retries:
                    logger.warning(
                        "Giving up on %r after %d attempts: %s",
                        item,
                        item.retry_count,
                        message,
                    )
                    self._queue.remove(item.id)
                    errors.append(SyncItemError(local_id=item.local_id, error=message))
                    failed_count += 1
                else:
                    logger.warning(
                        "Failed to sync %r (attempt %d/%d): %s",
                        item,
                        item.retry_count,
                        self._max_retries,
                        message,
                    )
                    self._queue.update(item)
                continue

            self._queue.remove(item.id)
            synced_count += 1
            logger.debug("Synced %r", item)

        return SyncResult(
            success=failed_count == 0,
            synced_count=synced_count,
            failed_count=failed_count,
            errors=errors,
            outcome=RunOutcome.COMPLETED if failed_count == 0 else RunOutcome.FAILED,
        )

    async def _sync_item(self, item: SyncQueueItem, client_id: str) -> None:
        """Upload a single item to the remote store."""
        table = item.entity_type.table_name
        now = utc_now()

        if item.operation is SyncOperation.DELETE:
            await self._remote.soft_delete(table, client_id, item.local_id, now)
        else:
            await self._remote.upsert(
                table,
                [{
                    "client_id": client_id,
                    "local_id": item.local_id,
                    "data": item.payload,
                    "synced_at": now,
                }],
            )

    # === Pull ===

    async def pull_from_cloud(self) -> dict[str, int]:
        """Count the client's active remote medicines and bills.

        Raises:
            SyncNotInitialized: If no client identity is set.
            APIError: If the remote store rejects the request.
        """
        if self._client_id is None:
            raise SyncNotInitialized()

        medicines = await self._remote.select_active(
            EntityType.MEDICINE.table_name, self._client_id
        )
        bills = await self._remote.select_active(EntityType.BILL.table_name, self._client_id)
        return {"medicines": len(medicines), "bills": len(bills)}


def _summarize(result: SyncResult) -> str:
    """One-line error for the status channel."""
    if len(result.errors) == 1:
        return result.errors[0].error
    return f"{result.failed_count} items failed to sync"
