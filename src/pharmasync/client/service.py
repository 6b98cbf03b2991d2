"""Sync service wiring.

This module provides:
- SyncService: One object per process holding the queue, connectivity
  monitor, status broadcaster, remote client, engine, backup pipeline
  and periodic scheduler, plus the background connectivity watch

Consumers (UI, CLI) receive the service by reference instead of reaching
for module-level singletons.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pharmasync.client.api import RestClient
from pharmasync.client.connectivity import ConnectivityMonitor
from pharmasync.client.state import LocalState
from pharmasync.client.status import StatusBroadcaster
from pharmasync.client.sync.backup import BackupPipeline
from pharmasync.client.sync.engine import SyncEngine
from pharmasync.client.sync.queue import DurableQueue
from pharmasync.client.sync.scheduler import PeriodicSync
from pharmasync.client.sync.types import SyncActivity
from pharmasync.core.config import RemoteConfig, SyncSettings

if TYPE_CHECKING:
    from collections.abc import Callable

    from pharmasync.client.api import RemoteStore
    from pharmasync.client.status import SyncStatus
    from pharmasync.client.sync.types import (
        BackupResult,
        ProgressCallback,
        SyncQueueItem,
        SyncResult,
    )
    from pharmasync.core.types import EntityType, SyncOperation

logger = logging.getLogger(__name__)


class SyncService:
    """Offline-first sync for one client.

    Usage:
        service = SyncService.from_config(remote_config, db_path)
        service.initialize(client_id)      # after login, inside the event loop
        unsubscribe = service.subscribe(on_status)
        await service.queue_sync(EntityType.MEDICINE, "m1", SyncOperation.CREATE, data)
        ...
        service.stop()                     # on logout
        await service.aclose()
    """

    def __init__(
        self,
        remote: RemoteStore,
        state: LocalState,
        connectivity: ConnectivityMonitor,
        settings: SyncSettings | None = None,
    ) -> None:
        """Wire the sync components together.

        Args:
            remote: Remote store client.
            state: Local SQLite state (queue, status snapshot, records).
            connectivity: Connectivity monitor.
            settings: Engine tunables.
        """
        self.settings = settings or SyncSettings()
        self.remote = remote
        self.state = state
        self.connectivity = connectivity
        self.broadcaster = StatusBroadcaster(state)
        self.queue = DurableQueue(state)
        # Engine and backup publish to the same status channel
        self.activity = SyncActivity()
        self.engine = SyncEngine(
            self.queue,
            remote,
            connectivity,
            self.broadcaster,
            max_retries=self.settings.max_retries,
            activity=self.activity,
        )
        self.backup = BackupPipeline(
            state,
            remote,
            connectivity,
            self.broadcaster,
            batch_size=self.settings.batch_size,
            activity=self.activity,
        )
        self.scheduler = PeriodicSync(
            self.engine,
            connectivity,
            interval=self.settings.sync_interval,
        )
        self._unsubscribe_connectivity: Callable[[], None] | None = None
        self._watch_task: asyncio.Task[None] | None = None

    @classmethod
    def from_config(
        cls,
        config: RemoteConfig,
        db_path: Path,
        settings: SyncSettings | None = None,
    ) -> SyncService:
        """Build a service talking to the configured backend."""
        settings = settings or SyncSettings()
        return cls(
            remote=RestClient(config),
            state=LocalState(db_path),
            connectivity=ConnectivityMonitor(
                probe_url=settings.probe_url,
                health_url=config.health_url,
                timeout=settings.probe_timeout,
            ),
            settings=settings,
        )

    def initialize(self, client_id: str, auto_sync: bool = True) -> None:
        """Set the client identity and start the sync triggers.

        Args:
            client_id: Identifier namespacing all remote rows.
            auto_sync: Start the periodic job, the connectivity watch
                and sync on online transitions. Subscribing to
                connectivity immediately starts a first run when
                already online.
        """
        self.engine.initialize(client_id)
        self.backup.initialize(client_id)

        if not auto_sync:
            return

        self.scheduler.start()
        if self._unsubscribe_connectivity is None:
            self._unsubscribe_connectivity = self.connectivity.subscribe(
                self.engine.handle_connectivity_change
            )
        if self._watch_task is None and self.connectivity.can_probe:
            self._watch_task = asyncio.get_running_loop().create_task(
                self.connectivity.watch(self.settings.probe_interval)
            )
            logger.debug(
                "Connectivity watch started (every %ss)", self.settings.probe_interval
            )

    def stop(self) -> None:
        """Stop syncing (logout): clear identity, timers and the watch."""
        self.scheduler.stop()
        if self._unsubscribe_connectivity is not None:
            self._unsubscribe_connectivity()
            self._unsubscribe_connectivity = None
        if self._watch_task is not None:
            self._watch_task.cancel()
            self._watch_task = None
        self.engine.stop()
        self.backup.stop()

    @property
    def watching(self) -> bool:
        """True while the background connectivity watch is running."""
        return self._watch_task is not None and not self._watch_task.done()

    async def aclose(self) -> None:
        """Stop, wait for background runs and release resources."""
        watch_task = self._watch_task
        self.stop()
        if watch_task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await watch_task
        await self.engine.join()
        if isinstance(self.remote, RestClient):
            await self.remote.aclose()
        await self.connectivity.aclose()
        self.state.close()

    # === Exposed operations ===

    def subscribe(self, callback: Callable[[SyncStatus], None]) -> Callable[[], None]:
        return self.broadcaster.subscribe(callback)

    async def queue_sync(
        self,
        entity_type: EntityType | str,
        local_id: str,
        operation: SyncOperation | str,
        payload: Any = None,
    ) -> SyncQueueItem:
        return await self.engine.queue_sync(entity_type, local_id, operation, payload)

    async def sync_now(self) -> SyncResult:
        return await self.engine.sync_now()

    async def push_all(self, on_progress: ProgressCallback | None = None) -> BackupResult:
        return await self.backup.push_all(on_progress)

    async def pull_from_cloud(self) -> dict[str, int]:
        return await self.engine.pull_from_cloud()

    def last_sync_status(self) -> dict[str, Any]:
        """Cold-start snapshot: persisted lastSyncedAt and live pending count."""
        snapshot = self.broadcaster.last_snapshot()
        snapshot["pendingCount"] = self.queue.count()
        return snapshot
