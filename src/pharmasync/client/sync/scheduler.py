"""Periodic sync trigger.

This module provides:
- PeriodicSync: Runs the sync engine every few minutes while online
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pharmasync.core.config import DEFAULT_SYNC_INTERVAL

if TYPE_CHECKING:
    from pharmasync.client.connectivity import ConnectivityMonitor
    from pharmasync.client.sync.engine import SyncEngine

logger = logging.getLogger(__name__)

JOB_ID = "periodic_sync"


class PeriodicSync:
    """Scheduler for the periodic sync run.

    Must be started from inside the running event loop.
    """

    def __init__(
        self,
        engine: SyncEngine,
        connectivity: ConnectivityMonitor,
        interval: float = DEFAULT_SYNC_INTERVAL,
    ) -> None:
        """Initialize the scheduler.

        Args:
            engine: Engine to run.
            connectivity: Runs are skipped while this reports offline.
            interval: Seconds between runs.
        """
        self._engine = engine
        self._connectivity = connectivity
        self._interval = interval
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    async def _sync_job(self) -> None:
        """Job function for the scheduled sync."""
        if not self._connectivity.is_online:
            logger.debug("Periodic sync skipped: offline")
            return
        result = await self._engine.sync_now()
        logger.debug("Periodic sync: %s", result.outcome.value)

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
        self._scheduler.add_job(
            self._sync_job,
            trigger=IntervalTrigger(seconds=self._interval),
            id=JOB_ID,
            name="Periodic sync",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self._scheduler.start()
        logger.info("Periodic sync scheduler started (every %.0fs)", self._interval)

    def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Periodic sync scheduler stopped")
