"""Sync operations for queued mutations and full backups.

Architecture:
    queue_sync() → DurableQueue → SyncEngine → RemoteStore
                                      │
                                      └──► StatusBroadcaster

Components:
- **DurableQueue**: Persistent queue, one pending item per entity
- **SyncEngine**: Drains the queue with per-item retry accounting
- **BackupPipeline**: Batched push of the whole local dataset
- **PeriodicSync**: Interval trigger for the engine while online
"""

from pharmasync.client.sync.backup import BackupPipeline
from pharmasync.client.sync.engine import SyncEngine
from pharmasync.client.sync.queue import QUEUE_KEY, DurableQueue
from pharmasync.client.sync.scheduler import PeriodicSync
from pharmasync.client.sync.types import (
    BackupResult,
    OfflineError,
    ProgressCallback,
    RunOutcome,
    RunState,
    SyncActivity,
    SyncError,
    SyncInProgress,
    SyncItemError,
    SyncNotInitialized,
    SyncQueueItem,
    SyncResult,
)

__all__ = [
    # Types and dataclasses
    "BackupResult",
    "ProgressCallback",
    "RunOutcome",
    "RunState",
    "SyncItemError",
    "SyncQueueItem",
    "SyncResult",
    # Exceptions
    "OfflineError",
    "SyncError",
    "SyncInProgress",
    "SyncNotInitialized",
    # Classes
    "BackupPipeline",
    "DurableQueue",
    "PeriodicSync",
    "SyncActivity",
    "SyncEngine",
    "QUEUE_KEY",
]
