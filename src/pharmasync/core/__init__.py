"""Core module - Shared configuration and types."""

from pharmasync.core.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PROBE_INTERVAL,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_SYNC_INTERVAL,
    RemoteConfig,
    SyncSettings,
)
from pharmasync.core.types import EntityType, SyncOperation, SyncState

__all__ = [
    # Config
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_PROBE_INTERVAL",
    "DEFAULT_PROBE_TIMEOUT",
    "DEFAULT_SYNC_INTERVAL",
    "RemoteConfig",
    "SyncSettings",
    # Types
    "EntityType",
    "SyncOperation",
    "SyncState",
]
