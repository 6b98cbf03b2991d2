"""Shared types for pharmasync.

This module defines enums used by the queue, the engine and the CLI.
"""

from __future__ import annotations

from enum import Enum


class SyncState(str, Enum):
    """Coarse sync state derived from the current SyncStatus.

    Used by status displays to summarize a snapshot.
    """

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class EntityType(str, Enum):
    """Closed set of record categories that can be synchronized."""

    MEDICINE = "medicine"
    BILL = "bill"
    SETTINGS = "settings"

    @property
    def table_name(self) -> str:
        """Remote table holding rows of this entity type."""
        return _TABLE_NAMES[self]


class SyncOperation(str, Enum):
    """Kind of local mutation carried by a queue item."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


_TABLE_NAMES = {
    EntityType.MEDICINE: "client_medicines",
    EntityType.BILL: "client_bills",
    EntityType.SETTINGS: "client_settings",
}
