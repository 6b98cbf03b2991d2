"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError, SyncNotInitialized, OfflineError, SyncInProgress: Exception classes
- SyncActivity: In-progress flag shared by the engine and the backup
- SyncQueueItem: One pending local mutation
- SyncItemError, SyncResult: Outcome of an incremental sync run
- BackupResult: Outcome of a full backup
- RunState, RunOutcome: Engine state machine
- Type aliases for callbacks
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, IntEnum, auto
from typing import Any

from pharmasync.core.types import EntityType, SyncOperation


class SyncError(Exception):
    """Base exception for sync errors."""


class SyncNotInitialized(SyncError):
    """No client identity has been set."""

    def __init__(self) -> None:
        super().__init__("Sync not initialized")


class OfflineError(SyncError):
    """The remote store is not reachable."""

    def __init__(self) -> None:
        super().__init__("Offline")


class SyncInProgress(SyncError):
    """A sync run or backup already owns the status channel."""

    def __init__(self) -> None:
        super().__init__("Sync already in progress")


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(UTC).isoformat()


@dataclass
class SyncQueueItem:
    """A pending local mutation awaiting upload.

    Attributes:
        id: Unique identifier of this queue item
        entity_type: Category of the affected record
        local_id: Identifier of the affected local record
        operation: create, update or delete
        queued_at: ISO timestamp when the item was enqueued
        retry_count: Number of failed upload attempts so far
        last_error: Message of the most recent failure
        payload: Record body for create/update, None for delete
    """

    id: str
    entity_type: EntityType
    local_id: str
    operation: SyncOperation
    queued_at: str
    retry_count: int = 0
    last_error: str | None = None
    payload: Any = None

    @classmethod
    def create(
        cls,
        entity_type: EntityType | str,
        local_id: str,
        operation: SyncOperation | str,
        payload: Any = None,
    ) -> SyncQueueItem:
        """Create a new item with generated id and timestamp."""
        operation = SyncOperation(operation)
        return cls(
            id=str(uuid.uuid4()),
            entity_type=EntityType(entity_type),
            local_id=local_id,
            operation=operation,
            queued_at=utc_now(),
            payload=None if operation is SyncOperation.DELETE else payload,
        )

    @property
    def key(self) -> tuple[EntityType, str]:
        """De-duplication key."""
        return (self.entity_type, self.local_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted JSON shape."""
        data: dict[str, Any] = {
            "id": self.id,
            "entityType": self.entity_type.value,
            "localId": self.local_id,
            "operation": self.operation.value,
            "queuedAt": self.queued_at,
            "retryCount": self.retry_count,
        }
        if self.last_error is not None:
            data["lastError"] = self.last_error
        if self.payload is not None:
            data["payload"] = self.payload
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncQueueItem:
        """Create from the persisted JSON shape."""
        return cls(
            id=data["id"],
            entity_type=EntityType(data["entityType"]),
            local_id=data["localId"],
            operation=SyncOperation(data["operation"]),
            queued_at=data["queuedAt"],
            retry_count=int(data.get("retryCount", 0)),
            last_error=data.get("lastError"),
            payload=data.get("payload"),
        )

    def __repr__(self) -> str:
        return (
            f"SyncQueueItem({self.operation.value} {self.entity_type.value}:"
            f"{self.local_id!r}, retries={self.retry_count})"
        )


class RunState(IntEnum):
    """State of the sync engine's current or most recent run."""

    IDLE = auto()
    RUNNING = auto()
    COMPLETED = auto()
    FAILED = auto()


class RunOutcome(str, Enum):
    """Why a sync_now() call returned what it did."""

    COMPLETED = "completed"
    FAILED = "failed"
    ALREADY_RUNNING = "already_running"
    NOT_INITIALIZED = "not_initialized"
    OFFLINE = "offline"


class SyncActivity:
    """In-progress flag shared by everything that publishes ``syncing``.

    The engine and the backup pipeline both drive the same status
    channel, so at most one of them may be in flight at a time. The flag
    is only touched between awaits, which makes check-and-set atomic on
    a single event loop.
    """

    def __init__(self) -> None:
        self._holder: str | None = None

    @property
    def busy(self) -> bool:
        return self._holder is not None

    @property
    def holder(self) -> str | None:
        """Name of the operation in flight ("sync", "backup"), if any."""
        return self._holder

    def begin(self, name: str) -> bool:
        """Claim the flag.

        Returns:
            False if another operation already holds it.
        """
        if self._holder is not None:
            return False
        self._holder = name
        return True

    def end(self) -> None:
        self._holder = None


@dataclass
class SyncItemError:
    """A permanent failure reported by a sync run."""

    local_id: str
    error: str

    def to_dict(self) -> dict[str, str]:
        return {"localId": self.local_id, "error": self.error}


@dataclass
class SyncResult:
    """Result of a sync run."""

    success: bool
    synced_count: int = 0
    failed_count: int = 0
    errors: list[SyncItemError] = field(default_factory=list)
    outcome: RunOutcome = RunOutcome.COMPLETED

    @classmethod
    def rejected(cls, outcome: RunOutcome, message: str) -> SyncResult:
        """Result for a run that never started."""
        return cls(
            success=False,
            errors=[SyncItemError(local_id="", error=message)],
            outcome=outcome,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "syncedCount": self.synced_count,
            "failedCount": self.failed_count,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class BackupResult:
    """Result of a full backup.

    Attributes:
        pushed: Records successfully uploaded, per entity type
        errors: One message per failed batch or skipped record
    """

    pushed: dict[EntityType, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def medicines(self) -> int:
        return self.pushed.get(EntityType.MEDICINE, 0)

    @property
    def bills(self) -> int:
        return self.pushed.get(EntityType.BILL, 0)

    @property
    def success(self) -> bool:
        return not self.errors


# Type alias for backup progress callback: (current, total, entity_type)
ProgressCallback = Callable[[int, int, EntityType], None]
