"""Sync status broadcasting.

This module provides:
- SyncStatus: Snapshot of the sync state shown to the application
- StatusBroadcaster: Publish/subscribe hub for SyncStatus snapshots
- humanize_last_synced: "5 min ago" style rendering of lastSyncedAt

Architecture:
    SyncEngine / BackupPipeline ──publish──► StatusBroadcaster ──► subscribers

Delivery is synchronous and in subscription order. Every publish yields
exactly one delivery per subscriber; nothing is buffered or coalesced.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pharmasync.core.types import SyncState

if TYPE_CHECKING:
    from collections.abc import Callable

    from pharmasync.client.state import KeyValueStore
    from pharmasync.client.sync.types import SyncResult

logger = logging.getLogger(__name__)

STATUS_KEY = "sync-last-status"


@dataclass(frozen=True)
class SyncStatus:
    """Snapshot of the sync state.

    Attributes:
        syncing: True only while a sync run or backup is in flight.
        pending_count: Queue size at last observation.
        last_synced_at: ISO timestamp of the last completed run (None = never).
        error: Message from the most recent failure.
    """

    syncing: bool = False
    pending_count: int = 0
    last_synced_at: str | None = None
    error: str | None = None

    def merge(self, **fields: Any) -> SyncStatus:
        """Return a copy with the given fields overlaid.

        Raises:
            TypeError: If a field name is unknown.
        """
        return replace(self, **fields)

    @property
    def state(self) -> SyncState:
        """Coarse state for display."""
        if self.syncing:
            return SyncState.SYNCING
        if self.error:
            return SyncState.ERROR
        return SyncState.IDLE

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        return {
            "syncing": data["syncing"],
            "pendingCount": data["pending_count"],
            "lastSyncedAt": data["last_synced_at"],
            "error": data["error"],
        }


class StatusBroadcaster:
    """Publish/subscribe hub for sync status.

    Producers publish partial updates; subscribers always receive the
    full merged snapshot. A subscriber that raises is logged and skipped,
    the remaining subscribers still get the update.

    Usage:
        broadcaster = StatusBroadcaster(state)
        unsubscribe = broadcaster.subscribe(lambda s: print(s.pending_count))
        broadcaster.publish(pending_count=3)
        unsubscribe()
    """

    def __init__(self, store: KeyValueStore | None = None) -> None:
        """Initialize the broadcaster.

        Args:
            store: Optional store holding the last-status snapshot. When
                given, the initial status carries the persisted
                last_synced_at so a cold start can display it before the
                first live sync completes.
        """
        self._store = store
        self._subscribers: dict[object, Callable[[SyncStatus], None]] = {}
        self._current = SyncStatus(last_synced_at=self.last_snapshot()["lastSyncedAt"])

    @property
    def current(self) -> SyncStatus:
        """Last published snapshot."""
        return self._current

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: Callable[[SyncStatus], None]) -> Callable[[], None]:
        """Register a callback for future broadcasts.

        Args:
            callback: Called with every snapshot published after this call.

        Returns:
            Function that unregisters this subscription. Calling it more
            than once is harmless.
        """
        token = object()
        self._subscribers[token] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    def publish(self, **fields: Any) -> SyncStatus:
        """Merge fields onto the current status and deliver it.

        Args:
            **fields: Any subset of SyncStatus fields.

        Returns:
            The merged snapshot that was delivered.
        """
        status = self._current.merge(**fields)
        self._current = status

        for callback in list(self._subscribers.values()):
            try:
                callback(status)
            except Exception:
                logger.exception("Status subscriber %r failed", callback)

        return status

    # === Last-status snapshot ===

    def save_snapshot(self, result: SyncResult | None = None) -> None:
        """Persist lastSyncedAt (and the run result) for cold starts."""
        if self._store is None:
            return
        self._store.set_state(
            STATUS_KEY,
            json.dumps({
                "lastSyncedAt": self._current.last_synced_at,
                "result": result.to_dict() if result else None,
            }),
        )

    def last_snapshot(self) -> dict[str, Any]:
        """Read the persisted snapshot.

        Returns:
            Dict with lastSyncedAt (None if never synced) and pendingCount
            (always 0, the live count comes from the queue).
        """
        snapshot: dict[str, Any] = {"lastSyncedAt": None, "pendingCount": 0}
        if self._store is None:
            return snapshot

        raw = self._store.get_state(STATUS_KEY)
        if not raw:
            return snapshot
        try:
            snapshot["lastSyncedAt"] = json.loads(raw).get("lastSyncedAt")
        except (ValueError, AttributeError):
            logger.warning("Ignoring unreadable status snapshot")
        return snapshot


def humanize_last_synced(last_synced_at: str | None, now: datetime | None = None) -> str:
    """Render a lastSyncedAt timestamp relative to now.

    Args:
        last_synced_at: ISO timestamp or None.
        now: Reference time (default: current UTC time).

    Returns:
        "Never", "Just now", "N min ago", "N hour(s) ago" or "N day(s) ago".
    """
    if not last_synced_at:
        return "Never"

    synced = datetime.fromisoformat(last_synced_at)
    if synced.tzinfo is None:
        synced = synced.replace(tzinfo=UTC)
    now = now or datetime.now(UTC)

    minutes = int((now - synced).total_seconds() // 60)
    hours = minutes // 60
    days = hours // 24

    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes} min ago"
    if hours < 24:
        return f"{hours} hour{'s' if hours > 1 else ''} ago"
    return f"{days} day{'s' if days > 1 else ''} ago"
