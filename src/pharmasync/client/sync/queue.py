"""Durable queue of pending local mutations.

This module provides:
- DurableQueue: Ordered queue with (entity_type, local_id) deduplication

Items are kept in insertion order. When a new mutation arrives for an
entity that already has a pending item, the old item is replaced in
place so only the latest state per entity is uploaded.

Persistence:
    The whole queue is stored as one JSON array under the fixed key
    ``sync-queue`` of a KeyValueStore. Every mutation writes through
    before returning, so a crash between enqueue and the next sync run
    does not lose the item.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import TYPE_CHECKING

from pharmasync.client.sync.types import SyncQueueItem

if TYPE_CHECKING:
    from collections.abc import Iterator

    from pharmasync.client.state import KeyValueStore
    from pharmasync.core.types import EntityType

logger = logging.getLogger(__name__)

QUEUE_KEY = "sync-queue"


class DurableQueue:
    """Persistent, ordered, de-duplicated storage for SyncQueueItem.

    The queue is the only owner of queue items. Callers get copies of
    the list, never the list itself.
    """

    def __init__(self, store: KeyValueStore, key: str = QUEUE_KEY) -> None:
        """Initialize the queue and load persisted items.

        Args:
            store: Durable key-value store
            key: Key under which the queue is persisted
        """
        self._store = store
        self._key = key
        self._lock = threading.RLock()
        self._items: list[SyncQueueItem] = self._load()

    def _load(self) -> list[SyncQueueItem]:
        """Load items from the store on startup."""
        raw = self._store.get_state(self._key)
        if not raw:
            return []

        try:
            items = [SyncQueueItem.from_dict(entry) for entry in json.loads(raw)]
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Discarding unreadable sync queue: %s", e)
            return []

        if items:
            logger.info("Loaded %d pending sync items from persistence", len(items))
        return items

    def _persist(self) -> None:
        self._store.set_state(
            self._key,
            json.dumps([item.to_dict() for item in self._items]),
        )

    def enqueue(self, item: SyncQueueItem) -> None:
        """Add an item, replacing any pending item for the same entity.

        Args:
            item: The mutation to queue
        """
        with self._lock:
            for index, existing in enumerate(self._items):
                if existing.key == item.key:
                    logger.debug(
                        "Replacing queued %s for %s:%s with %s",
                        existing.operation.value,
                        item.entity_type.value,
                        item.local_id,
                        item.operation.value,
                    )
                    self._items[index] = item
                    break
            else:
                self._items.append(item)

            self._persist()
            logger.debug("Queued %r (queue size: %d)", item, len(self._items))

    def drain(self) -> list[SyncQueueItem]:
        """Return the current items without removing them."""
        with self._lock:
            return list(self._items)

    def remove(self, item_id: str) -> bool:
        """Remove an item by its own id.

        Returns:
            True if an item was removed
        """
        with self._lock:
            remaining = [item for item in self._items if item.id != item_id]
            if len(remaining) == len(self._items):
                return False
            self._items = remaining
            self._persist()
            return True

    def update(self, item: SyncQueueItem) -> bool:
        """Persist a mutation of an item that is still pending.

        Returns:
            True if the item was found and saved, False if it is gone
            (removed or replaced by a newer mutation meanwhile)
        """
        with self._lock:
            for index, existing in enumerate(self._items):
                if existing.id == item.id:
                    self._items[index] = item
                    self._persist()
                    return True
            return False

    def count(self) -> int:
        """Number of pending items."""
        with self._lock:
            return len(self._items)

    def get(self, entity_type: EntityType, local_id: str) -> SyncQueueItem | None:
        """Get the pending item for an entity, if any."""
        with self._lock:
            for item in self._items:
                if item.key == (entity_type, local_id):
                    return item
            return None

    def clear(self) -> int:
        """Remove all items.

        Returns:
            Number of items removed
        """
        with self._lock:
            count = len(self._items)
            self._items = []
            self._persist()
            logger.info("Cleared %d items from sync queue", count)
            return count

    def __len__(self) -> int:
        return self.count()

    def __iter__(self) -> Iterator[SyncQueueItem]:
        return iter(self.drain())
