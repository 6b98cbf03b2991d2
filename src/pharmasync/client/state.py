"""Local state management for the sync client.

This module provides:
- KeyValueStore / LocalDataSource: Protocols consumed by the sync components
- LocalState: SQLite-backed implementation of both

Architecture:
    A single SQLite file holds two tables. ``kv_state`` is the durable
    key-value store where the sync queue and the last-status snapshot
    live under fixed keys as JSON documents. ``records`` holds the local
    copy of every syncable record and is what the full backup reads.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Protocol

from pharmasync.core.types import EntityType

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Durable string key-value storage."""

    def get_state(self, key: str) -> str | None: ...

    def set_state(self, key: str, value: str) -> None: ...


class LocalDataSource(Protocol):
    """Full-collection reads used by the backup pipeline."""

    def get_all_medicines(self) -> list[dict[str, Any]]: ...

    def get_all_bills(self) -> list[dict[str, Any]]: ...


class LocalState:
    """SQLite-based local state for the sync client."""

    def __init__(self, db_path: Path) -> None:
        """Initialize local state database.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()

        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")

        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv_state (
                key TEXT PRIMARY KEY,
                value TEXT
            );

            CREATE TABLE IF NOT EXISTS records (
                entity_type TEXT NOT NULL,
                local_id TEXT NOT NULL,
                data TEXT NOT NULL,
                updated_at REAL NOT NULL,
                PRIMARY KEY (entity_type, local_id)
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> LocalState:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # === Key-value state ===

    def get_state(self, key: str) -> str | None:
        """Get a state value."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT value FROM kv_state WHERE key = ?",
                (key,),
            )
            row = cursor.fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        """Set a state value."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO kv_state (key, value) VALUES (?, ?)",
                (key, value),
            )

    def delete_state(self, key: str) -> None:
        """Remove a state value."""
        with self._lock:
            self._conn.execute("DELETE FROM kv_state WHERE key = ?", (key,))

    # === Records ===

    def put_record(self, entity_type: EntityType, record: dict[str, Any]) -> None:
        """Insert or replace a local record.

        Args:
            entity_type: Category of the record.
            record: Record body; must carry an ``id`` field.

        Raises:
            ValueError: If the record has no id.
        """
        if record.get("id") in (None, ""):
            raise ValueError("record must have an 'id' field")

        with self._lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO records (entity_type, local_id, data, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    EntityType(entity_type).value,
                    str(record["id"]),
                    json.dumps(record),
                    time.time(),
                ),
            )

    def get_record(self, entity_type: EntityType, local_id: str) -> dict[str, Any] | None:
        """Get a single record, or None if it doesn't exist."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT data FROM records WHERE entity_type = ? AND local_id = ?",
                (EntityType(entity_type).value, local_id),
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return dict(json.loads(row["data"]))

    def delete_record(self, entity_type: EntityType, local_id: str) -> bool:
        """Delete a record.

        Returns:
            True if a record was removed.
        """
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM records WHERE entity_type = ? AND local_id = ?",
                (EntityType(entity_type).value, local_id),
            )
        return cursor.rowcount > 0

    def list_records(self, entity_type: EntityType) -> list[dict[str, Any]]:
        """List all records of one type, oldest change first."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT data FROM records WHERE entity_type = ? ORDER BY updated_at, local_id",
                (EntityType(entity_type).value,),
            )
            rows = cursor.fetchall()
        return [dict(json.loads(row["data"])) for row in rows]

    def count_records(self, entity_type: EntityType) -> int:
        """Count records of one type."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT COUNT(*) AS n FROM records WHERE entity_type = ?",
                (EntityType(entity_type).value,),
            )
            return int(cursor.fetchone()["n"])

    def get_all_medicines(self) -> list[dict[str, Any]]:
        return self.list_records(EntityType.MEDICINE)

    def get_all_bills(self) -> list[dict[str, Any]]:
        return self.list_records(EntityType.BILL)
