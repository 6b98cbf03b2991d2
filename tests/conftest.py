"""Shared fixtures for pharmasync tests."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from pharmasync.client.api import APIError
from pharmasync.client.connectivity import ConnectivityMonitor
from pharmasync.client.state import LocalState
from pharmasync.client.status import StatusBroadcaster
from pharmasync.client.sync.queue import DurableQueue


class FakeRemoteStore:
    """In-memory remote store with (client_id, local_id) uniqueness.

    Attributes:
        tables: table -> (client_id, local_id) -> row
        calls: Every call as (method, table, local_ids)
        fail_ids: local_id -> number of upcoming calls that should fail
        fail_tables: tables whose upserts always fail
        gate: When set, every call waits on this event before proceeding
    """

    def __init__(self) -> None:
        self.tables: dict[str, dict[tuple[str, str], dict[str, Any]]] = {}
        self.calls: list[tuple[str, str, list[str]]] = []
        self.fail_ids: dict[str, int] = {}
        self.fail_tables: set[str] = set()
        self.fail_batches: set[int] = set()
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()
        self._upsert_calls = 0

    async def _enter(self, local_ids: list[str]) -> None:
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        for local_id in local_ids:
            remaining = self.fail_ids.get(local_id, 0)
            if remaining:
                self.fail_ids[local_id] = remaining - 1
                raise APIError(f"network down for {local_id}")

    async def upsert(self, table: str, rows: list[dict[str, Any]]) -> None:
        local_ids = [row["local_id"] for row in rows]
        self.calls.append(("upsert", table, local_ids))
        call_index = self._upsert_calls
        self._upsert_calls += 1
        await self._enter(local_ids)
        if table in self.fail_tables or call_index in self.fail_batches:
            raise APIError("batch rejected", 500)
        rows_by_key = self.tables.setdefault(table, {})
        for row in rows:
            key = (row["client_id"], row["local_id"])
            merged = dict(rows_by_key.get(key, {}))
            merged.update(row)
            rows_by_key[key] = merged

    async def soft_delete(
        self, table: str, client_id: str, local_id: str, deleted_at: str
    ) -> None:
        self.calls.append(("soft_delete", table, [local_id]))
        await self._enter([local_id])
        row = self.tables.setdefault(table, {}).get((client_id, local_id))
        if row is not None:
            row["deleted_at"] = deleted_at

    async def select_active(self, table: str, client_id: str) -> list[dict[str, Any]]:
        self.calls.append(("select_active", table, []))
        return [
            row
            for (cid, _), row in self.tables.get(table, {}).items()
            if cid == client_id and not row.get("deleted_at")
        ]

    def row(self, table: str, client_id: str, local_id: str) -> dict[str, Any] | None:
        return self.tables.get(table, {}).get((client_id, local_id))


@pytest.fixture
def state(tmp_path: Path) -> LocalState:
    """Create a test state database."""
    state = LocalState(tmp_path / "state.db")
    yield state
    state.close()


@pytest.fixture
def queue(state: LocalState) -> DurableQueue:
    return DurableQueue(state)


@pytest.fixture
def broadcaster(state: LocalState) -> StatusBroadcaster:
    return StatusBroadcaster(state)


@pytest.fixture
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def connectivity() -> ConnectivityMonitor:
    """Monitor that starts online and never probes the network."""
    return ConnectivityMonitor(initial=True)
