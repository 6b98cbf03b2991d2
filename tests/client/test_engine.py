"""Tests for the sync engine."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import pytest

from pharmasync.client.connectivity import ConnectivityMonitor
from pharmasync.client.status import StatusBroadcaster, SyncStatus
from pharmasync.client.sync.engine import SyncEngine
from pharmasync.client.sync.queue import DurableQueue
from pharmasync.client.sync.types import (
    RunOutcome,
    RunState,
    SyncNotInitialized,
    SyncQueueItem,
)
from pharmasync.core.types import EntityType, SyncOperation

if TYPE_CHECKING:
    from tests.conftest import FakeRemoteStore

CLIENT = "pharmacy-1"
MEDICINES = EntityType.MEDICINE.table_name


@pytest.fixture
def engine(
    queue: DurableQueue,
    remote: FakeRemoteStore,
    connectivity: ConnectivityMonitor,
    broadcaster: StatusBroadcaster,
) -> SyncEngine:
    engine = SyncEngine(queue, remote, connectivity, broadcaster)
    engine.initialize(CLIENT)
    return engine


def enqueue(
    queue: DurableQueue,
    local_id: str,
    operation: SyncOperation = SyncOperation.CREATE,
    payload: dict[str, object] | None = None,
) -> SyncQueueItem:
    item = SyncQueueItem.create(
        EntityType.MEDICINE, local_id, operation, payload or {"id": local_id}
    )
    queue.enqueue(item)
    return item


class TestPreconditions:
    """Runs rejected before touching the queue."""

    @pytest.mark.asyncio
    async def test_not_initialized(
        self,
        queue: DurableQueue,
        remote: FakeRemoteStore,
        connectivity: ConnectivityMonitor,
        broadcaster: StatusBroadcaster,
    ) -> None:
        engine = SyncEngine(queue, remote, connectivity, broadcaster)
        enqueue(queue, "A")

        result = await engine.sync_now()

        assert result.success is False
        assert result.outcome is RunOutcome.NOT_INITIALIZED
        assert result.errors[0].error == "Sync not initialized"
        assert queue.count() == 1
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_offline(
        self,
        engine: SyncEngine,
        queue: DurableQueue,
        remote: FakeRemoteStore,
        connectivity: ConnectivityMonitor,
    ) -> None:
        connectivity.set_online(False)
        item = enqueue(queue, "A")

        result = await engine.sync_now()

        assert result.to_dict() == {
            "success": False,
            "syncedCount": 0,
            "failedCount": 0,
            "errors": [{"localId": "", "error": "Offline"}],
        }
        assert result.outcome is RunOutcome.OFFLINE
        assert queue.drain() == [item]
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_rejection_publishes_nothing(
        self,
        engine: SyncEngine,
        connectivity: ConnectivityMonitor,
        broadcaster: StatusBroadcaster,
    ) -> None:
        connectivity.set_online(False)
        received: list[SyncStatus] = []
        broadcaster.subscribe(received.append)

        await engine.sync_now()

        assert received == []

    @pytest.mark.asyncio
    async def test_stop_clears_identity(self, engine: SyncEngine) -> None:
        engine.stop()

        result = await engine.sync_now()

        assert result.outcome is RunOutcome.NOT_INITIALIZED
        assert not engine.is_initialized

    def test_initialize_rejects_empty_id(self, engine: SyncEngine) -> None:
        with pytest.raises(ValueError):
            engine.initialize("")


class TestSyncRun:
    """Tests for a single sync run."""

    @pytest.mark.asyncio
    async def test_uploads_and_removes(
        self, engine: SyncEngine, queue: DurableQueue, remote: FakeRemoteStore
    ) -> None:
        enqueue(queue, "A", payload={"id": "A", "name": "Amoxicillin"})
        enqueue(queue, "B")

        result = await engine.sync_now()

        assert result.success is True
        assert result.outcome is RunOutcome.COMPLETED
        assert result.synced_count == 2
        assert result.failed_count == 0
        assert queue.count() == 0
        row = remote.row(MEDICINES, CLIENT, "A")
        assert row is not None
        assert row["data"] == {"id": "A", "name": "Amoxicillin"}
        assert row["synced_at"]
        assert engine.state is RunState.COMPLETED

    @pytest.mark.asyncio
    async def test_processes_in_drain_order(
        self, engine: SyncEngine, queue: DurableQueue, remote: FakeRemoteStore
    ) -> None:
        for local_id in ("C", "A", "B"):
            enqueue(queue, local_id)

        await engine.sync_now()

        assert [ids[0] for _, _, ids in remote.calls] == ["C", "A", "B"]

    @pytest.mark.asyncio
    async def test_delete_is_soft(
        self, engine: SyncEngine, queue: DurableQueue, remote: FakeRemoteStore
    ) -> None:
        enqueue(queue, "A")
        await engine.sync_now()

        enqueue(queue, "A", SyncOperation.DELETE)
        result = await engine.sync_now()

        assert result.success is True
        row = remote.row(MEDICINES, CLIENT, "A")
        assert row is not None
        assert row["deleted_at"]
        assert remote.calls[-1] == ("soft_delete", MEDICINES, ["A"])

    @pytest.mark.asyncio
    async def test_routes_entity_types_to_tables(
        self, engine: SyncEngine, queue: DurableQueue, remote: FakeRemoteStore
    ) -> None:
        queue.enqueue(SyncQueueItem.create("bill", "b1", "create", {"id": "b1"}))
        queue.enqueue(SyncQueueItem.create("settings", "store", "update", {"gst": True}))

        await engine.sync_now()

        assert remote.row("client_bills", CLIENT, "b1") is not None
        assert remote.row("client_settings", CLIENT, "store") is not None

    @pytest.mark.asyncio
    async def test_empty_queue(self, engine: SyncEngine) -> None:
        result = await engine.sync_now()

        assert result.success is True
        assert result.synced_count == 0


class TestRetry:
    """Tests for per-item retry accounting."""

    @pytest.mark.asyncio
    async def test_failure_increments_retry_count(
        self, engine: SyncEngine, queue: DurableQueue, remote: FakeRemoteStore
    ) -> None:
        enqueue(queue, "A")
        remote.fail_ids["A"] = 1

        result = await engine.sync_now()

        assert result.success is True
        assert result.synced_count == 0
        assert result.failed_count == 0
        item = queue.drain()[0]
        assert item.retry_count == 1
        assert item.last_error == "network down for A"

    @pytest.mark.asyncio
    async def test_retry_ceiling_removes_and_reports(
        self, engine: SyncEngine, queue: DurableQueue, remote: FakeRemoteStore
    ) -> None:
        enqueue(queue, "A")
        remote.fail_ids["A"] = 10

        first = await engine.sync_now()
        second = await engine.sync_now()
        third = await engine.sync_now()

        assert first.errors == [] and second.errors == []
        assert third.success is False
        assert third.outcome is RunOutcome.FAILED
        assert third.failed_count == 1
        assert third.errors[0].local_id == "A"
        assert third.errors[0].error == "network down for A"
        assert queue.count() == 0
        assert engine.state is RunState.FAILED

    @pytest.mark.asyncio
    async def test_reenqueue_after_ceiling_starts_fresh(
        self, engine: SyncEngine, queue: DurableQueue, remote: FakeRemoteStore
    ) -> None:
        enqueue(queue, "A")
        remote.fail_ids["A"] = 3
        for _ in range(3):
            await engine.sync_now()
        assert queue.count() == 0

        await engine.queue_sync(EntityType.MEDICINE, "A", SyncOperation.UPDATE, {"id": "A"})
        await engine.join()

        assert queue.count() == 0
        assert remote.row(MEDICINES, CLIENT, "A") is not None

    @pytest.mark.asyncio
    async def test_fresh_item_has_zero_retries(
        self,
        engine: SyncEngine,
        queue: DurableQueue,
        remote: FakeRemoteStore,
        connectivity: ConnectivityMonitor,
    ) -> None:
        enqueue(queue, "A")
        remote.fail_ids["A"] = 3
        for _ in range(3):
            await engine.sync_now()

        connectivity.set_online(False)
        await engine.queue_sync(EntityType.MEDICINE, "A", SyncOperation.UPDATE, {"id": "A"})

        assert queue.drain()[0].retry_count == 0

    @pytest.mark.asyncio
    async def test_partial_success(
        self, engine: SyncEngine, queue: DurableQueue, remote: FakeRemoteStore
    ) -> None:
        enqueue(queue, "A")
        enqueue(queue, "B")
        enqueue(queue, "C")
        remote.fail_ids["B"] = 5
        engine._max_retries = 1

        result = await engine.sync_now()

        assert result.synced_count == 2
        assert result.failed_count == 1
        assert [e.local_id for e in result.errors] == ["B"]
        assert result.success is False
        assert queue.count() == 0


class TestAtMostOneRun:
    """Concurrent sync_now() calls."""

    @pytest.mark.asyncio
    async def test_second_call_reports_already_running(
        self, engine: SyncEngine, queue: DurableQueue, remote: FakeRemoteStore
    ) -> None:
        enqueue(queue, "A")
        remote.gate = asyncio.Event()

        first = asyncio.create_task(engine.sync_now())
        await remote.entered.wait()
        assert engine.is_running
        assert engine.state is RunState.RUNNING

        second = await engine.sync_now()

        assert second.outcome is RunOutcome.ALREADY_RUNNING
        assert second.errors[0].error == "Sync already in progress"
        assert queue.count() == 1

        remote.gate.set()
        result = await first
        assert result.synced_count == 1
        assert not engine.is_running
        assert len(remote.calls) == 1

    @pytest.mark.asyncio
    async def test_enqueue_mid_run_does_not_start_second_run(
        self, engine: SyncEngine, queue: DurableQueue, remote: FakeRemoteStore
    ) -> None:
        enqueue(queue, "A")
        remote.gate = asyncio.Event()
        first = asyncio.create_task(engine.sync_now())
        await remote.entered.wait()

        await engine.queue_sync(EntityType.MEDICINE, "B", SyncOperation.CREATE, {"id": "B"})
        remote.gate.set()
        await first
        await engine.join()

        assert [c[2] for c in remote.calls] == [["A"]]
        assert [i.local_id for i in queue.drain()] == ["B"]

    @pytest.mark.asyncio
    async def test_replaced_mid_run_keeps_newer_item(
        self, engine: SyncEngine, queue: DurableQueue, remote: FakeRemoteStore
    ) -> None:
        enqueue(queue, "A", payload={"id": "A", "v": 1})
        remote.gate = asyncio.Event()
        first = asyncio.create_task(engine.sync_now())
        await remote.entered.wait()

        newer = enqueue(queue, "A", SyncOperation.UPDATE, payload={"id": "A", "v": 2})
        remote.gate.set()
        await first

        assert queue.drain() == [newer]


class TestConvergence:
    """Replaying successful uploads."""

    @pytest.mark.asyncio
    async def test_replayed_upload_converges(
        self, engine: SyncEngine, queue: DurableQueue, remote: FakeRemoteStore
    ) -> None:
        """A crash after remote success but before local removal replays the item."""
        item = enqueue(queue, "A", payload={"id": "A", "qty": 7})
        await engine.sync_now()
        once = dict(remote.row(MEDICINES, CLIENT, "A") or {})

        queue.enqueue(item)
        await engine.sync_now()
        twice = remote.row(MEDICINES, CLIENT, "A") or {}

        assert len(remote.tables[MEDICINES]) == 1
        assert twice["data"] == once["data"]
        assert twice["client_id"] == once["client_id"]


class TestStatusUpdates:
    """Status published by the engine."""

    @pytest.mark.asyncio
    async def test_run_publishes_syncing_then_idle(
        self, engine: SyncEngine, queue: DurableQueue, broadcaster: StatusBroadcaster
    ) -> None:
        enqueue(queue, "A")
        received: list[SyncStatus] = []
        broadcaster.subscribe(received.append)

        await engine.sync_now()

        assert received[0].syncing is True
        assert received[-1].syncing is False
        assert received[-1].pending_count == 0
        assert received[-1].last_synced_at is not None
        assert received[-1].error is None

    @pytest.mark.asyncio
    async def test_run_persists_snapshot(
        self, engine: SyncEngine, queue: DurableQueue, broadcaster: StatusBroadcaster
    ) -> None:
        enqueue(queue, "A")

        await engine.sync_now()

        assert broadcaster.last_snapshot()["lastSyncedAt"] == broadcaster.current.last_synced_at

    @pytest.mark.asyncio
    async def test_permanent_failure_sets_error(
        self,
        engine: SyncEngine,
        queue: DurableQueue,
        remote: FakeRemoteStore,
        broadcaster: StatusBroadcaster,
    ) -> None:
        engine._max_retries = 1
        enqueue(queue, "A")
        remote.fail_ids["A"] = 1

        await engine.sync_now()

        assert broadcaster.current.error == "network down for A"

    @pytest.mark.asyncio
    async def test_next_success_clears_error(
        self,
        engine: SyncEngine,
        queue: DurableQueue,
        remote: FakeRemoteStore,
        broadcaster: StatusBroadcaster,
    ) -> None:
        engine._max_retries = 1
        enqueue(queue, "A")
        remote.fail_ids["A"] = 1
        await engine.sync_now()

        enqueue(queue, "B")
        await engine.sync_now()

        assert broadcaster.current.error is None

    @pytest.mark.asyncio
    async def test_enqueue_publishes_pending_count(
        self,
        engine: SyncEngine,
        connectivity: ConnectivityMonitor,
        broadcaster: StatusBroadcaster,
    ) -> None:
        connectivity.set_online(False)
        received: list[SyncStatus] = []
        broadcaster.subscribe(received.append)

        await engine.queue_sync("medicine", "A", "create", {"id": "A"})
        await engine.queue_sync("medicine", "B", "create", {"id": "B"})

        assert [s.pending_count for s in received] == [1, 2]


class TestUnexpectedErrors:
    """Bugs inside a run are reported, not raised."""

    @pytest.mark.asyncio
    async def test_queue_failure_becomes_synthetic_error(
        self,
        remote: FakeRemoteStore,
        connectivity: ConnectivityMonitor,
        broadcaster: StatusBroadcaster,
    ) -> None:
        queue = MagicMock(spec=DurableQueue)
        queue.drain.side_effect = RuntimeError("disk on fire")
        queue.count.return_value = 0
        engine = SyncEngine(queue, remote, connectivity, broadcaster)
        engine.initialize(CLIENT)

        result = await engine.sync_now()

        assert result.success is False
        assert result.failed_count == 1
        assert result.errors[0].local_id == ""
        assert result.errors[0].error == "disk on fire"
        assert broadcaster.current.error == "disk on fire"
        assert broadcaster.current.syncing is False
        assert not engine.is_running

        # The flag is released so the next trigger gets a fresh attempt
        queue.drain.side_effect = None
        queue.drain.return_value = []
        assert (await engine.sync_now()).success is True


class TestTriggers:
    """Background runs started by producers and connectivity."""

    @pytest.mark.asyncio
    async def test_enqueue_online_starts_run(
        self, engine: SyncEngine, queue: DurableQueue, remote: FakeRemoteStore
    ) -> None:
        await engine.queue_sync(EntityType.MEDICINE, "A", SyncOperation.CREATE, {"id": "A"})
        await engine.join()

        assert queue.count() == 0
        assert remote.row(MEDICINES, CLIENT, "A") is not None

    @pytest.mark.asyncio
    async def test_enqueue_offline_only_queues(
        self,
        engine: SyncEngine,
        queue: DurableQueue,
        remote: FakeRemoteStore,
        connectivity: ConnectivityMonitor,
    ) -> None:
        connectivity.set_online(False)

        await engine.queue_sync(EntityType.MEDICINE, "A", SyncOperation.CREATE, {"id": "A"})
        await engine.join()

        assert queue.count() == 1
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_coming_online_starts_run(
        self,
        engine: SyncEngine,
        queue: DurableQueue,
        remote: FakeRemoteStore,
        connectivity: ConnectivityMonitor,
    ) -> None:
        connectivity.set_online(False)
        connectivity.subscribe(engine.handle_connectivity_change)
        await engine.queue_sync(EntityType.MEDICINE, "A", SyncOperation.CREATE, {"id": "A"})

        connectivity.set_online(True)
        await engine.join()

        assert queue.count() == 0

    def test_schedule_without_loop(self, engine: SyncEngine) -> None:
        assert engine.schedule_run() is None


class TestPullFromCloud:
    """Tests for pull_from_cloud()."""

    @pytest.mark.asyncio
    async def test_counts_active_rows(
        self, engine: SyncEngine, queue: DurableQueue, remote: FakeRemoteStore
    ) -> None:
        enqueue(queue, "A")
        enqueue(queue, "B")
        queue.enqueue(SyncQueueItem.create("bill", "b1", "create", {"id": "b1"}))
        await engine.sync_now()
        enqueue(queue, "B", SyncOperation.DELETE)
        await engine.sync_now()

        counts = await engine.pull_from_cloud()

        assert counts == {"medicines": 1, "bills": 1}

    @pytest.mark.asyncio
    async def test_requires_identity(self, engine: SyncEngine) -> None:
        engine.stop()
        with pytest.raises(SyncNotInitialized):
            await engine.pull_from_cloud()
