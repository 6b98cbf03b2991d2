"""Full backup of the local dataset.

This module provides:
- BackupPipeline: Batched push of every local medicine and bill

Unlike incremental sync, the backup bypasses the queue and reads the
local collections directly at call time. Each entity type is uploaded in
fixed-size batches; a failed batch is recorded and the pipeline moves on
to the next one. Progress is reported in records across all types so a
single progress bar can cover the whole backup.

A backup and an incremental run never overlap: both claim the same
SyncActivity flag before publishing syncing=True, and the flag is
released and a closing status published even when the backup aborts.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pharmasync.client.sync.types import (
    BackupResult,
    OfflineError,
    ProgressCallback,
    SyncActivity,
    SyncInProgress,
    SyncNotInitialized,
    utc_now,
)
from pharmasync.core.config import DEFAULT_BATCH_SIZE
from pharmasync.core.types import EntityType

if TYPE_CHECKING:
    from pharmasync.client.api import RemoteStore
    from pharmasync.client.connectivity import ConnectivityMonitor
    from pharmasync.client.state import LocalDataSource
    from pharmasync.client.status import StatusBroadcaster

logger = logging.getLogger(__name__)


class BackupPipeline:
    """Pushes the entire local dataset to the remote store."""

    def __init__(
        self,
        source: LocalDataSource,
        remote: RemoteStore,
        connectivity: ConnectivityMonitor,
        broadcaster: StatusBroadcaster,
        batch_size: int = DEFAULT_BATCH_SIZE,
        activity: SyncActivity | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            source: Local storage providing full-collection reads.
            remote: Remote store client.
            connectivity: Source of the online/offline state.
            broadcaster: Status hub updated when the backup completes.
            batch_size: Records per upsert request.
            activity: In-progress flag shared with the sync engine.
        """
        self._source = source
        self._remote = remote
        self._connectivity = connectivity
        self._broadcaster = broadcaster
        self._batch_size = batch_size
        self._activity = activity or SyncActivity()
        self._client_id: str | None = None

    def initialize(self, client_id: str) -> None:
        self._client_id = client_id

    def stop(self) -> None:
        self._client_id = None

    def _collect(self, result: BackupResult) -> list[tuple[EntityType, list[dict[str, Any]]]]:
        """Read local collections, dropping records that cannot be keyed."""
        collections = [
            (EntityType.MEDICINE, self._source.get_all_medicines()),
            (EntityType.BILL, self._source.get_all_bills()),
        ]
        valid: list[tuple[EntityType, list[dict[str, Any]]]] = []
        for entity_type, records in collections:
            keyed = [r for r in records if r.get("id") not in (None, "")]
            skipped = len(records) - len(keyed)
            if skipped:
                result.errors.append(
                    f"{entity_type.value}: skipped {skipped} records without id"
                )
            valid.append((entity_type, keyed))
        return valid

    async def push_all(self, on_progress: ProgressCallback | None = None) -> BackupResult:
        """Upload every local medicine and bill.

        Args:
            on_progress: Called after every batch with
                (current, total, entity_type), counted in records across
                all entity types.

        Returns:
            Records pushed per type and one error per failed batch.

        Raises:
            SyncNotInitialized: If no client identity is set.
            OfflineError: If offline at call time (nothing is uploaded).
            SyncInProgress: If a sync run or another backup is in flight.
        """
        client_id = self._client_id
        if client_id is None:
            raise SyncNotInitialized()
        if not self._connectivity.is_online:
            raise OfflineError()
        if not self._activity.begin("backup"):
            raise SyncInProgress()

        result = BackupResult()
        try:
            self._broadcaster.publish(syncing=True)
            await self._push(client_id, result, on_progress)
        except Exception as e:
            logger.exception("Full backup aborted")
            self._broadcaster.publish(syncing=False, error=str(e) or type(e).__name__)
            raise
        finally:
            self._activity.end()

        self._broadcaster.publish(
            syncing=False,
            last_synced_at=utc_now(),
            pending_count=0,
            error=result.errors[-1] if result.errors else None,
        )
        self._broadcaster.save_snapshot()

        logger.info(
            "Full backup finished: %d medicines, %d bills, %d errors",
            result.medicines,
            result.bills,
            len(result.errors),
        )
        return result

    async def _push(
        self,
        client_id: str,
        result: BackupResult,
        on_progress: ProgressCallback | None,
    ) -> None:
        collections = self._collect(result)
        total = sum(len(records) for _, records in collections)
        current = 0

        logger.info("Starting full backup of %d records", total)

        for entity_type, records in collections:
            result.pushed[entity_type] = 0
            table = entity_type.table_name

            for index, start in enumerate(range(0, len(records), self._batch_size)):
                batch = records[start:start + self._batch_size]
                synced_at = utc_now()
                rows = [
                    {
                        "client_id": client_id,
                        "local_id": str(record["id"]),
                        "data": record,
                        "synced_at": synced_at,
                    }
                    for record in batch
                ]

                try:
                    await self._remote.upsert(table, rows)
                    result.pushed[entity_type] += len(batch)
                except Exception as e:
                    logger.warning(
                        "Backup of %s batch %d failed: %s", entity_type.value, index, e
                    )
                    result.errors.append(f"{entity_type.value} batch {index}: {e}")

                current += len(batch)
                if on_progress:
                    on_progress(current, total, entity_type)
