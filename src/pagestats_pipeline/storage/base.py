"""Async snapshot store interface.

Every store upserts on the composite key `(entity_id, year, month)`: saving a
snapshot for a page and month that already exist replaces the stored one.
"""

from __future__ import annotations

import abc
import logging
from typing import TYPE_CHECKING, Iterable

from pagestats_pipeline.errors import StorageError
from pagestats_pipeline.models import BatchError, BatchResult, DatasetStats, Entity, Period, Snapshot
from pagestats_pipeline.timeseries import Dataset

if TYPE_CHECKING:
    from pagestats_pipeline.config import Settings

log = logging.getLogger(__name__)


class SnapshotStore(abc.ABC):
    """Persistence port for monthly snapshots."""

    @abc.abstractmethod
    async def put(self, snapshot: Snapshot) -> None:
        """Insert or replace one snapshot.

        Raises:
            StorageError: if the write fails.
        """

    async def put_batch(self, snapshots: Iterable[Snapshot]) -> BatchResult:
        """Save snapshots one by one; a failure is recorded, never raised.

        Returns:
            BatchResult with `saved + failed` equal to the number of inputs.
        """
        result = BatchResult()
        for snapshot in snapshots:
            try:
                await self.put(snapshot)
            except StorageError as e:
                log.warning("Failed to save %s: %s", snapshot.record_key, e)
                result.failed += 1
                result.errors.append(BatchError(key=snapshot.record_key, error=str(e)))
            else:
                result.saved += 1
        return result

    @abc.abstractmethod
    async def get(self, entity_id: str, year: int, month: int) -> Snapshot | None:
        """Return one snapshot, or None when absent."""

    @abc.abstractmethod
    async def get_all_for_entity(self, entity_id: str) -> list[Snapshot]:
        """Return one page's snapshots ordered by (year, month)."""

    @abc.abstractmethod
    async def get_all_for_period(self, year: int, month: int) -> list[Snapshot]:
        """Return one month's snapshots ordered by page name."""

    @abc.abstractmethod
    async def list_all_entities(self) -> list[Entity]:
        ...

    @abc.abstractmethod
    async def list_all_periods(self) -> list[Period]:
        ...

    async def count(self) -> int:
        """Return the number of stored snapshots."""
        n = 0
        for entity in await self.list_all_entities():
            n += len(await self.get_all_for_entity(entity.entity_id))
        return n

    async def stats(self) -> DatasetStats:
        """Return page, period and snapshot counts of the stored data."""
        return DatasetStats(
            total_entities=len(await self.list_all_entities()),
            total_periods=len(await self.list_all_periods()),
            total_data_points=await self.count(),
        )

    @abc.abstractmethod
    async def clear(self) -> None:
        ...

    async def close(self) -> None:
        """Release connections held by the store."""


async def load_dataset(store: SnapshotStore, dataset: Dataset | None = None) -> Dataset:
    """Rehydrate an in-memory Dataset from every snapshot in `store`."""
    dataset = dataset if dataset is not None else Dataset()
    n = 0
    for entity in await store.list_all_entities():
        n += dataset.ingest_many(await store.get_all_for_entity(entity.entity_id))
    log.info("Loaded %d snapshots for %d pages from %s", n, len(dataset), type(store).__name__)
    return dataset


def create_store(settings: "Settings") -> SnapshotStore:
    """Return the snapshot store selected by `settings.storage_backend`.

    Raises:
        RuntimeError: if the backend name is unknown.
    """
    if settings.storage_backend == "memory":
        from pagestats_pipeline.storage.memory import MemorySnapshotStore

        return MemorySnapshotStore()
    if settings.storage_backend == "mongo":
        from pagestats_pipeline.db import get_client, get_db
        from pagestats_pipeline.storage.mongo import MongoSnapshotStore

        client = get_client(settings.mongo_uri, tls=settings.mongo_tls)
        collection = get_db(client, settings.mongo_db)[settings.mongo_collection]
        return MongoSnapshotStore(collection, client=client)
    raise RuntimeError(f"Unknown STORAGE_BACKEND '{settings.storage_backend}'")
