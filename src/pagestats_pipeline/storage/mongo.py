"""MongoDB snapshot store (pymongo async client).

Documents look like:

    {
        "_id": "<entity_id>::<year>::<month>",
        "entity_id": "...", "entity_name": "...",
        "year": 2024, "month": 1,
        "metrics": {"reach": 1000.0, ...}
    }

Writes are upserts on `_id`; a unique index on `(entity_id, year, month)`
backs the same identity.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from pymongo import ASCENDING, ReplaceOne
from pymongo.errors import BulkWriteError, PyMongoError

from pagestats_pipeline.db import ensure_snapshot_indexes
from pagestats_pipeline.errors import StorageError
from pagestats_pipeline.models import (
    BatchError,
    BatchResult,
    Entity,
    Period,
    Snapshot,
    SnapshotKey,
)
from pagestats_pipeline.storage.base import SnapshotStore

log = logging.getLogger(__name__)


def _to_document(snapshot: Snapshot) -> dict[str, Any]:
    return {
        "_id": snapshot.record_key,
        "entity_id": snapshot.entity_id,
        "entity_name": snapshot.entity.name,
        "year": snapshot.year,
        "month": snapshot.month,
        "metrics": {k.value: v for k, v in snapshot.metrics.items()},
    }


def _from_document(doc: dict[str, Any]) -> Snapshot:
    return Snapshot(
        entity=Entity(entity_id=doc["entity_id"], name=doc["entity_name"]),
        year=doc["year"],
        month=doc["month"],
        metrics=doc.get("metrics") or {},
    )


def _all_failed(docs: list[dict[str, Any]], error: Exception) -> BatchResult:
    return BatchResult(
        saved=0,
        failed=len(docs),
        errors=[BatchError(key=d["_id"], error=str(error)) for d in docs],
    )


class MongoSnapshotStore(SnapshotStore):
    """Snapshot store backed by one MongoDB collection.

    Args:
        collection: Async collection holding the snapshot documents.
        client: Owning client, closed by `close()` when given.
    """

    def __init__(self, collection: Any, client: Any | None = None) -> None:
        self._collection = collection
        self._client = client
        self._indexed = False

    async def _ensure_indexes(self) -> None:
        if self._indexed:
            return
        try:
            await ensure_snapshot_indexes(self._collection)
        except PyMongoError as e:
            raise StorageError(f"Could not create snapshot index: {e}") from e
        self._indexed = True

    async def put(self, snapshot: Snapshot) -> None:
        await self._ensure_indexes()
        doc = _to_document(snapshot)
        try:
            await self._collection.replace_one({"_id": doc["_id"]}, doc, upsert=True)
        except PyMongoError as e:
            raise StorageError(f"Failed to save snapshot: {e}", key=doc["_id"]) from e

    async def put_batch(self, snapshots: Iterable[Snapshot]) -> BatchResult:
        """Upsert snapshots with one unordered bulk write.

        Per-record write errors are reported in the result; the other records
        are still written. A failure before the write (index creation, lost
        connection) marks every record as failed.
        """
        docs = [_to_document(s) for s in snapshots]
        if not docs:
            return BatchResult()

        try:
            await self._ensure_indexes()
        except StorageError as e:
            log.error("Bulk write skipped for %d snapshots: %s", len(docs), e)
            return _all_failed(docs, e)

        ops = [ReplaceOne({"_id": d["_id"]}, d, upsert=True) for d in docs]
        try:
            await self._collection.bulk_write(ops, ordered=False)
        except BulkWriteError as e:
            errors = [
                BatchError(key=docs[err["index"]]["_id"], error=err.get("errmsg", "write error"))
                for err in e.details.get("writeErrors", [])
            ]
            log.warning("Bulk write: %d of %d snapshots failed", len(errors), len(docs))
            return BatchResult(saved=len(docs) - len(errors), failed=len(errors), errors=errors)
        except PyMongoError as e:
            log.error("Bulk write failed for %d snapshots: %s", len(docs), e)
            return _all_failed(docs, e)
        return BatchResult(saved=len(docs))

    async def get(self, entity_id: str, year: int, month: int) -> Snapshot | None:
        key = SnapshotKey(str(entity_id), int(year), int(month)).record_key
        try:
            doc = await self._collection.find_one({"_id": key})
        except PyMongoError as e:
            raise StorageError(f"Failed to read snapshot: {e}", key=key) from e
        return _from_document(doc) if doc is not None else None

    async def _find(self, query: dict[str, Any], sort: list[tuple[str, int]]) -> list[Snapshot]:
        try:
            cursor = self._collection.find(query).sort(sort)
            return [_from_document(doc) async for doc in cursor]
        except PyMongoError as e:
            raise StorageError(f"Failed to query snapshots: {e}") from e

    async def get_all_for_entity(self, entity_id: str) -> list[Snapshot]:
        return await self._find(
            {"entity_id": str(entity_id)}, [("year", ASCENDING), ("month", ASCENDING)]
        )

    async def get_all_for_period(self, year: int, month: int) -> list[Snapshot]:
        found = await self._find({"year": int(year), "month": int(month)}, [("entity_id", ASCENDING)])
        return sorted(found, key=lambda s: (s.entity.name.casefold(), s.entity_id))

    async def list_all_entities(self) -> list[Entity]:
        pipeline = [
            {"$sort": {"year": 1, "month": 1}},
            {"$group": {"_id": "$entity_id", "name": {"$last": "$entity_name"}}},
        ]
        try:
            cursor = await self._collection.aggregate(pipeline)
            entities = [Entity(entity_id=d["_id"], name=d["name"]) async for d in cursor]
        except PyMongoError as e:
            raise StorageError(f"Failed to list pages: {e}") from e
        return sorted(entities, key=lambda e: (e.name.casefold(), e.entity_id))

    async def list_all_periods(self) -> list[Period]:
        pipeline = [
            {"$group": {"_id": {"year": "$year", "month": "$month"}}},
            {"$sort": {"_id.year": 1, "_id.month": 1}},
        ]
        try:
            cursor = await self._collection.aggregate(pipeline)
            return [Period(year=d["_id"]["year"], month=d["_id"]["month"]) async for d in cursor]
        except PyMongoError as e:
            raise StorageError(f"Failed to list periods: {e}") from e

    async def count(self) -> int:
        try:
            return await self._collection.count_documents({})
        except PyMongoError as e:
            raise StorageError(f"Failed to count snapshots: {e}") from e

    async def clear(self) -> None:
        try:
            await self._collection.delete_many({})
        except PyMongoError as e:
            raise StorageError(f"Failed to clear snapshots: {e}") from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
