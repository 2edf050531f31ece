"""In-memory snapshot store (tests, `STORAGE_BACKEND=memory`)."""

from __future__ import annotations

from typing import Any

from pagestats_pipeline.models import Entity, Period, Snapshot, SnapshotKey
from pagestats_pipeline.storage.base import SnapshotStore


class MemorySnapshotStore(SnapshotStore):
    """Dict-backed store keyed by SnapshotKey.

    Snapshots are kept as serialized documents and rebuilt on read, so callers
    never share objects with the store.
    """

    def __init__(self) -> None:
        self._docs: dict[SnapshotKey, dict[str, Any]] = {}

    def __len__(self) -> int:
        return len(self._docs)

    async def put(self, snapshot: Snapshot) -> None:
        self._docs[snapshot.key] = snapshot.model_dump(mode="json")

    async def get(self, entity_id: str, year: int, month: int) -> Snapshot | None:
        doc = self._docs.get(SnapshotKey(str(entity_id), int(year), int(month)))
        return Snapshot.model_validate(doc) if doc is not None else None

    async def get_all_for_entity(self, entity_id: str) -> list[Snapshot]:
        keys = sorted(k for k in self._docs if k.entity_id == str(entity_id))
        return [Snapshot.model_validate(self._docs[k]) for k in keys]

    async def get_all_for_period(self, year: int, month: int) -> list[Snapshot]:
        found = [
            Snapshot.model_validate(doc)
            for k, doc in self._docs.items()
            if k.year == year and k.month == month
        ]
        return sorted(found, key=lambda s: (s.entity.name.casefold(), s.entity_id))

    async def list_all_entities(self) -> list[Entity]:
        # latest snapshot carries the current page name
        latest: dict[str, tuple[int, int, dict[str, Any]]] = {}
        for k, doc in self._docs.items():
            seen = latest.get(k.entity_id)
            if seen is None or (k.year, k.month) > seen[:2]:
                latest[k.entity_id] = (k.year, k.month, doc["entity"])
        entities = [Entity.model_validate(v[2]) for v in latest.values()]
        return sorted(entities, key=lambda e: (e.name.casefold(), e.entity_id))

    async def list_all_periods(self) -> list[Period]:
        return [Period(year=y, month=m) for y, m in sorted({(k.year, k.month) for k in self._docs})]

    async def count(self) -> int:
        return len(self._docs)

    async def clear(self) -> None:
        self._docs.clear()
