"""In-memory timeseries containers.

`EntityTimeseries` holds one page's snapshots keyed by (year, month) (at most one per
month). `Dataset` holds every page's timeseries keyed by page id. Both hand
out copies; the internal maps are never exposed.
"""
from __future__ import annotations

import logging
from typing import Iterable

import pandas as pd

from pagestats_pipeline.models import DatasetStats, Entity, Period, Snapshot
from pagestats_pipeline.registry import MetricKey

log = logging.getLogger(__name__)


class EntityTimeseries:
    """All monthly snapshots of one page.

    Args:
        entity: The page this timeseries belongs to.
    """

    def __init__(self, entity: Entity) -> None:
        self._entity = entity
        self._snapshots: dict[tuple[int, int], Snapshot] = {}
        self._newest: tuple[int, int] | None = None

    @property
    def entity(self) -> Entity:
        return self._entity

    @property
    def entity_id(self) -> str:
        return self._entity.entity_id

    def __len__(self) -> int:
        return len(self._snapshots)

    def copy(self) -> EntityTimeseries:
        """Return an independent timeseries holding the same snapshots."""
        clone = EntityTimeseries(self._entity)
        clone._snapshots = dict(self._snapshots)
        clone._newest = self._newest
        return clone

    def upsert(self, snapshot: Snapshot) -> None:
        """Insert or replace the snapshot for the snapshot's period.

        The page name follows the newest month held; the id never changes.

        Raises:
            ValueError: if the snapshot belongs to a different page.
        """
        if snapshot.entity_id != self.entity_id:
            raise ValueError(
                f"Snapshot for page '{snapshot.entity_id}' cannot be added to "
                f"timeseries of page '{self.entity_id}'"
            )
        key = (snapshot.year, snapshot.month)
        is_newest = self._newest is None or key >= self._newest
        if is_newest:
            self._newest = key
            if snapshot.entity.name != self._entity.name:
                log.debug(
                    "Page %s renamed: %r -> %r", self.entity_id, self._entity.name, snapshot.entity.name
                )
                self._entity = snapshot.entity
        self._snapshots[key] = snapshot

    def get(self, year: int, month: int) -> Snapshot | None:
        return self._snapshots.get((int(year), int(month)))

    def has_period(self, year: int, month: int) -> bool:
        return self.get(year, month) is not None

    def periods(self) -> list[Period]:
        """Return the periods with data, oldest first."""
        return [Period(year=y, month=m) for y, m in sorted(self._snapshots)]

    def get_all_monthly_data(self) -> list[Snapshot]:
        """Return every snapshot ordered by (year, month) ascending."""
        return [self._snapshots[k] for k in sorted(self._snapshots)]

    def select(self, periods: Iterable[Period] | None = None) -> list[Snapshot]:
        """Return snapshots for the given periods (all when None), oldest first."""
        if periods is None:
            return self.get_all_monthly_data()
        wanted = set(periods)
        return [s for s in self.get_all_monthly_data() if s.period in wanted]

    def values(self, metric: MetricKey | str) -> list[tuple[Period, float]]:
        """Return the chronological `(period, value)` series of one metric."""
        key = MetricKey(metric)
        return [(s.period, s.metrics[key]) for s in self.get_all_monthly_data()]


class Dataset:
    """Every page's timeseries, keyed by page id."""

    def __init__(self) -> None:
        self._timeseries: dict[str, EntityTimeseries] = {}

    def __len__(self) -> int:
        return len(self._timeseries)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._timeseries

    def ingest(self, snapshot: Snapshot) -> None:
        """Add a snapshot, creating the page's timeseries on first sight."""
        ts = self._timeseries.get(snapshot.entity_id)
        if ts is None:
            ts = EntityTimeseries(snapshot.entity)
            self._timeseries[snapshot.entity_id] = ts
        ts.upsert(snapshot)

    def ingest_many(self, snapshots: Iterable[Snapshot]) -> int:
        """Ingest snapshots in order; return how many were processed."""
        n = 0
        for s in snapshots:
            self.ingest(s)
            n += 1
        return n

    def timeseries_for(self, entity_id: str) -> EntityTimeseries | None:
        """Return a copy of one page's timeseries, or None for an unknown page."""
        ts = self._timeseries.get(str(entity_id))
        return ts.copy() if ts is not None else None

    def entities(self) -> list[Entity]:
        """Return all pages sorted by name (then id)."""
        return sorted(
            (ts.entity for ts in self._timeseries.values()),
            key=lambda e: (e.name.casefold(), e.entity_id),
        )

    def all_timeseries(self) -> list[EntityTimeseries]:
        return sorted(
            (ts.copy() for ts in self._timeseries.values()),
            key=lambda ts: (ts.entity.name.casefold(), ts.entity_id),
        )

    def periods_across_all_entities(self) -> list[Period]:
        """Return the union of all pages' periods, deduplicated, oldest first."""
        periods: set[Period] = set()
        for ts in self._timeseries.values():
            periods.update(ts.periods())
        return sorted(periods, key=lambda p: p.key)

    def snapshots_for_period(self, year: int, month: int) -> list[Snapshot]:
        """Return every page's snapshot for a month, sorted by page name.

        An unknown period yields an empty list.
        """
        found: list[Snapshot] = []
        for ts in self._timeseries.values():
            snapshot = ts.get(year, month)
            if snapshot is not None:
                found.append(snapshot)
        return sorted(found, key=lambda s: (s.entity.name.casefold(), s.entity_id))

    def all_snapshots(self) -> list[Snapshot]:
        out: list[Snapshot] = []
        for ts in sorted(self._timeseries.values(), key=lambda t: (t.entity.name.casefold(), t.entity_id)):
            out.extend(ts.get_all_monthly_data())
        return out

    def stats(self) -> DatasetStats:
        return DatasetStats(
            total_entities=len(self._timeseries),
            total_periods=len(self.periods_across_all_entities()),
            total_data_points=sum(len(ts) for ts in self._timeseries.values()),
        )

    def clear(self) -> None:
        self._timeseries.clear()

    def to_frame(self) -> pd.DataFrame:
        """Return one row per snapshot with one column per metric.

        Columns: `entity_id`, `entity_name`, `year`, `month`, `period` and the
        MetricKey values. Rows are ordered by page name, then period.
        """
        columns = ["entity_id", "entity_name", "year", "month", "period", *(k.value for k in MetricKey)]
        rows = [
            {
                "entity_id": s.entity_id,
                "entity_name": s.entity.name,
                "year": s.year,
                "month": s.month,
                "period": str(s.period),
                **{k.value: v for k, v in s.metrics.items()},
            }
            for s in self.all_snapshots()
        ]
        return pd.DataFrame(rows, columns=columns)
