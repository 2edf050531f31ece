"""Aggregation over the in-memory Dataset.

Two query axes exist:
- one page across months (`Axis.TIME`)
- one month across pages (`Axis.ENTITIES`)

Every request is checked against the MetricRegistry before anything is
computed. Asking for a sum of a unique-count metric (reach, engaged users)
raises `SemanticViolationError` instead of returning a misleading number.

Expectations:
- Input: Snapshots whose metric values are non-negative floats; values coming
  from outside the dataset are filtered again (None, NaN, negatives dropped).
- Outputs: pydantic result models from `pagestats_pipeline.models`.
"""
from __future__ import annotations

import logging
import math
import numbers
from typing import Any, Callable, Iterable, Sequence, TypeVar

import numpy as np

from pagestats_pipeline.errors import SemanticViolationError
from pagestats_pipeline.models import (
    AggregateResult,
    EntityPeriodValues,
    EntitySummary,
    MetricAggregate,
    MetricComparison,
    MetricResult,
    MetricValue,
    Period,
    PeriodComparison,
    PeriodMetricSummary,
    PeriodSummary,
    RankedEntity,
    ShareResult,
    Snapshot,
)
from pagestats_pipeline.registry import Axis, MetricKey, MetricRegistry, Operation, build_default_registry
from pagestats_pipeline.timeseries import Dataset

log = logging.getLogger(__name__)

T = TypeVar("T")

UNIQUE_ACROSS_ENTITIES_NOTE = (
    "Average across pages only: a total cannot be computed because the overlap "
    "of people between pages is unknown."
)
UNIQUE_ACROSS_TIME_NOTE = "Average across months: unique people per month cannot be summed."
FLOW_ACROSS_TIME_NOTE = "Total across months."


# =========================================================
# PURE HELPERS
# =========================================================

def valid_values(values: Iterable[Any]) -> list[float]:
    """Drop None, non-numeric, NaN, infinite and negative values."""
    out: list[float] = []
    for v in values:
        if v is None or isinstance(v, bool) or not isinstance(v, numbers.Real):
            continue
        f = float(v)
        if math.isnan(f) or math.isinf(f) or f < 0:
            continue
        out.append(f)
    return out


def aggregate_values(values: Iterable[Any], operation: Operation | str) -> MetricAggregate:
    """Apply `operation` to the valid values.

    An empty (or all-invalid) input yields `value=0` and `valid_count=0`.
    Averages are not rounded.
    """
    op = Operation.parse(operation)
    vals = valid_values(values)
    if not vals:
        return MetricAggregate(operation=op, value=0.0, valid_count=0)

    arr = np.asarray(vals, dtype=float)
    if op is Operation.SUM:
        value = float(arr.sum())
    elif op is Operation.AVERAGE:
        value = float(arr.mean())
    elif op is Operation.MIN:
        value = float(arr.min())
    else:
        value = float(arr.max())
    return MetricAggregate(operation=op, value=value, valid_count=len(vals))


def dense_ranks(items: Sequence[T], value: Callable[[T], float]) -> list[tuple[int, T]]:
    """Sort `items` by `value` descending and assign dense ranks (1, 1, 2, ...).

    Ties keep their input order.
    """
    ordered = sorted(items, key=value, reverse=True)
    ranked: list[tuple[int, T]] = []
    rank = 0
    previous: float | None = None
    for item in ordered:
        v = value(item)
        if previous is None or v != previous:
            rank += 1
            previous = v
        ranked.append((rank, item))
    return ranked


def percentage_change_or_none(current: float, previous: float) -> float | None:
    if previous > 0:
        return (current - previous) / previous * 100.0
    return None


def _coerce_periods(periods: Iterable[Any] | None) -> list[Period] | None:
    if not periods:
        return None
    return [Period.coerce(p) for p in periods]


# =========================================================
# SERVICE
# =========================================================

class AggregationService:
    """Registry-checked aggregations over a Dataset.

    Args:
        dataset: The in-memory dataset to query.
        registry: Metric registry; the default seven-metric registry when None.
    """

    def __init__(self, dataset: Dataset, registry: MetricRegistry | None = None) -> None:
        self._dataset = dataset
        self._registry = registry if registry is not None else build_default_registry()

    @property
    def registry(self) -> MetricRegistry:
        return self._registry

    @property
    def dataset(self) -> Dataset:
        return self._dataset

    def aggregate(
        self,
        snapshots: Iterable[Snapshot],
        metric: MetricKey | str,
        operation: Operation | str,
        axis: Axis = Axis.TIME,
    ) -> MetricAggregate:
        """Aggregate one metric over the given snapshots.

        Raises:
            SemanticViolationError: if the registry forbids `operation` for
                `metric` along `axis` (checked before looking at the data).
        """
        op = self._registry.check_operation(metric, operation, axis)
        key = self._registry.definition_of(metric).key
        return aggregate_values((s.metrics.get(key) for s in snapshots), op)

    # -----------------------------
    # One page across months
    # -----------------------------
    def aggregate_entity(
        self,
        entity_id: str,
        metric: MetricKey | str,
        operation: Operation | str,
        periods: Iterable[Any] | None = None,
    ) -> AggregateResult:
        """Aggregate one metric over a page's months.

        Args:
            entity_id: Page id.
            metric: Metric key.
            operation: `sum`, `average`, `min` or `max` (aliases accepted).
            periods: Optional subset of periods; all periods when empty.

        Returns:
            AggregateResult. An unknown page yields a zero result with
            `entity=None`.

        Raises:
            SemanticViolationError: e.g. `sum` of reach.
        """
        op = self._registry.check_operation(metric, operation, Axis.TIME)
        key = self._registry.definition_of(metric).key

        ts = self._dataset.timeseries_for(entity_id)
        if ts is None:
            log.info("aggregate_entity: no data for page %s", entity_id)
            return AggregateResult(entity=None, metric=key, operation=op, value=0.0, valid_count=0)

        snapshots = ts.select(_coerce_periods(periods))
        agg = self.aggregate(snapshots, key, op, Axis.TIME)
        return AggregateResult(
            entity=ts.entity,
            metric=key,
            operation=op,
            axis=Axis.TIME,
            value=agg.value,
            valid_count=agg.valid_count,
            periods_included=[s.period for s in snapshots],
        )

    def summarize_entity(self, entity_id: str, periods: Iterable[Any] | None = None) -> EntitySummary:
        """Summarize every metric of one page over its months.

        Flow-count metrics report a total and an average; unique-count metrics
        report only the average (with min/max).
        """
        ts = self._dataset.timeseries_for(entity_id)
        snapshots = ts.select(_coerce_periods(periods)) if ts is not None else []

        results: dict[MetricKey, MetricResult] = {}
        for d in self._registry:
            average = self.aggregate(snapshots, d.key, Operation.AVERAGE)
            low = self.aggregate(snapshots, d.key, Operation.MIN)
            high = self.aggregate(snapshots, d.key, Operation.MAX)
            if d.summable_across_time:
                total = self.aggregate(snapshots, d.key, Operation.SUM)
                results[d.key] = MetricResult(
                    type="total",
                    total=total.value,
                    average=average.value,
                    min=low.value,
                    max=high.value,
                    valid_periods=total.valid_count,
                    note=FLOW_ACROSS_TIME_NOTE,
                )
            else:
                results[d.key] = MetricResult(
                    type="average",
                    average=average.value,
                    min=low.value,
                    max=high.value,
                    valid_periods=average.valid_count,
                    note=UNIQUE_ACROSS_TIME_NOTE,
                )

        included = [s.period for s in snapshots]
        return EntitySummary(
            entity=ts.entity if ts is not None else None,
            periods_included=included,
            first_period=included[0] if included else None,
            last_period=included[-1] if included else None,
            metric_results=results,
        )

    # -----------------------------
    # One month across pages
    # -----------------------------
    def summarize_period(self, year: int, month: int) -> PeriodSummary:
        """Summarize every metric across all pages for one month.

        Unique-count metrics carry no total and an explanatory note. An
        unknown month yields `total_entities=0` and zeroed metrics.
        """
        period = Period(year=year, month=month)
        snapshots = self._dataset.snapshots_for_period(year, month)

        metrics: dict[MetricKey, PeriodMetricSummary] = {}
        for d in self._registry:
            average = self.aggregate(snapshots, d.key, Operation.AVERAGE, Axis.ENTITIES)
            low = self.aggregate(snapshots, d.key, Operation.MIN, Axis.ENTITIES)
            high = self.aggregate(snapshots, d.key, Operation.MAX, Axis.ENTITIES)
            total = None
            note = None
            if d.summable_across_entities:
                total = self.aggregate(snapshots, d.key, Operation.SUM, Axis.ENTITIES).value
            else:
                note = UNIQUE_ACROSS_ENTITIES_NOTE
            metrics[d.key] = PeriodMetricSummary(
                type=d.category,
                total=total,
                average=average.value,
                min=low.value,
                max=high.value,
                valid_entities=average.valid_count,
                note=note,
            )

        return PeriodSummary(period=period, total_entities=len(snapshots), metrics=metrics)

    def compare_periods(self, periods: Iterable[Any]) -> list[PeriodComparison]:
        """Compare consecutive periods (in the given order) across all pages.

        Flow-count metrics compare totals; unique-count metrics compare
        averages. Fewer than two periods yields an empty list.
        """
        wanted = [Period.coerce(p) for p in periods]
        if len(wanted) < 2:
            return []

        summaries = [self.summarize_period(p.year, p.month) for p in wanted]
        out: list[PeriodComparison] = []
        for previous, current in zip(summaries, summaries[1:]):
            metrics: dict[MetricKey, MetricComparison] = {}
            for d in self._registry:
                cur_m = current.metrics[d.key]
                prev_m = previous.metrics[d.key]
                if d.summable_across_entities:
                    basis = "total"
                    cur, prev = cur_m.total or 0.0, prev_m.total or 0.0
                else:
                    basis = "average"
                    cur, prev = cur_m.average, prev_m.average
                metrics[d.key] = MetricComparison(
                    basis=basis,
                    current=cur,
                    previous=prev,
                    absolute_change=cur - prev,
                    percentage_change=percentage_change_or_none(cur, prev),
                )
            out.append(
                PeriodComparison(
                    current_period=current.period,
                    previous_period=previous.period,
                    entity_count_change=current.total_entities - previous.total_entities,
                    metrics=metrics,
                )
            )
        return out

    def per_entity_values(self, year: int, month: int) -> list[EntityPeriodValues]:
        """Return each page's raw metric values for one month, tagged by category."""
        out: list[EntityPeriodValues] = []
        for s in self._dataset.snapshots_for_period(year, month):
            out.append(
                EntityPeriodValues(
                    entity=s.entity,
                    period=s.period,
                    metrics={
                        d.key: MetricValue(value=s.metrics[d.key], category=d.category)
                        for d in self._registry
                    },
                )
            )
        return out

    def top_performers(
        self,
        year: int,
        month: int,
        metric: MetricKey | str,
        n: int = 5,
    ) -> list[RankedEntity]:
        """Return the `n` best pages of a month by one metric (dense ranks)."""
        key = self._registry.definition_of(metric).key
        period = Period(year=year, month=month)
        candidates = [
            s for s in self._dataset.snapshots_for_period(year, month)
            if valid_values([s.metrics.get(key)])
        ]
        ranked = dense_ranks(candidates, lambda s: s.metrics[key])
        return [
            RankedEntity(rank=rank, entity=s.entity, metric=key, value=s.metrics[key], period=period)
            for rank, s in ranked[: max(n, 0)]
        ]

    def market_share(self, year: int, month: int, metric: MetricKey | str) -> list[ShareResult]:
        """Return each page's share (percent, 2 decimals) of a flow-count metric.

        Raises:
            SemanticViolationError: for unique-count metrics, whose values
                cannot be added up across pages.
        """
        d = self._registry.definition_of(metric)
        if not d.summable_across_entities:
            raise SemanticViolationError(
                metric=d.key.value,
                operation="market_share",
                explanation=(
                    f"Market share is only defined for flow-count metrics; {d.display_name} "
                    f"counts unique people who may overlap between pages."
                ),
                suggestion="Compare pages with top performers or the period average instead.",
                axis=Axis.ENTITIES.value,
            )

        period = Period(year=year, month=month)
        snapshots = [
            s for s in self._dataset.snapshots_for_period(year, month)
            if valid_values([s.metrics.get(d.key)])
        ]
        total = self.aggregate(snapshots, d.key, Operation.SUM, Axis.ENTITIES).value
        if total <= 0:
            return []

        shares = [
            ShareResult(
                entity=s.entity,
                period=period,
                metric=d.key,
                value=s.metrics[d.key],
                market_share=round(s.metrics[d.key] / total * 100.0, 2),
                total_market=total,
            )
            for s in snapshots
        ]
        return sorted(shares, key=lambda r: r.market_share, reverse=True)
