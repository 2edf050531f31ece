"""Timeseries analytics for one page (plus cross-page ranking).

All methods read the Dataset and return pydantic result models. A page that is
not in the dataset yields empty results (`[]`, None fields or zeroed
summaries), never an exception.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable

import numpy as np

from pagestats_pipeline.aggregate.service import (
    AggregationService,
    dense_ranks,
    valid_values,
)
from pagestats_pipeline.models import (
    AnomalyReport,
    AnomalyStatistics,
    CorrelationResult,
    EngagementRate,
    EngagementRateSummary,
    EntityReport,
    Extremes,
    MetricReport,
    Outlier,
    Period,
    PerformancePoint,
    RankedEntity,
    TrendPoint,
    TrendSummary,
)
from pagestats_pipeline.registry import Axis, MetricKey, MetricRegistry, Operation
from pagestats_pipeline.timeseries import Dataset

log = logging.getLogger(__name__)

# month-over-month moves within +/- this many percent count as stable
STABLE_BAND_PCT = 1.0

MIN_ANOMALY_POINTS = 3
MIN_CORRELATION_POINTS = 3


def _series(dataset: Dataset, entity_id: str, metric: MetricKey) -> list[tuple[Period, float]]:
    ts = dataset.timeseries_for(entity_id)
    if ts is None:
        return []
    return ts.values(metric)


class AnalyticsService:
    """Trend, anomaly and correlation analytics.

    Args:
        dataset: The in-memory dataset to query.
        registry: Metric registry; taken from `aggregation` (or the default
            registry) when None.
        aggregation: Aggregation service used for ranking; built over the same
            dataset and registry when None.
    """

    def __init__(
        self,
        dataset: Dataset,
        registry: MetricRegistry | None = None,
        aggregation: AggregationService | None = None,
    ) -> None:
        if aggregation is None:
            aggregation = AggregationService(dataset, registry)
        self._dataset = dataset
        self._aggregation = aggregation
        self._registry = registry if registry is not None else aggregation.registry

    @property
    def registry(self) -> MetricRegistry:
        return self._registry

    def _key(self, metric: MetricKey | str) -> MetricKey:
        return self._registry.definition_of(metric).key

    # =========================================================
    # TRENDS
    # =========================================================

    def trend(self, entity_id: str, metric: MetricKey | str) -> list[TrendPoint]:
        """Month-over-month changes of one metric, oldest first.

        `percentage_change` is the relative change when the previous value is
        positive; otherwise 100 if the metric appeared from nothing and 0 if it
        stayed at 0.
        """
        key = self._key(metric)
        series = _series(self._dataset, entity_id, key)
        points: list[TrendPoint] = []
        for (prev_period, prev), (period, cur) in zip(series, series[1:]):
            change = cur - prev
            if prev > 0:
                pct = change / prev * 100.0
            else:
                pct = 100.0 if cur > 0 else 0.0
            points.append(
                TrendPoint(
                    period=period,
                    previous_period=prev_period,
                    metric=key,
                    current_value=cur,
                    previous_value=prev,
                    absolute_change=change,
                    percentage_change=pct,
                )
            )
        return points

    @staticmethod
    def trend_summary(points: Iterable[TrendPoint]) -> TrendSummary:
        points = list(points)
        if not points:
            return TrendSummary()

        pct = np.asarray([p.percentage_change for p in points], dtype=float)
        absolute = np.asarray([p.absolute_change for p in points], dtype=float)
        positive = int((pct > STABLE_BAND_PCT).sum())
        negative = int((pct < -STABLE_BAND_PCT).sum())
        return TrendSummary(
            average_absolute_change=float(absolute.mean()),
            average_percentage_change=float(pct.mean()),
            total_periods=len(points),
            positive_months=positive,
            negative_months=negative,
            stable_months=len(points) - positive - negative,
        )

    def performance_extremes(self, entity_id: str, metric: MetricKey | str) -> Extremes:
        """Best and worst month of one metric; the earliest month wins ties."""
        key = self._key(metric)
        best: PerformancePoint | None = None
        worst: PerformancePoint | None = None
        for period, value in _series(self._dataset, entity_id, key):
            if best is None or value > best.value:
                best = PerformancePoint(period=period, value=value)
            if worst is None or value < worst.value:
                worst = PerformancePoint(period=period, value=value)
        return Extremes(metric=key, best=best, worst=worst)

    # =========================================================
    # ANOMALIES / CORRELATION
    # =========================================================

    def anomalies(
        self,
        entity_id: str,
        metric: MetricKey | str,
        threshold: float = 2.0,
    ) -> AnomalyReport:
        """Flag months whose value lies more than `threshold` standard
        deviations from the series median.

        The standard deviation is the population one (ddof=0). Deviation is
        measured from the median so that a single extreme month does not drag
        the reference point towards itself.

        Args:
            entity_id: Page id.
            metric: Metric key.
            threshold: Positive number of standard deviations.

        Returns:
            AnomalyReport. With fewer than three valid months, `outliers` is
            empty and `statistics` is None. A flat series has no outliers.

        Raises:
            ValueError: if `threshold` is not positive.
        """
        if threshold <= 0:
            raise ValueError(f"threshold must be positive, got {threshold}")

        key = self._key(metric)
        series = [(p, v) for p, v in _series(self._dataset, entity_id, key) if valid_values([v])]
        if len(series) < MIN_ANOMALY_POINTS:
            return AnomalyReport(metric=key)

        values = np.asarray([v for _, v in series], dtype=float)
        mean = float(values.mean())
        median = float(np.median(values))
        std = float(values.std(ddof=0))

        outliers: list[Outlier] = []
        if std > 0:
            for period, value in series:
                deviation = value - median
                z = abs(deviation) / std
                if z > threshold:
                    outliers.append(
                        Outlier(
                            period=period,
                            value=value,
                            direction="high" if deviation > 0 else "low",
                            deviation=deviation,
                            standard_deviations=z,
                        )
                    )

        if outliers:
            log.info("%d anomalous month(s) for %s/%s", len(outliers), entity_id, key.value)

        return AnomalyReport(
            metric=key,
            outliers=outliers,
            statistics=AnomalyStatistics(
                mean=mean,
                median=median,
                standard_deviation=std,
                lower_bound=median - threshold * std,
                upper_bound=median + threshold * std,
                threshold=threshold,
                sample_size=len(series),
            ),
        )

    def correlation(
        self,
        entity_id: str,
        metric_a: MetricKey | str,
        metric_b: MetricKey | str,
    ) -> CorrelationResult:
        """Pearson correlation between two metrics over one page's months.

        Only months where both values are valid take part. Fewer than three
        such months, or a metric that never changes, gives `correlation=None`
        and a `reason`.
        """
        key_a = self._key(metric_a)
        key_b = self._key(metric_b)
        ts = self._dataset.timeseries_for(entity_id)
        snapshots = ts.get_all_monthly_data() if ts is not None else []

        pairs = [
            (s.metrics[key_a], s.metrics[key_b])
            for s in snapshots
            if valid_values([s.metrics.get(key_a)]) and valid_values([s.metrics.get(key_b)])
        ]
        n = len(pairs)
        if n < MIN_CORRELATION_POINTS:
            return CorrelationResult(
                metric_a=key_a,
                metric_b=key_b,
                sample_size=n,
                reason=f"Need at least {MIN_CORRELATION_POINTS} months with both values, found {n}",
            )

        a = np.asarray([x for x, _ in pairs], dtype=float)
        b = np.asarray([y for _, y in pairs], dtype=float)
        if a.std(ddof=0) == 0 or b.std(ddof=0) == 0:
            return CorrelationResult(
                metric_a=key_a,
                metric_b=key_b,
                sample_size=n,
                reason="One of the metrics is constant over the period",
            )

        r = float(np.corrcoef(a, b)[0, 1])
        return CorrelationResult(metric_a=key_a, metric_b=key_b, correlation=r, sample_size=n)

    # =========================================================
    # RANKING
    # =========================================================

    def rank_entities(
        self,
        metric: MetricKey | str,
        operation: Operation | str | None = None,
        periods: Iterable[Any] | None = None,
    ) -> list[RankedEntity]:
        """Rank every page by one metric aggregated over time.

        Args:
            metric: Metric key.
            operation: Aggregation over each page's months; the registry's
                preferred operation along the time axis when None.
            periods: Optional subset of periods; all when empty.

        Returns:
            Pages with at least one valid value, best first, with dense ranks.

        Raises:
            SemanticViolationError: e.g. ranking by the sum of reach.
        """
        key = self._key(metric)
        if operation is None:
            op = self._registry.preferred_operation(key, Axis.TIME)
        else:
            op = self._registry.check_operation(key, operation, Axis.TIME)

        wanted = list(periods) if periods else None
        results = []
        for entity in self._dataset.entities():
            r = self._aggregation.aggregate_entity(entity.entity_id, key, op, wanted)
            if r.entity is not None and r.valid_count > 0:
                results.append(r)

        return [
            RankedEntity(rank=rank, entity=r.entity, metric=key, operation=op, value=r.value)
            for rank, r in dense_ranks(results, lambda r: r.value)
        ]

    # =========================================================
    # ENGAGEMENT RATE
    # =========================================================

    def engagement_rates(self, entity_id: str) -> list[EngagementRate]:
        """Engaged users as a percentage of reach, per month.

        The rate is rounded to 2 decimals and is None when reach is 0. Months
        with more engaged users than reach are kept and flagged with
        `exceeds_reach`, whatever the rounded rate.
        """
        ts = self._dataset.timeseries_for(entity_id)
        if ts is None:
            return []

        out: list[EngagementRate] = []
        for s in ts.get_all_monthly_data():
            reach = s.metrics[MetricKey.REACH]
            engaged = s.metrics[MetricKey.ENGAGED_USERS]
            rate = round(engaged / reach * 100.0, 2) if reach > 0 else None
            out.append(
                EngagementRate(
                    period=s.period,
                    reach=reach,
                    engaged_users=engaged,
                    engagement_rate=rate,
                    exceeds_reach=engaged > reach,
                )
            )
        return out

    def average_engagement_rate(self, entity_id: str) -> EngagementRateSummary:
        rates = self.engagement_rates(entity_id)
        valid = [r.engagement_rate for r in rates if r.engagement_rate is not None]
        if not valid:
            return EngagementRateSummary(total_periods=len(rates))

        arr = np.asarray(valid, dtype=float)
        return EngagementRateSummary(
            average_engagement_rate=round(float(arr.mean()), 2),
            min_engagement_rate=float(arr.min()),
            max_engagement_rate=float(arr.max()),
            valid_periods=len(valid),
            total_periods=len(rates),
            periods_exceeding_reach=sum(1 for r in rates if r.exceeds_reach),
        )

    # =========================================================
    # REPORT
    # =========================================================

    def entity_report(self, entity_id: str) -> EntityReport:
        """Aggregate, trend summary and extremes of every metric for one page.

        Each metric is aggregated with the registry's preferred operation over
        time (sum for flow counts, average for unique counts).
        """
        ts = self._dataset.timeseries_for(entity_id)
        if ts is None:
            return EntityReport(entity=None)

        snapshots = ts.get_all_monthly_data()
        metrics: dict[MetricKey, MetricReport] = {}
        for d in self._registry:
            op = self._registry.preferred_operation(d.key, Axis.TIME)
            points = self.trend(entity_id, d.key)
            metrics[d.key] = MetricReport(
                aggregated=self._aggregation.aggregate(snapshots, d.key, op, Axis.TIME),
                trend=self.trend_summary(points),
                extremes=self.performance_extremes(entity_id, d.key),
                monthly_trends=points,
            )

        return EntityReport(
            entity=ts.entity,
            total_periods=len(snapshots),
            first_period=snapshots[0].period if snapshots else None,
            last_period=snapshots[-1].period if snapshots else None,
            metrics=metrics,
        )
