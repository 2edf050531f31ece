from __future__ import annotations

import pytest

from pagestats_pipeline.analytics.service import AnalyticsService
from pagestats_pipeline.errors import SemanticViolationError
from pagestats_pipeline.models import Entity, Snapshot
from pagestats_pipeline.registry import MetricKey, Operation
from pagestats_pipeline.timeseries import Dataset


def _series(entity_id: str, metric: str, values: list[float], name: str = "Page", **fixed: float) -> list[Snapshot]:
    return [
        Snapshot(
            entity=Entity(entity_id=entity_id, name=name),
            year=2024,
            month=i,
            metrics={metric: v, **fixed},
        )
        for i, v in enumerate(values, start=1)
    ]


def _analytics(*series: list[Snapshot]) -> AnalyticsService:
    ds = Dataset()
    for s in series:
        ds.ingest_many(s)
    return AnalyticsService(ds)


def test_trend_endpoint_change() -> None:
    a = _analytics(_series("p", "reach", [1000, 1500]))
    [point] = a.trend("p", "reach")
    assert point.absolute_change == 500
    assert point.percentage_change == 50.0
    assert str(point.previous_period) == "2024-01"


def test_trend_from_zero_and_short_series() -> None:
    a = _analytics(_series("p", "comment", [0, 0, 5]))
    points = a.trend("p", "comment")
    assert [p.percentage_change for p in points] == [0.0, 100.0]
    assert _analytics(_series("q", "comment", [3])).trend("q", "comment") == []
    assert a.trend("unknown", "comment") == []


def test_trend_summary_buckets() -> None:
    a = _analytics(_series("p", "engagements", [100, 150, 150.5, 100]))
    summary = a.trend_summary(a.trend("p", "engagements"))
    assert summary.total_periods == 3
    assert (summary.positive_months, summary.stable_months, summary.negative_months) == (1, 1, 1)
    assert a.trend_summary([]).total_periods == 0


def test_performance_extremes_first_occurrence_wins() -> None:
    a = _analytics(_series("p", "reactions", [5, 9, 2, 9, 2]))
    ext = a.performance_extremes("p", "reactions")
    assert ext.best is not None and ext.worst is not None
    assert (ext.best.period.month, ext.best.value) == (2, 9)
    assert (ext.worst.period.month, ext.worst.value) == (3, 2)
    empty = a.performance_extremes("unknown", "reactions")
    assert empty.best is None and empty.worst is None


def test_anomaly_scenario_flags_spike() -> None:
    a = _analytics(_series("p", "engagements", [10, 12, 11, 13, 200]))
    report = a.anomalies("p", "engagements", threshold=2.0)
    assert [o.value for o in report.outliers] == [200]
    outlier = report.outliers[0]
    assert outlier.direction == "high"
    assert outlier.period.month == 5
    assert outlier.standard_deviations >= 2.0
    stats = report.statistics
    assert stats is not None
    assert stats.sample_size == 5
    assert stats.median == 12
    assert stats.mean == pytest.approx(49.2)
    assert stats.upper_bound < 200


def test_anomalies_need_three_points_and_variation() -> None:
    short = _analytics(_series("p", "reach", [10, 500]))
    report = short.anomalies("p", "reach")
    assert report.outliers == []
    assert report.statistics is None

    flat = _analytics(_series("p", "reach", [7, 7, 7, 7]))
    report = flat.anomalies("p", "reach")
    assert report.outliers == []
    assert report.statistics is not None
    assert report.statistics.standard_deviation == 0

    with pytest.raises(ValueError):
        flat.anomalies("p", "reach", threshold=0)


def test_anomaly_threshold_is_strict() -> None:
    # median 0, population std 4: the spike sits exactly 2.5 deviations out
    a = _analytics(_series("p", "engagements", [0, 0, 0, 0, 10]))
    at_boundary = a.anomalies("p", "engagements", threshold=2.5)
    assert at_boundary.statistics.standard_deviation == pytest.approx(4.0)
    assert at_boundary.outliers == []
    below = a.anomalies("p", "engagements", threshold=2.4)
    assert [o.value for o in below.outliers] == [10]
    assert below.outliers[0].standard_deviations == pytest.approx(2.5)


def test_correlation_scenario() -> None:
    snaps = [
        Snapshot(
            entity=Entity(entity_id="p", name="P"),
            year=2024,
            month=i,
            metrics={"reach": r, "engaged_users": e},
        )
        for i, (r, e) in enumerate([(10, 1), (20, 2), (30, 3)], start=1)
    ]
    result = _analytics(snaps).correlation("p", "reach", "engaged_users")
    assert result.correlation == pytest.approx(1.0)
    assert result.sample_size == 3
    assert result.reason is None


def test_correlation_without_enough_data_or_variance() -> None:
    a = _analytics(_series("p", "reach", [10, 20], engaged_users=1))
    short = a.correlation("p", "reach", "engaged_users")
    assert short.correlation is None
    assert short.sample_size == 2
    assert short.reason

    b = _analytics(_series("p", "reach", [10, 20, 30], engaged_users=1))
    constant = b.correlation("p", "reach", "engaged_users")
    assert constant.correlation is None
    assert constant.reason


def test_rank_entities_uses_preferred_operation_and_rejects_sum_of_reach() -> None:
    a = _analytics(
        _series("x", "reach", [100, 300], name="X", engagements=10),
        _series("y", "reach", [250, 250], name="Y", engagements=30),
        _series("z", "reach", [50, 50], name="Z", engagements=10),
    )
    ranked = a.rank_entities("reach")
    assert [(r.rank, r.entity.entity_id, r.value) for r in ranked] == [(1, "y", 250), (2, "x", 200), (3, "z", 50)]
    assert ranked[0].operation is Operation.AVERAGE

    by_engagements = a.rank_entities("engagements", "sum")
    assert [(r.rank, r.entity.entity_id) for r in by_engagements] == [(1, "y"), (2, "x"), (2, "z")]

    with pytest.raises(SemanticViolationError):
        a.rank_entities("reach", "sum")


def test_rank_entities_restricted_to_periods() -> None:
    a = _analytics(
        _series("x", "comment", [100, 1], name="X"),
        _series("y", "comment", [1, 50], name="Y"),
    )
    ranked = a.rank_entities("comment", "max", periods=["2024-02"])
    assert [r.entity.entity_id for r in ranked] == ["y", "x"]


def test_engagement_rates() -> None:
    snaps = [
        Snapshot(entity=Entity(entity_id="p", name="P"), year=2024, month=m, metrics=metrics)
        for m, metrics in enumerate(
            [
                {"reach": 1000, "engaged_users": 125},
                {"reach": 0, "engaged_users": 10},
                {"reach": 100, "engaged_users": 150},
            ],
            start=1,
        )
    ]
    a = _analytics(snaps)
    rates = a.engagement_rates("p")
    assert [r.engagement_rate for r in rates] == [12.5, None, 150.0]
    assert [r.exceeds_reach for r in rates] == [False, True, True]

    summary = a.average_engagement_rate("p")
    assert summary.valid_periods == 2
    assert summary.total_periods == 3
    assert summary.average_engagement_rate == 81.25
    assert summary.periods_exceeding_reach == 2
    assert a.engagement_rates("unknown") == []


def test_exceeds_reach_compares_raw_counts() -> None:
    a = _analytics(
        [
            Snapshot(
                entity=Entity(entity_id="p", name="P"),
                year=2024,
                month=1,
                metrics={"reach": 100000, "engaged_users": 100001},
            ),
            Snapshot(
                entity=Entity(entity_id="p", name="P"),
                year=2024,
                month=2,
                metrics={"reach": 100000, "engaged_users": 100000},
            ),
        ]
    )
    rates = a.engagement_rates("p")
    assert rates[0].engagement_rate == 100.0
    assert rates[0].exceeds_reach is True
    assert rates[1].exceeds_reach is False


def test_entity_report() -> None:
    a = _analytics(_series("p", "engagements", [100, 200, 300], reach=50))
    report = a.entity_report("p")
    assert report.total_periods == 3
    eng = report.metrics[MetricKey.ENGAGEMENTS]
    assert eng.aggregated.operation is Operation.SUM
    assert eng.aggregated.value == 600
    assert eng.trend.positive_months == 2
    assert eng.extremes.best is not None and eng.extremes.best.value == 300
    assert report.metrics[MetricKey.REACH].aggregated.operation is Operation.AVERAGE
    assert a.entity_report("unknown").entity is None
