from __future__ import annotations

import pytest

from pagestats_pipeline.aggregate.service import AggregationService, aggregate_values, dense_ranks
from pagestats_pipeline.errors import SemanticViolationError
from pagestats_pipeline.models import Entity, Snapshot
from pagestats_pipeline.registry import Axis, MetricKey, Operation
from pagestats_pipeline.timeseries import Dataset


def _snap(entity_id: str, year: int, month: int, name: str | None = None, **metrics: float) -> Snapshot:
    return Snapshot(
        entity=Entity(entity_id=entity_id, name=name or f"Page {entity_id}"),
        year=year,
        month=month,
        metrics=metrics,
    )


@pytest.fixture
def service() -> AggregationService:
    ds = Dataset()
    ds.ingest_many(
        [
            _snap("a", 2024, 1, "Alpha", reach=1000, engaged_users=100, engagements=300, publications=10),
            _snap("a", 2024, 2, "Alpha", reach=1500, engaged_users=120, engagements=500, publications=12),
            _snap("b", 2024, 1, "Beta", reach=400, engaged_users=80, engagements=700, publications=5),
            _snap("b", 2024, 2, "Beta", reach=600, engaged_users=90, engagements=0, publications=6),
            _snap("c", 2024, 2, "Gamma", reach=600, engaged_users=30, engagements=500, publications=1),
        ]
    )
    return AggregationService(ds)


def test_aggregate_values_filters_invalid_input() -> None:
    agg = aggregate_values([10, None, float("nan"), -4, "x", 20], "average")
    assert agg.value == 15.0
    assert agg.valid_count == 2
    empty = aggregate_values([], Operation.SUM)
    assert (empty.value, empty.valid_count) == (0.0, 0)


def test_dense_ranks_share_rank_on_ties() -> None:
    ranked = dense_ranks([("x", 5), ("y", 9), ("z", 5)], lambda t: t[1])
    assert [(r, t[0]) for r, t in ranked] == [(1, "y"), (2, "x"), (2, "z")]


@pytest.mark.parametrize("metric", ["reach", "engaged_users"])
def test_sum_of_unique_count_metric_is_rejected(service: AggregationService, metric: str) -> None:
    with pytest.raises(SemanticViolationError):
        service.aggregate_entity("a", metric, "sum")
    # also with no data at all
    with pytest.raises(SemanticViolationError):
        service.aggregate_entity("missing", metric, "sum")
    with pytest.raises(SemanticViolationError):
        service.aggregate([], metric, Operation.SUM, Axis.ENTITIES)


def test_average_of_single_period_equals_value(service: AggregationService) -> None:
    r = service.aggregate_entity("a", "reach", "average", periods=["2024-02"])
    assert r.value == 1500
    assert r.valid_count == 1
    assert [str(p) for p in r.periods_included] == ["2024-02"]


def test_aggregate_entity_flow_sum_and_unknown_entity(service: AggregationService) -> None:
    r = service.aggregate_entity("a", "engagements", "total")
    assert r.value == 800
    assert r.operation is Operation.SUM
    missing = service.aggregate_entity("nope", "engagements", "sum")
    assert missing.entity is None
    assert missing.value == 0
    assert missing.valid_count == 0


def test_summarize_entity(service: AggregationService) -> None:
    s = service.summarize_entity("a")
    assert str(s.first_period) == "2024-01"
    assert str(s.last_period) == "2024-02"
    reach = s.metric_results[MetricKey.REACH]
    assert reach.type == "average"
    assert reach.total is None
    assert reach.average == 1250
    engagements = s.metric_results[MetricKey.ENGAGEMENTS]
    assert engagements.type == "total"
    assert engagements.total == 800


def test_summarize_period_has_no_total_for_unique_counts(service: AggregationService) -> None:
    s = service.summarize_period(2024, 2)
    assert s.total_entities == 3
    reach = s.metrics[MetricKey.REACH]
    assert reach.total is None
    assert reach.note and "overlap" in reach.note
    assert reach.average == 900
    assert s.metrics[MetricKey.ENGAGEMENTS].total == 1000


def test_summarize_unknown_period_is_zeroed(service: AggregationService) -> None:
    s = service.summarize_period(2030, 1)
    assert s.total_entities == 0
    assert s.metrics[MetricKey.ENGAGEMENTS].total == 0
    assert s.metrics[MetricKey.REACH].average == 0


def test_compare_periods(service: AggregationService) -> None:
    [c] = service.compare_periods(["2024-01", "2024-02"])
    assert c.entity_count_change == 1
    eng = c.metrics[MetricKey.ENGAGEMENTS]
    assert eng.basis == "total"
    assert (eng.previous, eng.current) == (1000, 1000)
    assert eng.percentage_change == 0
    reach = c.metrics[MetricKey.REACH]
    assert reach.basis == "average"
    assert reach.previous == 700
    assert reach.current == 900
    assert service.compare_periods(["2024-01"]) == []


def test_compare_periods_from_empty_previous(service: AggregationService) -> None:
    [c] = service.compare_periods(["2023-12", "2024-01"])
    assert c.metrics[MetricKey.ENGAGEMENTS].percentage_change is None


def test_top_performers_dense_ranks(service: AggregationService) -> None:
    top = service.top_performers(2024, 2, "reach", n=5)
    assert [(r.rank, r.entity.entity_id) for r in top] == [(1, "a"), (2, "b"), (2, "c")]
    assert len(service.top_performers(2024, 2, "reach", n=1)) == 1


def test_market_share_scenario() -> None:
    ds = Dataset()
    ds.ingest(_snap("x", 2024, 1, "X", engagements=300))
    ds.ingest(_snap("y", 2024, 1, "Y", engagements=700))
    shares = AggregationService(ds).market_share(2024, 1, "engagements")
    assert [(s.entity.entity_id, s.market_share) for s in shares] == [("y", 70.0), ("x", 30.0)]
    assert shares[0].total_market == 1000


def test_market_share_rejects_unique_counts_and_handles_empty(service: AggregationService) -> None:
    with pytest.raises(SemanticViolationError):
        service.market_share(2024, 1, "reach")
    assert service.market_share(2030, 1, "engagements") == []


def test_per_entity_values_carry_category(service: AggregationService) -> None:
    rows = service.per_entity_values(2024, 1)
    assert [r.entity.name for r in rows] == ["Alpha", "Beta"]
    assert rows[0].metrics[MetricKey.REACH].category.value == "unique_count"
