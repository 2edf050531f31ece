from __future__ import annotations

import pytest

from pagestats_pipeline.errors import SemanticViolationError, UnknownMetricError
from pagestats_pipeline.registry import (
    DEFAULT_DEFINITIONS,
    NON_SUM_OPERATIONS,
    Axis,
    MetricCategory,
    MetricDefinition,
    MetricKey,
    MetricRegistry,
    Operation,
    build_default_registry,
)


def test_default_registry_covers_every_metric() -> None:
    reg = build_default_registry()
    assert len(reg) == len(MetricKey)
    assert set(reg.unique_metrics()) == {MetricKey.REACH, MetricKey.ENGAGED_USERS}
    assert len(reg.flow_metrics()) == 5


def test_unique_count_metrics_never_permit_sum() -> None:
    reg = build_default_registry()
    for key in reg.unique_metrics():
        d = reg.definition_of(key)
        assert d.category is MetricCategory.UNIQUE_COUNT
        assert not d.summable_across_time
        assert not d.summable_across_entities
        assert not reg.is_operation_allowed(key, "sum")
        assert reg.is_operation_allowed(key, "average")


def test_check_operation_rejects_sum_of_reach_over_time() -> None:
    reg = build_default_registry()
    with pytest.raises(SemanticViolationError) as exc:
        reg.check_operation("reach", "sum", Axis.TIME)
    err = exc.value
    assert err.metric == "reach"
    assert err.operation == "sum"
    assert err.axis == "time"
    assert "months" in err.explanation
    assert err.suggestion == "Use 'average' instead."


def test_check_operation_explains_entity_axis() -> None:
    reg = build_default_registry()
    with pytest.raises(SemanticViolationError) as exc:
        reg.check_operation(MetricKey.ENGAGED_USERS, Operation.SUM, Axis.ENTITIES)
    assert "overlap" in exc.value.explanation


def test_check_operation_accepts_aliases() -> None:
    reg = build_default_registry()
    assert reg.check_operation("engagements", "total") is Operation.SUM
    assert reg.check_operation("reach", "mean") is Operation.AVERAGE


def test_unknown_operation_is_value_error() -> None:
    with pytest.raises(ValueError):
        Operation.parse("median")


def test_unknown_metric_raises() -> None:
    reg = build_default_registry()
    assert "likes" not in reg
    with pytest.raises(UnknownMetricError):
        reg.definition_of("likes")


def test_preferred_operation_by_axis() -> None:
    reg = build_default_registry()
    assert reg.preferred_operation("reach", Axis.TIME) is Operation.AVERAGE
    assert reg.preferred_operation("reach", Axis.ENTITIES) is Operation.AVERAGE
    assert reg.preferred_operation("comment", Axis.TIME) is Operation.SUM


def test_definition_rejects_sum_for_non_summable_metric() -> None:
    with pytest.raises(ValueError):
        MetricDefinition(
            key=MetricKey.REACH,
            display_name="Reach",
            description="x",
            unit="people",
            category=MetricCategory.UNIQUE_COUNT,
            summable_across_time=False,
            summable_across_entities=False,
            permitted_operations=frozenset(Operation),
            preferred_operation=Operation.AVERAGE,
            source_column="Reach",
        )


def test_registry_rejects_missing_and_duplicate_definitions() -> None:
    with pytest.raises(ValueError):
        MetricRegistry(DEFAULT_DEFINITIONS[1:])
    with pytest.raises(ValueError):
        MetricRegistry((*DEFAULT_DEFINITIONS, DEFAULT_DEFINITIONS[0]))


def test_column_mapping_and_recommendations() -> None:
    reg = build_default_registry()
    mapping = reg.column_mapping()
    assert len(mapping) == len(MetricKey)
    assert mapping["Engaged Users"] is MetricKey.ENGAGED_USERS
    rec = reg.recommendations(["reach"])
    assert rec["reach"]["recommended_for_time"] == "average"
    assert "sum" not in rec["reach"]["permitted"]
    assert set(NON_SUM_OPERATIONS) == {Operation.AVERAGE, Operation.MIN, Operation.MAX}
