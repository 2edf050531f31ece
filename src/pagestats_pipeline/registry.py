"""Metric registry: which aggregations are valid for which metric.

Every metric in a monthly export is either a *unique-count* (distinct people
reached or engaged during the month) or a *flow-count* (events that happened
during the month). Unique counts can never be summed across months or across
pages because the same person may appear in several of them; flow counts can.

The registry is built once, is immutable, and is passed explicitly into the
aggregation and analytics services. It performs no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from pagestats_pipeline.errors import SemanticViolationError, UnknownMetricError


class MetricKey(str, Enum):
    """Closed set of metric keys carried by every Snapshot."""

    REACH = "reach"
    ENGAGED_USERS = "engaged_users"
    ENGAGEMENTS = "engagements"
    REACTIONS = "reactions"
    PUBLICATIONS = "publications"
    STATUS = "status"
    COMMENT = "comment"


class MetricCategory(str, Enum):
    UNIQUE_COUNT = "unique_count"
    FLOW_COUNT = "flow_count"


class Axis(str, Enum):
    """Direction of an aggregation: one page over months, or one month over pages."""

    TIME = "time"
    ENTITIES = "entities"


_OPERATION_ALIASES = {
    "total": "sum",
    "mean": "average",
    "avg": "average",
    "minimum": "min",
    "maximum": "max",
}


class Operation(str, Enum):
    SUM = "sum"
    AVERAGE = "average"
    MIN = "min"
    MAX = "max"

    @classmethod
    def parse(cls, value: "Operation | str") -> "Operation":
        """Return the Operation for a name or alias (`total`, `mean`, ...).

        Raises:
            ValueError: if the name is not a known operation.
        """
        if isinstance(value, Operation):
            return value
        name = str(value).strip().lower()
        name = _OPERATION_ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            allowed = ", ".join(op.value for op in cls)
            raise ValueError(f"Unknown operation '{value}'. Allowed: {allowed}") from None


ALL_OPERATIONS = frozenset(Operation)
NON_SUM_OPERATIONS = frozenset({Operation.AVERAGE, Operation.MIN, Operation.MAX})


@dataclass(frozen=True)
class MetricDefinition:
    """Static metadata for one metric.

    Attributes:
        key: Metric key.
        display_name: Human-readable label.
        description: What the number counts.
        unit: Unit label (people, interactions, posts...).
        category: Unique-count or flow-count.
        summable_across_time: Whether months may be added together.
        summable_across_entities: Whether pages may be added together.
        permitted_operations: Operations the aggregation service accepts.
        preferred_operation: Default operation over time.
        source_column: Column header in the reference export.
        warning_note: Caveat shown next to aggregated values, if any.
    """

    key: MetricKey
    display_name: str
    description: str
    unit: str
    category: MetricCategory
    summable_across_time: bool
    summable_across_entities: bool
    permitted_operations: frozenset[Operation]
    preferred_operation: Operation
    source_column: str
    warning_note: str | None = None

    def __post_init__(self) -> None:
        if not self.summable_across_time and Operation.SUM in self.permitted_operations:
            raise ValueError(
                f"{self.key.value}: metrics not summable across time cannot permit 'sum'"
            )
        if self.preferred_operation not in self.permitted_operations:
            raise ValueError(
                f"{self.key.value}: preferred operation "
                f"'{self.preferred_operation.value}' is not permitted"
            )

    @property
    def is_unique_count(self) -> bool:
        return self.category is MetricCategory.UNIQUE_COUNT

    def summable_along(self, axis: Axis) -> bool:
        if axis is Axis.TIME:
            return self.summable_across_time
        return self.summable_across_entities


def _unique_count(key: MetricKey, display_name: str, description: str, column: str) -> MetricDefinition:
    return MetricDefinition(
        key=key,
        display_name=display_name,
        description=description,
        unit="people",
        category=MetricCategory.UNIQUE_COUNT,
        summable_across_time=False,
        summable_across_entities=False,
        permitted_operations=NON_SUM_OPERATIONS,
        preferred_operation=Operation.AVERAGE,
        source_column=column,
        warning_note="Unique people per month; never summed across months or pages.",
    )


def _flow_count(
    key: MetricKey, display_name: str, description: str, unit: str, column: str
) -> MetricDefinition:
    return MetricDefinition(
        key=key,
        display_name=display_name,
        description=description,
        unit=unit,
        category=MetricCategory.FLOW_COUNT,
        summable_across_time=True,
        summable_across_entities=True,
        permitted_operations=ALL_OPERATIONS,
        preferred_operation=Operation.SUM,
        source_column=column,
    )


DEFAULT_DEFINITIONS: tuple[MetricDefinition, ...] = (
    _unique_count(
        MetricKey.REACH,
        "Reach",
        "Unique people who saw the page's content during the month",
        "Reach",
    ),
    _unique_count(
        MetricKey.ENGAGED_USERS,
        "Engaged users",
        "Unique people who interacted with the page's content during the month",
        "Engaged Users",
    ),
    _flow_count(
        MetricKey.ENGAGEMENTS,
        "Engagements",
        "Total interactions (reactions, comments and shares)",
        "interactions",
        "Engagements",
    ),
    _flow_count(
        MetricKey.REACTIONS,
        "Reactions",
        "Likes, hearts and other reactions on content",
        "reactions",
        "Reactions",
    ),
    _flow_count(
        MetricKey.PUBLICATIONS,
        "Publications",
        "Posts published during the month",
        "posts",
        "Publications",
    ),
    _flow_count(
        MetricKey.STATUS,
        "Status updates",
        "Status updates published during the month",
        "updates",
        "Status",
    ),
    _flow_count(
        MetricKey.COMMENT,
        "Comments",
        "Comments on content",
        "comments",
        "Comment",
    ),
)


class MetricRegistry:
    """Immutable lookup table of MetricDefinitions.

    Args:
        definitions: One definition per MetricKey. Duplicates and missing keys
            are rejected so every metric a Snapshot carries has a definition.
    """

    def __init__(self, definitions: Iterable[MetricDefinition]) -> None:
        table: dict[MetricKey, MetricDefinition] = {}
        for d in definitions:
            if d.key in table:
                raise ValueError(f"Duplicate metric definition: {d.key.value}")
            table[d.key] = d

        missing = [k.value for k in MetricKey if k not in table]
        if missing:
            raise ValueError(f"Metric registry is missing definitions for: {', '.join(missing)}")

        self._definitions: Mapping[MetricKey, MetricDefinition] = MappingProxyType(table)

    def __contains__(self, key: object) -> bool:
        try:
            return MetricKey(key) in self._definitions
        except ValueError:
            return False

    def __iter__(self):
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)

    def keys(self) -> list[MetricKey]:
        return list(self._definitions)

    def definition_of(self, key: MetricKey | str) -> MetricDefinition:
        """Return the definition for `key`.

        Raises:
            UnknownMetricError: if the key is not a registered metric.
        """
        try:
            return self._definitions[MetricKey(key)]
        except (ValueError, KeyError):
            known = ", ".join(k.value for k in self._definitions)
            raise UnknownMetricError(f"Unknown metric '{key}'. Known metrics: {known}") from None

    def is_operation_allowed(
        self,
        key: MetricKey | str,
        operation: Operation | str,
        axis: Axis | None = None,
    ) -> bool:
        definition = self.definition_of(key)
        op = Operation.parse(operation)
        if op not in definition.permitted_operations:
            return False
        if op is Operation.SUM and axis is not None:
            return definition.summable_along(Axis(axis))
        return True

    def preferred_operation(self, key: MetricKey | str, axis: Axis = Axis.TIME) -> Operation:
        definition = self.definition_of(key)
        if definition.summable_along(Axis(axis)):
            return Operation.SUM
        return definition.preferred_operation

    def check_operation(
        self,
        key: MetricKey | str,
        operation: Operation | str,
        axis: Axis = Axis.TIME,
    ) -> Operation:
        """Validate an aggregation request and return the parsed Operation.

        Raises:
            SemanticViolationError: if the operation is not valid for the
                metric along `axis`.
        """
        definition = self.definition_of(key)
        op = Operation.parse(operation)
        axis = Axis(axis)

        if op is Operation.SUM and not definition.summable_along(axis):
            if axis is Axis.TIME:
                explanation = (
                    f"{definition.display_name} counts unique people per month and "
                    f"can never be summed across months."
                )
            else:
                explanation = (
                    f"{definition.display_name} cannot be summed across pages "
                    f"because the overlap of people between pages is unknown."
                )
            raise SemanticViolationError(
                metric=definition.key.value,
                operation=op.value,
                explanation=explanation,
                suggestion=f"Use '{definition.preferred_operation.value}' instead.",
                axis=axis.value,
            )

        if op not in definition.permitted_operations:
            allowed = ", ".join(sorted(o.value for o in definition.permitted_operations))
            raise SemanticViolationError(
                metric=definition.key.value,
                operation=op.value,
                explanation=f"Operation '{op.value}' is not valid for {definition.display_name}.",
                suggestion=f"Use '{definition.preferred_operation.value}' (allowed: {allowed}).",
                axis=axis.value,
            )
        return op

    def metrics_in(self, category: MetricCategory) -> list[MetricKey]:
        return [d.key for d in self._definitions.values() if d.category is category]

    def flow_metrics(self) -> list[MetricKey]:
        return self.metrics_in(MetricCategory.FLOW_COUNT)

    def unique_metrics(self) -> list[MetricKey]:
        return self.metrics_in(MetricCategory.UNIQUE_COUNT)

    def column_mapping(self) -> dict[str, MetricKey]:
        """Return `{source_column: MetricKey}` for the reference export."""
        return {d.source_column: d.key for d in self._definitions.values()}

    def recommendations(self, keys: Iterable[MetricKey | str] | None = None) -> dict[str, dict[str, Any]]:
        """Describe the recommended aggregation per metric along each axis."""
        selected = [self.definition_of(k) for k in keys] if keys is not None else list(self)
        out: dict[str, dict[str, Any]] = {}
        for d in selected:
            out[d.key.value] = {
                "display_name": d.display_name,
                "category": d.category.value,
                "preferred": d.preferred_operation.value,
                "permitted": sorted(op.value for op in d.permitted_operations),
                "recommended_for_time": self.preferred_operation(d.key, Axis.TIME).value,
                "recommended_for_entities": self.preferred_operation(d.key, Axis.ENTITIES).value,
                "warning_note": d.warning_note,
            }
        return out


def build_default_registry() -> MetricRegistry:
    """Return a registry holding the seven metrics of the reference export."""
    return MetricRegistry(DEFAULT_DEFINITIONS)
