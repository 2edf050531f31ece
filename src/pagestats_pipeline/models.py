"""Pydantic models for snapshots and query results.

The record models (`Period`, `Entity`, `Snapshot`) are frozen: a snapshot is
never edited in place, a newer one replaces it. The result models describe
what the aggregation, analytics and storage layers hand back to callers.
"""

from __future__ import annotations

import math
import numbers
import re
from types import MappingProxyType
from typing import Any, Literal, Mapping, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, field_validator

from pagestats_pipeline.clean.transform import normalize_row
from pagestats_pipeline.errors import RowValidationError
from pagestats_pipeline.registry import Axis, MetricCategory, MetricKey, Operation

RECORD_KEY_SEPARATOR = "::"

# unicode whitespace (incl. non-breaking), thousands commas, underscores
_NUMERIC_NOISE_RE = re.compile(r"[\s,_]")
_PERIOD_RE = re.compile(r"^\s*(\d{4})[-/.](\d{1,2})\s*$")

_METRIC_VALUES = frozenset(k.value for k in MetricKey)


def parse_numeric(value: Any) -> float:
    """Parse a raw metric cell into a non-negative float. Never raises.

    Thousands separators and whitespace are stripped. Missing, empty,
    non-numeric, NaN and infinite inputs become 0.0; negative numbers are
    clamped to 0.0.

    Args:
        value: Raw cell value (string, number or None).

    Returns:
        A finite float >= 0.
    """
    if value is None or isinstance(value, bool):
        return 0.0

    if isinstance(value, numbers.Real):
        number = float(value)
    else:
        text = _NUMERIC_NOISE_RE.sub("", str(value))
        if not text:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return 0.0

    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0.0
    return number


class Period(BaseModel):
    """A calendar month."""

    model_config = ConfigDict(extra="forbid", frozen=True)
    year: int = Field(..., ge=1900, le=2100)
    month: int = Field(..., ge=1, le=12)

    @property
    def key(self) -> int:
        """Sortable integer key (`year * 100 + month`)."""
        return self.year * 100 + self.month

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def __lt__(self, other: "Period") -> bool:
        return self.key < other.key

    @classmethod
    def parse(cls, text: str) -> "Period":
        """Parse `YYYY-MM` (also `YYYY/MM`, `YYYY.MM`).

        Raises:
            ValueError: on malformed text or an out-of-range month.
        """
        m = _PERIOD_RE.match(str(text))
        if not m:
            raise ValueError(f"Invalid period '{text}', expected YYYY-MM")
        return cls(year=int(m.group(1)), month=int(m.group(2)))

    @classmethod
    def coerce(cls, value: "Period | str | tuple[int, int] | Mapping[str, Any]") -> "Period":
        """Accept a Period, `YYYY-MM` text, a `(year, month)` tuple or a mapping."""
        if isinstance(value, Period):
            return value
        if isinstance(value, str):
            return cls.parse(value)
        if isinstance(value, Mapping):
            return cls(year=value["year"], month=value["month"])
        year, month = value
        return cls(year=year, month=month)


class SnapshotKey(NamedTuple):
    """Composite identity of a snapshot: one page in one month."""

    entity_id: str
    year: int
    month: int

    @property
    def record_key(self) -> str:
        """Persisted key string, `entity_id::year::month`."""
        return RECORD_KEY_SEPARATOR.join((self.entity_id, str(self.year), str(self.month)))

    @property
    def period(self) -> Period:
        return Period(year=self.year, month=self.month)


def _identity_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


class Entity(BaseModel):
    """A tracked page. Identity is `entity_id`; the name may drift."""

    model_config = ConfigDict(extra="forbid", frozen=True, str_strip_whitespace=True)
    entity_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)

    @field_validator("entity_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return _identity_text(value)
        return value


class Snapshot(BaseModel):
    """One page's metric values for one month.

    Attributes:
        entity: The page the values belong to.
        year: Four-digit year.
        month: Month number (1-12).
        metrics: One non-negative value per MetricKey; missing keys are 0.
            Read-only once the snapshot is built.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)
    entity: Entity
    year: int = Field(..., ge=1900, le=2100)
    month: int = Field(..., ge=1, le=12)
    metrics: Mapping[MetricKey, float] = Field(default_factory=dict, validate_default=True)

    @field_validator("metrics", mode="before")
    @classmethod
    def _normalize_metrics(cls, value: Any) -> dict[MetricKey, float]:
        raw = dict(value or {})
        unknown = [k for k in raw if k not in _METRIC_VALUES]
        if unknown:
            raise ValueError(f"Unknown metric keys: {', '.join(map(str, unknown))}")
        return {key: parse_numeric(raw.get(key)) for key in MetricKey}

    @field_validator("metrics", mode="after")
    @classmethod
    def _freeze_metrics(cls, value: Mapping[MetricKey, float]) -> Mapping[MetricKey, float]:
        return MappingProxyType(dict(value))

    @field_serializer("metrics")
    def _dump_metrics(self, value: Mapping[MetricKey, float]) -> dict[str, float]:
        return {key.value: v for key, v in value.items()}

    @property
    def entity_id(self) -> str:
        return self.entity.entity_id

    @property
    def period(self) -> Period:
        return Period(year=self.year, month=self.month)

    @property
    def key(self) -> SnapshotKey:
        return SnapshotKey(self.entity.entity_id, self.year, self.month)

    @property
    def record_key(self) -> str:
        return self.key.record_key

    def value(self, metric: MetricKey | str) -> float:
        return self.metrics[MetricKey(metric)]

    def is_same_period(self, year: int, month: int) -> bool:
        return self.year == year and self.month == month

    @classmethod
    def from_raw_row(cls, raw_fields: Mapping[str, Any], year: int, month: int) -> "Snapshot":
        """Build a Snapshot from a tokenized export row.

        Field names are matched tolerantly (`Page ID`, `page_id`, `pageId`...).
        When only one of name/id is present it stands in for the other.

        Args:
            raw_fields: Row mapping header -> cell.
            year: Year the row belongs to.
            month: Month the row belongs to.

        Raises:
            RowValidationError: if both the page name and the page id are
                missing or blank.
        """
        row = normalize_row(raw_fields)
        name = _identity_text(row.pop("entity_name", None))
        entity_id = _identity_text(row.pop("entity_id", None))

        if not name and not entity_id:
            raise RowValidationError("Row is missing both page name and page id", row=dict(raw_fields))

        try:
            entity = Entity(entity_id=entity_id or name, name=name or entity_id)
        except ValidationError as exc:
            raise RowValidationError(f"Invalid page identity: {exc}", row=dict(raw_fields)) from exc

        return cls(entity=entity, year=year, month=month, metrics=row)


# =========================================================
# QUERY RESULTS
# =========================================================

class MetricAggregate(BaseModel):
    """Result of applying one operation to one metric's values."""
    model_config = ConfigDict(extra="forbid")
    operation: Operation
    value: float
    valid_count: int = Field(..., ge=0)


class AggregateResult(BaseModel):
    """One metric aggregated over a page's months."""
    model_config = ConfigDict(extra="forbid")
    entity: Entity | None
    metric: MetricKey
    operation: Operation
    axis: Axis = Axis.TIME
    value: float
    valid_count: int = Field(..., ge=0)
    periods_included: list[Period] = Field(default_factory=list)


class MetricResult(BaseModel):
    """Per-metric block of an entity summary.

    `type` is "total" for flow-count metrics and "average" for unique-count
    metrics; only the former carries `total`.
    """
    model_config = ConfigDict(extra="forbid")
    type: Literal["total", "average"]
    total: float | None = None
    average: float
    min: float
    max: float
    valid_periods: int = Field(..., ge=0)
    note: str | None = None


class EntitySummary(BaseModel):
    model_config = ConfigDict(extra="forbid")
    entity: Entity | None
    periods_included: list[Period] = Field(default_factory=list)
    first_period: Period | None = None
    last_period: Period | None = None
    metric_results: dict[MetricKey, MetricResult] = Field(default_factory=dict)


class PeriodMetricSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")
    type: MetricCategory
    total: float | None = None
    average: float
    min: float
    max: float
    valid_entities: int = Field(..., ge=0)
    note: str | None = None


class PeriodSummary(BaseModel):
    """All pages in one month, per metric."""
    model_config = ConfigDict(extra="forbid")
    period: Period
    total_entities: int = Field(..., ge=0)
    metrics: dict[MetricKey, PeriodMetricSummary] = Field(default_factory=dict)


class MetricComparison(BaseModel):
    model_config = ConfigDict(extra="forbid")
    basis: Literal["total", "average"]
    current: float
    previous: float
    absolute_change: float
    percentage_change: float | None = None


class PeriodComparison(BaseModel):
    model_config = ConfigDict(extra="forbid")
    current_period: Period
    previous_period: Period
    entity_count_change: int
    metrics: dict[MetricKey, MetricComparison] = Field(default_factory=dict)


class RankedEntity(BaseModel):
    model_config = ConfigDict(extra="forbid")
    rank: int = Field(..., ge=1)
    entity: Entity
    metric: MetricKey
    operation: Operation | None = None
    value: float
    period: Period | None = None


class ShareResult(BaseModel):
    """A page's share (percent, 2 decimals) of a flow-count metric in a month."""
    model_config = ConfigDict(extra="forbid")
    entity: Entity
    period: Period
    metric: MetricKey
    value: float
    market_share: float
    total_market: float


class MetricValue(BaseModel):
    model_config = ConfigDict(extra="forbid")
    value: float
    category: MetricCategory


class EntityPeriodValues(BaseModel):
    model_config = ConfigDict(extra="forbid")
    entity: Entity
    period: Period
    metrics: dict[MetricKey, MetricValue] = Field(default_factory=dict)


class TrendPoint(BaseModel):
    """Month-over-month change of one metric."""
    model_config = ConfigDict(extra="forbid")
    period: Period
    previous_period: Period
    metric: MetricKey
    current_value: float
    previous_value: float
    absolute_change: float
    percentage_change: float


class TrendSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")
    average_absolute_change: float = 0.0
    average_percentage_change: float = 0.0
    total_periods: int = 0
    positive_months: int = 0
    negative_months: int = 0
    stable_months: int = 0


class PerformancePoint(BaseModel):
    model_config = ConfigDict(extra="forbid")
    period: Period
    value: float


class Extremes(BaseModel):
    model_config = ConfigDict(extra="forbid")
    metric: MetricKey
    best: PerformancePoint | None = None
    worst: PerformancePoint | None = None


class Outlier(BaseModel):
    model_config = ConfigDict(extra="forbid")
    period: Period
    value: float
    direction: Literal["high", "low"]
    deviation: float
    standard_deviations: float


class AnomalyStatistics(BaseModel):
    model_config = ConfigDict(extra="forbid")
    mean: float
    median: float
    standard_deviation: float
    lower_bound: float
    upper_bound: float
    threshold: float
    sample_size: int


class AnomalyReport(BaseModel):
    model_config = ConfigDict(extra="forbid")
    metric: MetricKey
    outliers: list[Outlier] = Field(default_factory=list)
    statistics: AnomalyStatistics | None = None


class CorrelationResult(BaseModel):
    model_config = ConfigDict(extra="forbid")
    metric_a: MetricKey
    metric_b: MetricKey
    correlation: float | None = None
    sample_size: int = 0
    reason: str | None = None


class EngagementRate(BaseModel):
    """Engaged users as a percentage of reach for one month.

    The ratio is not capped: `exceeds_reach` marks months where the export
    reports more engaged users than people reached.
    """
    model_config = ConfigDict(extra="forbid")
    period: Period
    reach: float
    engaged_users: float
    engagement_rate: float | None = None
    exceeds_reach: bool = False


class EngagementRateSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")
    average_engagement_rate: float = 0.0
    min_engagement_rate: float = 0.0
    max_engagement_rate: float = 0.0
    valid_periods: int = 0
    total_periods: int = 0
    periods_exceeding_reach: int = 0


class MetricReport(BaseModel):
    model_config = ConfigDict(extra="forbid")
    aggregated: MetricAggregate
    trend: TrendSummary
    extremes: Extremes
    monthly_trends: list[TrendPoint] = Field(default_factory=list)


class EntityReport(BaseModel):
    model_config = ConfigDict(extra="forbid")
    entity: Entity | None
    total_periods: int = 0
    first_period: Period | None = None
    last_period: Period | None = None
    metrics: dict[MetricKey, MetricReport] = Field(default_factory=dict)


class DatasetStats(BaseModel):
    model_config = ConfigDict(extra="forbid")
    total_entities: int = Field(..., ge=0)
    total_periods: int = Field(..., ge=0)
    total_data_points: int = Field(..., ge=0)


# =========================================================
# INGESTION / STORAGE RESULTS
# =========================================================

class RowError(BaseModel):
    """A row skipped during validation."""
    model_config = ConfigDict(extra="forbid")
    row: int
    error: str
    data: dict[str, Any] = Field(default_factory=dict)


class BatchError(BaseModel):
    model_config = ConfigDict(extra="forbid")
    key: str
    error: str


class BatchResult(BaseModel):
    """Outcome of a batch write; one failed record never aborts the others."""
    model_config = ConfigDict(extra="forbid")
    saved: int = 0
    failed: int = 0
    errors: list[BatchError] = Field(default_factory=list)


class IngestReport(BaseModel):
    model_config = ConfigDict(extra="forbid")
    period: Period
    accepted: int = 0
    skipped: int = 0
    row_errors: list[RowError] = Field(default_factory=list)
    storage: BatchResult | None = None
