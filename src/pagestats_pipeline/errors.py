"""Exception types shared across the pipeline."""

from __future__ import annotations


class RowValidationError(ValueError):
    """A single input row lacks the identity fields needed to build a Snapshot.

    Raised per row; callers skip the row and continue with the batch.
    """

    def __init__(self, message: str, row: dict | None = None) -> None:
        super().__init__(message)
        self.row = row


class SemanticViolationError(ValueError):
    """An aggregation was requested that the metric registry forbids.

    Attributes:
        metric: Metric key the caller asked about.
        operation: Requested operation.
        axis: Aggregation axis (`time` or `entities`) or None.
        explanation: Why the request is statistically invalid.
        suggestion: Operation to use instead.
    """

    def __init__(
        self,
        metric: str,
        operation: str,
        explanation: str,
        suggestion: str | None = None,
        axis: str | None = None,
    ) -> None:
        message = explanation if not suggestion else f"{explanation} {suggestion}"
        super().__init__(message)
        self.metric = metric
        self.operation = operation
        self.axis = axis
        self.explanation = explanation
        self.suggestion = suggestion


class UnknownMetricError(KeyError):
    """Metric key is not defined in the registry."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "unknown metric"


class StorageError(RuntimeError):
    """Snapshot store I/O failure.

    Attributes:
        key: Persisted record key (`entity_id::year::month`) when known.
    """

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key
