"""Validation of tokenized rows into Snapshots.

Rows are validated one by one; a row without page identity is recorded as a
`RowError` and skipped so the rest of the batch still loads.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from pagestats_pipeline.clean.transform import is_blank
from pagestats_pipeline.errors import RowValidationError
from pagestats_pipeline.models import Period, RowError, Snapshot

log = logging.getLogger(__name__)


def _is_empty_row(row: Mapping[str, Any]) -> bool:
    return all(is_blank(v) for v in row.values())


def validate_rows(
    rows: Iterable[Mapping[str, Any]],
    year: int,
    month: int,
) -> tuple[list[Snapshot], list[RowError]]:
    """Validate rows for one period into Snapshots.

    Args:
        rows: Tokenized rows (header -> cell).
        year: Year the batch belongs to.
        month: Month the batch belongs to.

    Returns:
        A tuple of (snapshots, row_errors). Completely empty rows are skipped
        without an error entry.

    Raises:
        ValueError: if `(year, month)` is not a valid period.
    """
    Period(year=year, month=month)

    good: list[Snapshot] = []
    bad: list[RowError] = []

    for i, row in enumerate(rows, start=1):
        if _is_empty_row(row):
            continue
        try:
            good.append(Snapshot.from_raw_row(row, year, month))
        except RowValidationError as e:
            log.warning("Skipping row %d for %04d-%02d: %s", i, year, month, e)
            bad.append(RowError(row=i, error=str(e), data=dict(row)))

    if bad:
        log.warning("%d of %d rows skipped for %04d-%02d", len(bad), len(good) + len(bad), year, month)
    return good, bad
