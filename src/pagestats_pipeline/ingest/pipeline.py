"""Ingestion of one month's rows into the Dataset (and a store).

Module notes:
- Rows without page identity are skipped and reported, never fatal.
- The Dataset is updated before the store; a storage failure is reported in
  `IngestReport.storage` and does not undo the in-memory update.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from pagestats_pipeline.clean.validate import validate_rows
from pagestats_pipeline.models import IngestReport, Period
from pagestats_pipeline.storage.base import SnapshotStore
from pagestats_pipeline.timeseries import Dataset

log = logging.getLogger(__name__)


async def ingest_batch(
    rows: Iterable[Mapping[str, Any]],
    year: int,
    month: int,
    dataset: Dataset,
    store: SnapshotStore | None = None,
) -> IngestReport:
    """Validate rows for `(year, month)`, upsert them into `dataset` and `store`.

    Args:
        rows: Tokenized rows (header -> cell), any supported header spelling.
        year: Year of the batch.
        month: Month of the batch.
        dataset: In-memory dataset to update.
        store: Optional snapshot store to persist to.

    Returns:
        IngestReport with accepted/skipped counts, row errors and the store's
        BatchResult (None without a store).

    Raises:
        ValueError: if `(year, month)` is not a valid period.
    """
    period = Period(year=year, month=month)
    snapshots, row_errors = validate_rows(rows, year, month)

    dataset.ingest_many(snapshots)
    log.info("Ingested %d snapshots for %s (%d skipped)", len(snapshots), period, len(row_errors))

    storage = None
    if store is not None:
        storage = await store.put_batch(snapshots)
        if storage.failed:
            log.warning("%d of %d snapshots for %s were not saved", storage.failed, len(snapshots), period)

    return IngestReport(
        period=period,
        accepted=len(snapshots),
        skipped=len(row_errors),
        row_errors=row_errors,
        storage=storage,
    )
