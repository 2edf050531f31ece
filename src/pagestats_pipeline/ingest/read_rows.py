"""CSV reading helpers for monthly page exports.

The export is a comma-separated file with a header row (`Page`, `Page ID`,
`Reach`, ...). Every cell is read as text; numeric parsing happens later in
`Snapshot.from_raw_row` so that `1,234` and blank cells are handled in one
place.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

import pandas as pd

from pagestats_pipeline.clean.transform import ENTITY_ID, ENTITY_NAME, normalize_frame
from pagestats_pipeline.models import Period
from pagestats_pipeline.registry import MetricKey

log = logging.getLogger(__name__)

FILENAME_PERIOD_RE = re.compile(r"(?<!\d)(\d{4})[-_.](\d{1,2})(?!\d)")


def period_from_filename(path: Path | str) -> Period:
    """Extract the month an export covers from its file name.

    Accepts names such as `pages_2024-03.csv` or `2024_3_export.csv`.

    Raises:
        ValueError: if the name holds no `YYYY-MM` style period.
    """
    stem = Path(path).stem
    m = FILENAME_PERIOD_RE.search(stem)
    if not m:
        raise ValueError(f"Could not find a YYYY-MM period in file name '{Path(path).name}'")
    return Period(year=int(m.group(1)), month=int(m.group(2)))


def frame_to_rows(df: pd.DataFrame) -> list[dict[str, Any]]:
    """Return DataFrame rows as dicts with missing cells as None."""
    clean = df.astype(object).where(df.notna(), None)
    return clean.to_dict(orient="records")


def read_rows(path: Path | str, encoding: str = "utf-8-sig") -> list[dict[str, Any]]:
    """Read a CSV export into rows keyed by canonical field names.

    Args:
        path: CSV file path.
        encoding: File encoding; the default strips a UTF-8 BOM.

    Returns:
        One dict per non-blank line, keyed by `entity_name`, `entity_id` and
        the metric keys.

    Raises:
        ValueError: if the header has no page name or id column, or no
            metric column.
    """
    path = Path(path)
    df = pd.read_csv(
        path,
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        encoding=encoding,
    )
    log.info("Read %d rows from %s", len(df), path)
    df = normalize_frame(df)

    columns = set(df.columns)
    if not columns & {ENTITY_NAME, ENTITY_ID}:
        raise ValueError(f"{path.name}: no page name or page id column found")
    if not columns & {k.value for k in MetricKey}:
        raise ValueError(f"{path.name}: no metric column found")
    return frame_to_rows(df)
