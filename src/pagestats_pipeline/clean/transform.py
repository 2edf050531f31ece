"""Field-name normalization at the ingestion boundary.

Exports name the same column differently (`Page ID`, `page id`, `page_id`,
`pageId`). Everything downstream only ever sees the canonical names:
`entity_name`, `entity_id` and the MetricKey values.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Mapping

import pandas as pd

from pagestats_pipeline.registry import MetricKey

log = logging.getLogger(__name__)

ENTITY_NAME = "entity_name"
ENTITY_ID = "entity_id"

# canonical field -> accepted header spellings (compared after _compact())
FIELD_SYNONYMS: dict[str, tuple[str, ...]] = {
    ENTITY_NAME: ("Page", "Page Name", "Name", "Entity Name"),
    ENTITY_ID: ("Page ID", "Id", "Entity ID"),
    MetricKey.REACH.value: ("Reach",),
    MetricKey.ENGAGED_USERS.value: ("Engaged Users",),
    MetricKey.ENGAGEMENTS.value: ("Engagements", "Interactions"),
    MetricKey.REACTIONS.value: ("Reactions",),
    MetricKey.PUBLICATIONS.value: ("Publications", "Posts"),
    MetricKey.STATUS.value: ("Status", "Status Updates"),
    MetricKey.COMMENT.value: ("Comment", "Comments"),
}

CANONICAL_FIELDS: tuple[str, ...] = tuple(FIELD_SYNONYMS)

_COMPACT_RE = re.compile(r"[\s_\-]+")


def _compact(name: Any) -> str:
    """Return a case/spacing-insensitive lookup form of a header."""
    return _COMPACT_RE.sub("", str(name)).lower()


_LOOKUP: dict[str, str] = {}
for _canonical, _synonyms in FIELD_SYNONYMS.items():
    for _name in (_canonical, *_synonyms):
        _LOOKUP[_compact(_name)] = _canonical


def canonical_field(header: Any) -> str | None:
    """Return the canonical field for a header, or None if it is not recognised."""
    return _LOOKUP.get(_compact(header))


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and value != value:  # NaN
        return True
    return isinstance(value, str) and not value.strip()


def normalize_row(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Map a raw row onto canonical field names.

    Unknown headers are dropped. When two headers map to the same field the
    first non-blank value wins.

    Args:
        raw: Row mapping header -> cell.

    Returns:
        Dict keyed by canonical field names.
    """
    out: dict[str, Any] = {}
    for header, value in raw.items():
        field = canonical_field(header)
        if field is None:
            continue
        if field not in out or (is_blank(out[field]) and not is_blank(value)):
            out[field] = value
    return out


def normalize_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Rename a tokenized export's columns to canonical names and tidy text.

    Performs header normalization, drops unknown columns, trims page ids and
    collapses whitespace inside page names.

    Returns:
        A new DataFrame holding only canonical columns.
    """
    log.info("Normalizing %d rows with columns: %s", len(df), list(df.columns))

    renames: dict[Any, str] = {}
    unknown: list[Any] = []
    for col in df.columns:
        field = canonical_field(col)
        if field is None:
            unknown.append(col)
        elif field not in renames.values():
            renames[col] = field

    if unknown:
        log.warning("Ignoring unrecognised columns: %s", unknown)

    pdf = df[list(renames)].rename(columns=renames).copy()

    # -----------------------------
    # Normalize page name
    # -----------------------------
    if ENTITY_NAME in pdf.columns:
        pdf[ENTITY_NAME] = (
            pdf[ENTITY_NAME]
            .astype("string")
            .str.strip()
            .str.replace(r"\s+", " ", regex=True)
        )

    # -----------------------------
    # Normalize page id
    # -----------------------------
    if ENTITY_ID in pdf.columns:
        pdf[ENTITY_ID] = pdf[ENTITY_ID].astype("string").str.strip()

    return pdf
