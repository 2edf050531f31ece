from __future__ import annotations

import pandas as pd
import pytest

from pagestats_pipeline.clean.transform import canonical_field, normalize_frame, normalize_row
from pagestats_pipeline.clean.validate import validate_rows


def test_canonical_field_ignores_case_and_separators() -> None:
    assert canonical_field("Page ID") == "entity_id"
    assert canonical_field("page_id") == "entity_id"
    assert canonical_field("pageId") == "entity_id"
    assert canonical_field("ENGAGED-USERS") == "engaged_users"
    assert canonical_field("Shares") is None


def test_normalize_row_first_non_blank_value_wins() -> None:
    out = normalize_row({"Page ID": "", "page_id": "42", "Unknown": "x"})
    assert out == {"entity_id": "42"}


def test_normalize_frame_renames_and_trims_text() -> None:
    pdf = pd.DataFrame([{"Page": "  Acme   Inc  ", "Page ID": " 7 ", "Reach": "10", "Extra": "?"}])
    out = normalize_frame(pdf)
    assert list(out.columns) == ["entity_name", "entity_id", "reach"]
    assert out.loc[0, "entity_name"] == "Acme Inc"
    assert out.loc[0, "entity_id"] == "7"


def test_validate_rows_skips_rows_without_identity() -> None:
    rows = [
        {"Page": "A", "Page ID": "1", "Reach": "10"},
        {"Page": "", "Page ID": "", "Reach": "5"},
        {"Page": "", "Page ID": "", "Reach": ""},
        {"Page": "B", "Page ID": "2", "Reach": "20"},
    ]
    good, bad = validate_rows(rows, 2024, 5)
    assert [s.entity_id for s in good] == ["1", "2"]
    assert len(bad) == 1
    assert bad[0].row == 2
    assert bad[0].data["Reach"] == "5"


def test_validate_rows_rejects_invalid_period() -> None:
    with pytest.raises(ValueError):
        validate_rows([{"Page": "A"}], 2024, 0)
