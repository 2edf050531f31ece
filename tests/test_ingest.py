from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from pagestats_pipeline.ingest.pipeline import ingest_batch
from pagestats_pipeline.ingest.read_rows import period_from_filename, read_rows
from pagestats_pipeline.registry import MetricKey
from pagestats_pipeline.storage.memory import MemorySnapshotStore
from pagestats_pipeline.timeseries import Dataset

EXPORT = (
    "Page,Page ID,Reach,Engaged Users,Engagements,Reactions,Publications,Status,Comment\n"
    '"Acme  News",100,"1,200",150,300,120,10,2,40\n'
    ",,50,5,5,5,1,0,0\n"
    "\n"
    "Beta,200,800,,90,40,4,1,\n"
)


def _write_export(tmp_path: Path, name: str = "pages_2024-03.csv") -> Path:
    path = tmp_path / name
    path.write_text(EXPORT, encoding="utf-8")
    return path


def test_read_rows_normalizes_headers(tmp_path: Path) -> None:
    rows = read_rows(_write_export(tmp_path))
    assert len(rows) == 3
    assert rows[0]["entity_name"] == "Acme News"
    assert rows[0]["entity_id"] == "100"
    assert rows[0]["reach"] == "1,200"
    assert rows[2]["engaged_users"] == ""


@pytest.mark.parametrize(
    ("header", "message"),
    [("order,amount\nA-1,10\n", "page name or page id"), ("Page,Page ID,Notes\nAcme,1,x\n", "metric")],
)
def test_read_rows_rejects_files_without_required_columns(tmp_path: Path, header: str, message: str) -> None:
    path = tmp_path / "orders_2024-01.csv"
    path.write_text(header, encoding="utf-8")
    with pytest.raises(ValueError, match=message):
        read_rows(path)


@pytest.mark.parametrize(
    ("name", "expected"),
    [("pages_2024-03.csv", (2024, 3)), ("2023_11_export.csv", (2023, 11)), ("x.2022.1.csv", (2022, 1))],
)
def test_period_from_filename(name: str, expected: tuple[int, int]) -> None:
    p = period_from_filename(name)
    assert (p.year, p.month) == expected


def test_period_from_filename_without_period() -> None:
    with pytest.raises(ValueError):
        period_from_filename("export.csv")


def test_ingest_batch_updates_dataset_and_store(tmp_path: Path) -> None:
    rows = read_rows(_write_export(tmp_path))
    dataset = Dataset()
    store = MemorySnapshotStore()
    report = asyncio.run(ingest_batch(rows, 2024, 3, dataset, store))

    assert report.accepted == 2
    assert report.skipped == 1
    assert report.row_errors[0].row == 2
    assert report.storage is not None
    assert (report.storage.saved, report.storage.failed) == (2, 0)

    ts = dataset.timeseries_for("100")
    assert ts is not None
    assert ts.get(2024, 3).value(MetricKey.REACH) == 1200
    assert dataset.timeseries_for("200").get(2024, 3).value(MetricKey.ENGAGED_USERS) == 0
    assert len(store) == 2


def test_ingest_batch_is_idempotent_per_period() -> None:
    dataset = Dataset()
    rows = [{"Page": "A", "Page ID": "1", "Engagements": "10"}]
    asyncio.run(ingest_batch(rows, 2024, 1, dataset))
    report = asyncio.run(ingest_batch(rows, 2024, 1, dataset))
    assert report.storage is None
    assert dataset.stats().total_data_points == 1
