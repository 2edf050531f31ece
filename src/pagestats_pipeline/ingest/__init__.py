"""Ingestion of monthly per-page exports.

`read_rows` tokenizes a CSV export into rows; `ingest_batch` validates one
month's rows into Snapshots, adds them to the Dataset and, optionally,
persists them through a SnapshotStore.
"""
