"""pagestats_pipeline package.

Contains modules for ingesting monthly per-page metric exports, validating and
normalizing rows into immutable snapshots, keeping them in an in-memory
timeseries dataset mirrored to MongoDB, and answering aggregate and trend
queries over them.

Architecture:
- Rows -> Clean (normalized, validated Snapshots) -> Dataset + snapshot store
- A metric registry decides which aggregations are statistically valid
- Unique-count metrics (reach, engaged users) are never summed
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
