"""Registry-checked aggregation helpers.

This package turns the in-memory Dataset into per-page and per-month
summaries (totals for flow-count metrics, averages for unique-count metrics),
period-over-period comparisons, top-performer lists and market shares.
"""
