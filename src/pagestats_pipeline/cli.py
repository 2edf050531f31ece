"""Command-line interface for loading exports and querying page metrics.

Provides subcommands: `ingest`, `stats`, `export`, `summary`, `aggregate`,
`compare`, `top`, `share`, `trend`, `anomalies`, `correlation`, `rank` and
`clear`. Each command
is implemented as a `cmd_*` function that accepts an argparse namespace.

Query commands work on CSV files passed with `--input PATH=YYYY-MM` (the
period may be omitted when the file name contains it) or, without inputs, on
the snapshots in the configured store.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

import pandas as pd
from dotenv import load_dotenv
from pydantic import BaseModel

from pagestats_pipeline.aggregate.service import AggregationService
from pagestats_pipeline.analytics.service import AnalyticsService
from pagestats_pipeline.config import Settings, get_settings
from pagestats_pipeline.errors import SemanticViolationError, StorageError, UnknownMetricError
from pagestats_pipeline.ingest.pipeline import ingest_batch
from pagestats_pipeline.ingest.read_rows import period_from_filename, read_rows
from pagestats_pipeline.logging_config import configure_logging
from pagestats_pipeline.models import DatasetStats, IngestReport, Period
from pagestats_pipeline.registry import MetricKey, build_default_registry
from pagestats_pipeline.storage.base import SnapshotStore, create_store, load_dataset
from pagestats_pipeline.timeseries import Dataset

log = logging.getLogger(__name__)

METRIC_CHOICES = [k.value for k in MetricKey]


# --------------------------------------------------
# Helpers
# --------------------------------------------------
def parse_input_arg(value: str) -> tuple[Path, Period]:
    """Split `PATH=YYYY-MM` into a path and a Period.

    Without `=YYYY-MM` the period is taken from the file name.
    """
    path_text, sep, period_text = value.rpartition("=")
    if not sep:
        path = Path(value)
        return path, period_from_filename(path)
    return Path(path_text), Period.parse(period_text)


async def _ingest_inputs(
    inputs: Sequence[str],
    dataset: Dataset,
    store: SnapshotStore | None = None,
) -> list[IngestReport]:
    reports: list[IngestReport] = []
    for value in inputs:
        path, period = parse_input_arg(value)
        rows = read_rows(path)
        reports.append(await ingest_batch(rows, period.year, period.month, dataset, store))
    return reports


async def _load_from_store(settings: Settings) -> Dataset:
    store = create_store(settings)
    try:
        return await load_dataset(store)
    finally:
        await store.close()


def _dataset_for(args: argparse.Namespace) -> Dataset:
    """Return the dataset a query command runs on."""
    if args.input:
        dataset = Dataset()
        asyncio.run(_ingest_inputs(args.input, dataset))
        return dataset
    return asyncio.run(_load_from_store(get_settings()))


def _emit_table(rows: list[dict[str, Any]], empty_message: str = "No data.") -> None:
    if not rows:
        print(empty_message)
        return
    print(pd.DataFrame(rows).to_string(index=False))


def _emit_json(result: BaseModel | list[BaseModel] | dict[str, Any]) -> None:
    if isinstance(result, BaseModel):
        payload: Any = result.model_dump(mode="json")
    elif isinstance(result, list):
        payload = [r.model_dump(mode="json") for r in result]
    else:
        payload = result
    print(json.dumps(payload, indent=2))


def _services(dataset: Dataset) -> tuple[AggregationService, AnalyticsService]:
    registry = build_default_registry()
    aggregation = AggregationService(dataset, registry)
    return aggregation, AnalyticsService(dataset, registry, aggregation)


# --------------------------------------------------
# INGEST / CLEAR / STATS / EXPORT
# --------------------------------------------------
def cmd_ingest(args: argparse.Namespace) -> None:
    """Load CSV exports into the configured snapshot store.

    Args:
        args: argparse namespace with `input` (list of `PATH[=YYYY-MM]`).
    """

    async def _run() -> list[IngestReport]:
        store = create_store(get_settings())
        try:
            return await _ingest_inputs(args.input, Dataset(), store)
        finally:
            await store.close()

    reports = asyncio.run(_run())
    _emit_table(
        [
            {
                "period": str(r.period),
                "accepted": r.accepted,
                "skipped": r.skipped,
                "saved": r.storage.saved if r.storage else 0,
                "failed": r.storage.failed if r.storage else 0,
            }
            for r in reports
        ]
    )
    log.info("Ingest completed.")


def cmd_clear(_: argparse.Namespace) -> None:
    """Delete every snapshot from the configured store."""

    async def _run() -> None:
        store = create_store(get_settings())
        try:
            await store.clear()
        finally:
            await store.close()

    asyncio.run(_run())
    log.info("Snapshot store cleared.")


def cmd_stats(args: argparse.Namespace) -> None:
    """Print page, period and snapshot counts of the inputs or the store."""
    if args.input:
        stats = _dataset_for(args).stats()
    else:

        async def _run() -> DatasetStats:
            store = create_store(get_settings())
            try:
                return await store.stats()
            finally:
                await store.close()

        stats = asyncio.run(_run())
    _emit_json(stats)


def cmd_export(args: argparse.Namespace) -> None:
    """Write one CSV row per snapshot (optionally for one page) to `--output`."""
    df = _dataset_for(args).to_frame()
    if args.entity:
        df = df[df["entity_id"] == str(args.entity)]

    out = Path(args.output)
    out.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(out, index=False)
    log.info("Exported %d snapshots to %s", len(df), out)
    print(f"Wrote {len(df)} row(s) to {out}")


# --------------------------------------------------
# AGGREGATION QUERIES
# --------------------------------------------------
def cmd_summary(args: argparse.Namespace) -> None:
    """Per-metric summary of one month across pages, or of one page over time."""
    aggregation, _ = _services(_dataset_for(args))

    if args.entity:
        summary = aggregation.summarize_entity(args.entity, args.periods)
        _emit_table(
            [
                {"metric": k.value, **r.model_dump(mode="json")}
                for k, r in summary.metric_results.items()
            ]
        )
        return

    if not args.period:
        raise ValueError("summary needs --period YYYY-MM or --entity ID")
    period = Period.parse(args.period)
    summary = aggregation.summarize_period(period.year, period.month)
    print(f"{summary.period}: {summary.total_entities} page(s)")
    _emit_table(
        [{"metric": k.value, **m.model_dump(mode="json")} for k, m in summary.metrics.items()]
    )


def cmd_aggregate(args: argparse.Namespace) -> None:
    aggregation, _ = _services(_dataset_for(args))
    result = aggregation.aggregate_entity(args.entity, args.metric, args.operation, args.periods)
    _emit_json(result)


def cmd_compare(args: argparse.Namespace) -> None:
    """Compare consecutive periods across all pages."""
    aggregation, _ = _services(_dataset_for(args))
    comparisons = aggregation.compare_periods(args.periods)
    rows = []
    for c in comparisons:
        for key, m in c.metrics.items():
            rows.append(
                {
                    "previous_period": str(c.previous_period),
                    "current_period": str(c.current_period),
                    "metric": key.value,
                    **m.model_dump(mode="json"),
                }
            )
    _emit_table(rows, "Need at least two periods to compare.")


def cmd_top(args: argparse.Namespace) -> None:
    aggregation, _ = _services(_dataset_for(args))
    period = Period.parse(args.period)
    ranked = aggregation.top_performers(period.year, period.month, args.metric, args.n)
    _emit_table(
        [
            {"rank": r.rank, "entity_id": r.entity.entity_id, "name": r.entity.name, "value": r.value}
            for r in ranked
        ]
    )


def cmd_share(args: argparse.Namespace) -> None:
    aggregation, _ = _services(_dataset_for(args))
    period = Period.parse(args.period)
    shares = aggregation.market_share(period.year, period.month, args.metric)
    _emit_table(
        [
            {
                "entity_id": s.entity.entity_id,
                "name": s.entity.name,
                "value": s.value,
                "market_share": s.market_share,
            }
            for s in shares
        ]
    )


# --------------------------------------------------
# ANALYTICS QUERIES
# --------------------------------------------------
def cmd_trend(args: argparse.Namespace) -> None:
    _, analytics = _services(_dataset_for(args))
    points = analytics.trend(args.entity, args.metric)
    _emit_table(
        [
            {
                "period": str(p.period),
                "previous_value": p.previous_value,
                "current_value": p.current_value,
                "absolute_change": p.absolute_change,
                "percentage_change": p.percentage_change,
            }
            for p in points
        ],
        "Need at least two months for a trend.",
    )


def cmd_anomalies(args: argparse.Namespace) -> None:
    _, analytics = _services(_dataset_for(args))
    threshold = args.threshold if args.threshold is not None else get_settings().anomaly_threshold
    _emit_json(analytics.anomalies(args.entity, args.metric, threshold))


def cmd_correlation(args: argparse.Namespace) -> None:
    _, analytics = _services(_dataset_for(args))
    _emit_json(analytics.correlation(args.entity, args.metric_a, args.metric_b))


def cmd_rank(args: argparse.Namespace) -> None:
    """Rank pages by a metric aggregated over their months."""
    _, analytics = _services(_dataset_for(args))
    ranked = analytics.rank_entities(args.metric, args.operation, args.periods)
    _emit_table(
        [
            {
                "rank": r.rank,
                "entity_id": r.entity.entity_id,
                "name": r.entity.name,
                "operation": r.operation.value if r.operation else None,
                "value": r.value,
            }
            for r in ranked
        ]
    )


# --------------------------------------------------
# CLI
# --------------------------------------------------
def _add_input(p: argparse.ArgumentParser, required: bool = False) -> None:
    p.add_argument(
        "--input",
        action="append",
        default=[],
        required=required,
        metavar="PATH[=YYYY-MM]",
        help="CSV export to load (repeatable). Without it, data comes from the store.",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build and return the top-level argument parser for the CLI.

    Returns:
        Configured argparse.ArgumentParser instance.
    """
    p = argparse.ArgumentParser(prog="pagestats")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_ingest = sub.add_parser("ingest")
    _add_input(p_ingest, required=True)
    p_ingest.set_defaults(func=cmd_ingest)

    p_clear = sub.add_parser("clear")
    p_clear.set_defaults(func=cmd_clear)

    p_stats = sub.add_parser("stats")
    _add_input(p_stats)
    p_stats.set_defaults(func=cmd_stats)

    p_export = sub.add_parser("export")
    _add_input(p_export)
    p_export.add_argument("--output", required=True, metavar="PATH")
    p_export.add_argument("--entity", default=None)
    p_export.set_defaults(func=cmd_export)

    p_summary = sub.add_parser("summary")
    _add_input(p_summary)
    p_summary.add_argument("--period", default=None)
    p_summary.add_argument("--entity", default=None)
    p_summary.add_argument("--periods", nargs="*", default=None)
    p_summary.set_defaults(func=cmd_summary)

    p_agg = sub.add_parser("aggregate")
    _add_input(p_agg)
    p_agg.add_argument("--entity", required=True)
    p_agg.add_argument("--metric", required=True, choices=METRIC_CHOICES)
    p_agg.add_argument("--operation", required=True)
    p_agg.add_argument("--periods", nargs="*", default=None)
    p_agg.set_defaults(func=cmd_aggregate)

    p_cmp = sub.add_parser("compare")
    _add_input(p_cmp)
    p_cmp.add_argument("--periods", nargs="+", required=True)
    p_cmp.set_defaults(func=cmd_compare)

    p_top = sub.add_parser("top")
    _add_input(p_top)
    p_top.add_argument("--period", required=True)
    p_top.add_argument("--metric", required=True, choices=METRIC_CHOICES)
    p_top.add_argument("-n", type=int, default=5)
    p_top.set_defaults(func=cmd_top)

    p_share = sub.add_parser("share")
    _add_input(p_share)
    p_share.add_argument("--period", required=True)
    p_share.add_argument("--metric", required=True, choices=METRIC_CHOICES)
    p_share.set_defaults(func=cmd_share)

    p_trend = sub.add_parser("trend")
    _add_input(p_trend)
    p_trend.add_argument("--entity", required=True)
    p_trend.add_argument("--metric", required=True, choices=METRIC_CHOICES)
    p_trend.set_defaults(func=cmd_trend)

    p_anom = sub.add_parser("anomalies")
    _add_input(p_anom)
    p_anom.add_argument("--entity", required=True)
    p_anom.add_argument("--metric", required=True, choices=METRIC_CHOICES)
    p_anom.add_argument("--threshold", type=float, default=None)
    p_anom.set_defaults(func=cmd_anomalies)

    p_corr = sub.add_parser("correlation")
    _add_input(p_corr)
    p_corr.add_argument("--entity", required=True)
    p_corr.add_argument("--metric-a", required=True, choices=METRIC_CHOICES)
    p_corr.add_argument("--metric-b", required=True, choices=METRIC_CHOICES)
    p_corr.set_defaults(func=cmd_correlation)

    p_rank = sub.add_parser("rank")
    _add_input(p_rank)
    p_rank.add_argument("--metric", required=True, choices=METRIC_CHOICES)
    p_rank.add_argument("--operation", default=None)
    p_rank.add_argument("--periods", nargs="*", default=None)
    p_rank.set_defaults(func=cmd_rank)

    return p


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point: parse args, configure logging and dispatch commands.

    Returns:
        Process exit code: 0 on success, 2 for rejected queries, bad input or
        bad configuration, 1 for storage failures.
    """
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        configure_logging(get_settings().log_path)
        args.func(args)
    except SemanticViolationError as e:
        print(f"Rejected: {e}", file=sys.stderr)
        return 2
    except (UnknownMetricError, ValueError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except StorageError as e:
        log.error("Storage failure: %s", e)
        print(f"Storage error: {e}", file=sys.stderr)
        return 1
    except RuntimeError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
