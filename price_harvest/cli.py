"""CLI entrypoint for the energy price harvesting pipeline."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from price_harvest.common.config_loader import apply_overrides, load_scraper_settings
from price_harvest.common.constants import COMMANDS, EXIT_HARD_FAIL, EXIT_PARTIAL, EXIT_SUCCESS
from price_harvest.common.errors import PipelineError
from price_harvest.common.logging import build_logger, log_event
from price_harvest.common.time_utils import parse_period
from price_harvest.fetch.source import fetcher_from_settings
from price_harvest.pipeline.checkpoint import JsonCheckpointStore
from price_harvest.pipeline.reference import build_targets, load_reference_from_settings
from price_harvest.pipeline.reports import write_run_summary
from price_harvest.pipeline.session import SessionController
from price_harvest.storage.json_store import JsonFileStorage


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("command", choices=COMMANDS)
    parser.add_argument("--period", default=None, help="YYYY-MM or YYYY-MM-DD; defaults to the current month")
    parser.add_argument("--config-dir", default="./config")
    parser.add_argument("--overlay-config-dir", default=None)
    parser.add_argument("--data-dir", default="./data")
    parser.add_argument("--reference-file", default=None)
    parser.add_argument("--limit", type=int, default=None, help="Only process the first N targets")
    parser.add_argument("--batches", type=int, default=None)
    parser.add_argument("--auto-progress", action="store_true")
    parser.add_argument("--no-fallback", action="store_true")
    parser.add_argument("--overwrite", action="store_true", help="Re-scrape locations that already have data")
    parser.add_argument("--reset", action="store_true", help="Discard the period's checkpoint before starting")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARN", "ERROR"])
    return parser.parse_args(argv)


def _overrides(args: argparse.Namespace) -> dict:
    overrides: dict = {}
    if args.batches is not None:
        overrides.setdefault("batching", {})["total_batches"] = args.batches
    if args.auto_progress:
        overrides.setdefault("batching", {})["auto_progress"] = True
    if args.no_fallback:
        overrides.setdefault("geographic", {})["enabled"] = False
    if args.overwrite:
        overrides.setdefault("storage", {})["duplicate_handling"] = "overwrite"
    return overrides


def run_command(args: argparse.Namespace) -> int:
    period = parse_period(args.period)
    config_dir = Path(args.config_dir)
    overlay_config_dir = Path(args.overlay_config_dir) if args.overlay_config_dir else None
    data_dir = Path(args.data_dir)

    logger = build_logger(f"{args.command}-{period[:7]}", data_dir=data_dir, level=args.log_level)
    settings = load_scraper_settings(config_dir, overlay_config_dir=overlay_config_dir)
    settings = apply_overrides(settings, _overrides(args))
    checkpoints = JsonCheckpointStore(
        data_dir / "state",
        retry_attempts=settings.storage_retry_attempts,
        retry_delay_ms=settings.storage_retry_delay_ms,
    )

    if args.command == "status":
        checkpoint = checkpoints.load(period)
        payload = checkpoint.to_dict() if checkpoint else {"period": period, "status": "none"}
        if checkpoint:
            payload.pop("processed_ids")
            payload.pop("skipped_ids")
            payload["processed_count"] = len(checkpoint.processed_ids)
            payload["skipped_count"] = len(checkpoint.skipped_ids)
        print(json.dumps(payload, indent=2, sort_keys=True))
        return EXIT_SUCCESS

    reference_path = Path(args.reference_file) if args.reference_file else None
    reference = load_reference_from_settings(settings, reference_path)
    targets = build_targets(reference, limit=args.limit)
    storage = JsonFileStorage(data_dir / "store")

    if args.reset and checkpoints.reset(period):
        log_event(logger, "checkpoint discarded", period=period, event="CHECKPOINT", status="reset")

    with fetcher_from_settings(settings) as fetcher:
        controller = SessionController(
            settings,
            fetcher=fetcher,
            storage=storage,
            checkpoints=checkpoints,
            reference=reference,
            logger=logger,
        )
        if args.command == "complete":
            completed = controller.complete_missing(targets, period)
            write_run_summary(
                data_dir,
                {"period": period, "fallback_records": completed},
                storage.records_for_period(period),
                status="completed",
            )
            return EXIT_SUCCESS

        outcome = controller.run(targets, period)

    write_run_summary(data_dir, outcome.summary, storage.records_for_period(period), status=outcome.status)
    if outcome.paused:
        return EXIT_PARTIAL
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    try:
        return run_command(args)
    except PipelineError as exc:
        print(f"{exc.error_code}: {exc}", file=sys.stderr)
        return EXIT_HARD_FAIL
    except Exception as exc:
        print(f"UNEXPECTED_ERROR: {exc}", file=sys.stderr)
        return EXIT_HARD_FAIL


if __name__ == "__main__":
    raise SystemExit(main())
