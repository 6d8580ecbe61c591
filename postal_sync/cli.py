"""CLI entrypoint for the postal code table sync."""

from __future__ import annotations

import argparse
import json
import sys
import tempfile
from pathlib import Path

from postal_sync.common.config import load_settings
from postal_sync.common.constants import EXIT_HARD_FAIL, EXIT_PARTIAL, EXIT_SUCCESS
from postal_sync.common.errors import PipelineError
from postal_sync.common.logging import build_logger, log_event
from postal_sync.common.models import RunState
from postal_sync.common.time_utils import generate_run_id
from postal_sync.pipeline.coordinator import PipelineCoordinator
from postal_sync.pipeline.ken_all import download_ken_all, iter_ken_all_rows
from postal_sync.pipeline.lookup import lookup_response
from postal_sync.pipeline.reports import write_run_summary
from postal_sync.stores.factory import BACKENDS, build_record_store, build_stores


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--config", default=None, help="optional YAML settings file")
    parser.add_argument("--backend", default="dynamodb", choices=BACKENDS)
    parser.add_argument("--log-level", default=None, choices=["DEBUG", "INFO", "WARN", "ERROR"])
    subparsers = parser.add_subparsers(dest="command", required=True)

    update = subparsers.add_parser("update", help="sync the record table with a KEN_ALL snapshot")
    update.add_argument("--source", default=None, help="local ken_all.zip or CSV; downloaded when omitted")
    update.add_argument("--work-dir", default=None)
    update.add_argument("--report-dir", default="./reports")
    update.add_argument("--log-dir", default=None)
    update.add_argument("--run-id", default=None)

    lookup = subparsers.add_parser("lookup", help="print the record stored for one postal code")
    lookup.add_argument("code")

    return parser.parse_args(argv)


def _exit_code(state: RunState) -> int:
    if state is RunState.COMPLETED:
        return EXIT_SUCCESS
    if state is RunState.PARTIALLY_FAILED:
        return EXIT_PARTIAL
    return EXIT_HARD_FAIL


def run_update(args: argparse.Namespace) -> int:
    run_id = args.run_id or generate_run_id()
    settings = load_settings(config_path=Path(args.config) if args.config else None)
    level = args.log_level or settings.log_level
    logger = build_logger(run_id, log_dir=Path(args.log_dir) if args.log_dir else None, level=level)
    record_store, hash_store = build_stores(settings, args.backend)

    with tempfile.TemporaryDirectory(prefix="postal-sync-") as scratch:
        if args.source:
            source_path = Path(args.source)
        else:
            work_dir = Path(args.work_dir) if args.work_dir else Path(scratch)
            source_path = download_ken_all(
                settings.source_url,
                work_dir / "ken_all.zip",
                chunk_bytes=settings.download_chunk_bytes,
            )
            log_event(logger, "source downloaded", run_id=run_id, stage="ingest", event="DOWNLOAD", status="ok")

        coordinator = PipelineCoordinator(record_store, hash_store, settings, logger=logger)
        summary = coordinator.run(iter_ken_all_rows(source_path), run_id=run_id)

    write_run_summary(Path(args.report_dir), summary, source=str(args.source or settings.source_url))
    print(json.dumps(summary.to_dict()["counts"], ensure_ascii=False))
    return _exit_code(summary.state)


def run_lookup(args: argparse.Namespace) -> int:
    settings = load_settings(config_path=Path(args.config) if args.config else None)
    record_store = build_record_store(settings, args.backend)
    print(json.dumps(lookup_response(record_store, args.code), ensure_ascii=False))
    return EXIT_SUCCESS


def run_command(args: argparse.Namespace) -> int:
    if args.command == "update":
        return run_update(args)
    if args.command == "lookup":
        return run_lookup(args)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    try:
        return run_command(args)
    except PipelineError as exc:
        print(f"{exc.error_code}: {exc}", file=sys.stderr)
        return EXIT_HARD_FAIL


if __name__ == "__main__":
    raise SystemExit(main())
