"""Function-as-a-service entry points for the update and lookup paths."""

from __future__ import annotations

import dataclasses
import json
import logging
import tempfile
from pathlib import Path
from typing import Any

from postal_sync.common.config import Settings, load_settings
from postal_sync.common.errors import PipelineError
from postal_sync.common.logging import build_logger, log_event
from postal_sync.common.models import RunState, RunSummary
from postal_sync.common.time_utils import generate_run_id
from postal_sync.pipeline.coordinator import PipelineCoordinator
from postal_sync.pipeline.ken_all import download_ken_all, iter_ken_all_rows
from postal_sync.pipeline.lookup import lookup_response
from postal_sync.stores.factory import build_record_store, build_stores


def _budgeted(settings: Settings, context: Any) -> Settings:
    # The platform timeout wins when it is tighter than the configured budget.
    remaining_ms = getattr(context, "get_remaining_time_in_millis", None)
    if remaining_ms is None:
        return settings
    remaining = remaining_ms() / 1000.0
    if remaining >= settings.time_budget_seconds:
        return settings
    margin = min(settings.drain_margin_seconds, remaining / 2)
    return dataclasses.replace(settings, time_budget_seconds=remaining, drain_margin_seconds=margin)


def _source_path(event: dict | None, settings: Settings, scratch: str) -> Path:
    source = (event or {}).get("source")
    if source:
        return Path(source)
    return download_ken_all(
        settings.source_url,
        Path(scratch) / "ken_all.zip",
        chunk_bytes=settings.download_chunk_bytes,
    )


def update_handler(event: dict | None, context: Any = None, *, stores=None) -> dict:
    settings = load_settings()
    run_id = generate_run_id()
    logger = build_logger(run_id, level=settings.log_level)

    with tempfile.TemporaryDirectory(prefix="postal-sync-") as scratch:
        try:
            record_store, hash_store = stores if stores is not None else build_stores(settings)
            source_path = _source_path(event, settings, scratch)
        except PipelineError as exc:
            summary = RunSummary(run_id=run_id, state=RunState.FAILED, error_code=exc.error_code)
            log_event(
                logger,
                f"update could not start: {exc}",
                level=logging.ERROR,
                run_id=run_id,
                stage="ingest",
                event="RUN_FAIL",
                status="error",
                error_code=exc.error_code,
            )
        else:
            # Remaining time is read after the download, which has already spent part of it.
            coordinator = PipelineCoordinator(record_store, hash_store, _budgeted(settings, context), logger=logger)
            summary = coordinator.run(iter_ken_all_rows(source_path), run_id=run_id)

    return {
        "statusCode": 200,
        "headers": {"content-type": "application/json"},
        "body": json.dumps(summary.to_dict(), ensure_ascii=False),
    }


def lookup_handler(event: dict | None, context: Any = None, *, record_store=None) -> dict:
    if record_store is None:
        record_store = build_record_store(load_settings())
    path_parameters = (event or {}).get("pathParameters") or {}
    payload = lookup_response(record_store, path_parameters.get("postalCode"))
    return {
        "statusCode": 200,
        "headers": {"content-type": "application/json"},
        "body": json.dumps(payload, ensure_ascii=False),
    }
