import json
import logging

from postal_sync.common.logging import JsonLineFormatter, build_logger, log_event
from postal_sync.common.models import RunState, RunSummary
from postal_sync.common.time_utils import generate_run_id, utc_timestamp_iso


def test_generate_run_id_prefix():
    assert generate_run_id().startswith("update-")


def test_utc_timestamp_is_iso_with_offset():
    assert utc_timestamp_iso().endswith("+00:00")


def test_json_formatter_emits_stable_fields():
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "batch written", None, None)
    record.run_id = "update-1"
    record.stage = "upsert"
    record.rows_in = 25
    record.code = "1000001"

    payload = json.loads(JsonLineFormatter().format(record))

    assert payload["run_id"] == "update-1"
    assert payload["stage"] == "upsert"
    assert payload["rows_in"] == 25
    assert payload["code"] == "1000001"
    assert payload["error_code"] is None
    assert payload["message"] == "batch written"


def test_build_logger_writes_json_lines(tmp_path):
    logger = build_logger("update-test", log_dir=tmp_path, level="INFO")
    log_event(logger, "state ingesting", run_id="update-test", stage="coordinator", event="STATE")
    for handler in logger.handlers:
        handler.flush()

    lines = (tmp_path / "update-test.log.jsonl").read_text(encoding="utf-8").splitlines()
    assert json.loads(lines[0])["event"] == "STATE"


def test_run_summary_reports_counts():
    summary = RunSummary(run_id="update-1", state=RunState.PARTIALLY_FAILED, new=1, unchanged=3)
    summary.write_failed = 2
    summary.deferred = 1
    for code in ("1", "2", "3"):
        summary.add_sample("write_failed", code, limit=2)

    payload = summary.to_dict()

    assert payload["status"] == "partially_failed"
    assert payload["counts"] == {"New": 1, "Changed": 0, "Unchanged": 3, "Failed": 3}
    assert payload["failure_samples"] == {"write_failed": ["1", "2"]}
