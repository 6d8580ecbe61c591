"""Run report output."""

from __future__ import annotations

from pathlib import Path

from postal_sync.common.fs import write_json
from postal_sync.common.models import RunSummary


def write_run_summary(report_dir: Path, summary: RunSummary, *, source: str | None = None) -> Path:
    payload = summary.to_dict()
    payload["source"] = source
    out_path = report_dir / f"{summary.run_id}_summary.json"
    write_json(out_path, payload)
    write_json(report_dir / "latest_summary.json", payload)
    return out_path
