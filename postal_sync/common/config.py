"""Settings loading: defaults, optional YAML file, then environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from postal_sync.common.constants import DYNAMODB_MAX_BATCH_GET, DYNAMODB_MAX_BATCH_WRITE, KEN_ALL_URL
from postal_sync.common.errors import ConfigError
from postal_sync.common.fs import read_yaml
from postal_sync.common.retry import RetryPolicy
from postal_sync.common.schema import validate_settings_config

DEFAULTS: dict[str, Any] = {
    "record_table_name": None,
    "hash_table_name": None,
    "source_url": KEN_ALL_URL,
    "aws_region": None,
    "log_level": "INFO",
    "snapshot_shortcut": True,
    "budget": {
        "time_seconds": 600,
        "memory_mb": 512,
        "drain_margin_seconds": 60,
    },
    "batching": {
        "batch_size": DYNAMODB_MAX_BATCH_WRITE,
        "lookup_batch_size": DYNAMODB_MAX_BATCH_GET,
        "max_workers": None,
    },
    "retry": {
        "max_attempts": 5,
        "base_delay": 0.5,
        "max_delay": 20.0,
        "jitter": 0.5,
    },
}

# env var -> (section or None, key, parser)
ENV_OVERRIDES: dict[str, tuple[str | None, str, type]] = {
    "RECORD_TABLE_NAME": (None, "record_table_name", str),
    "HASH_TABLE_NAME": (None, "hash_table_name", str),
    "SOURCE_URL": (None, "source_url", str),
    "AWS_REGION": (None, "aws_region", str),
    "LOG_LEVEL": (None, "log_level", str),
    "TIME_BUDGET_SECONDS": ("budget", "time_seconds", float),
    "MEMORY_BUDGET_MB": ("budget", "memory_mb", int),
    "DRAIN_MARGIN_SECONDS": ("budget", "drain_margin_seconds", float),
    "BATCH_SIZE": ("batching", "batch_size", int),
    "LOOKUP_BATCH_SIZE": ("batching", "lookup_batch_size", int),
    "MAX_WORKERS": ("batching", "max_workers", int),
    "RETRY_MAX_ATTEMPTS": ("retry", "max_attempts", int),
    "RETRY_BASE_DELAY": ("retry", "base_delay", float),
    "RETRY_MAX_DELAY": ("retry", "max_delay", float),
    "RETRY_JITTER": ("retry", "jitter", float),
}


@dataclass(frozen=True)
class Settings:
    record_table_name: str | None
    hash_table_name: str | None
    source_url: str
    aws_region: str | None
    log_level: str
    snapshot_shortcut: bool
    time_budget_seconds: float
    memory_budget_mb: int
    drain_margin_seconds: float
    batch_size: int
    lookup_batch_size: int
    max_workers: int
    retry: RetryPolicy

    @property
    def download_chunk_bytes(self) -> int:
        return self.memory_budget_mb * 2048

    def require_tables(self) -> tuple[str, str]:
        if not self.record_table_name or not self.hash_table_name:
            raise ConfigError("RECORD_TABLE_NAME and HASH_TABLE_NAME must both be set")
        return self.record_table_name, self.hash_table_name


def _deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    return overlay


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ConfigError(f"Not a boolean: {value!r}")


def _env_overlay(environ: Mapping[str, str]) -> dict:
    overlay: dict[str, Any] = {}
    for name, (section, key, parser) in ENV_OVERRIDES.items():
        raw = environ.get(name)
        if raw is None or raw == "":
            continue
        try:
            value = parser(raw)
        except ValueError as exc:
            raise ConfigError(f"Invalid value for {name}: {raw!r}") from exc
        if section is None:
            overlay[key] = value
        else:
            overlay.setdefault(section, {})[key] = value
    if environ.get("SNAPSHOT_SHORTCUT"):
        overlay["snapshot_shortcut"] = _parse_bool(environ["SNAPSHOT_SHORTCUT"])
    return overlay


def default_max_workers(memory_mb: int) -> int:
    return max(1, min(8, memory_mb // 128))


def load_settings(
    environ: Mapping[str, str] | None = None,
    *,
    config_path: Path | None = None,
    allow_unknown: bool = False,
) -> Settings:
    environ = os.environ if environ is None else environ
    cfg = dict(DEFAULTS)
    if config_path is not None:
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        file_cfg = read_yaml(config_path)
        if not isinstance(file_cfg, dict):
            raise ConfigError(f"Config file must contain a mapping: {config_path}")
        cfg = _deep_merge(cfg, file_cfg)
    cfg = _deep_merge(cfg, _env_overlay(environ))
    validate_settings_config(cfg, allow_unknown=allow_unknown)

    budget = cfg["budget"]
    batching = cfg["batching"]
    retry = cfg["retry"]
    memory_mb = int(budget["memory_mb"])
    max_workers = batching.get("max_workers") or default_max_workers(memory_mb)

    return Settings(
        record_table_name=cfg["record_table_name"],
        hash_table_name=cfg["hash_table_name"],
        source_url=cfg["source_url"],
        aws_region=cfg["aws_region"],
        log_level=str(cfg["log_level"]).upper(),
        snapshot_shortcut=bool(cfg["snapshot_shortcut"]),
        time_budget_seconds=float(budget["time_seconds"]),
        memory_budget_mb=memory_mb,
        drain_margin_seconds=float(budget["drain_margin_seconds"]),
        batch_size=int(batching["batch_size"]),
        lookup_batch_size=int(batching["lookup_batch_size"]),
        max_workers=int(max_workers),
        retry=RetryPolicy(
            max_attempts=int(retry["max_attempts"]),
            base_delay=float(retry["base_delay"]),
            max_delay=float(retry["max_delay"]),
            jitter=float(retry["jitter"]),
        ),
    )
