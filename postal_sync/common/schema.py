"""Minimal strict schema for settings validation."""

from __future__ import annotations

from postal_sync.common.errors import ConfigError

SETTINGS_KEYS = {
    "record_table_name",
    "hash_table_name",
    "source_url",
    "aws_region",
    "log_level",
    "budget",
    "batching",
    "retry",
    "snapshot_shortcut",
}
BUDGET_KEYS = {"time_seconds", "memory_mb", "drain_margin_seconds"}
BATCHING_KEYS = {"batch_size", "lookup_batch_size", "max_workers"}
RETRY_KEYS = {"max_attempts", "base_delay", "max_delay", "jitter"}


def _assert_required_keys(obj: dict, required: set[str], ctx: str) -> None:
    missing = required - set(obj)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ConfigError(f"Missing keys in {ctx}: {missing_str}")


def _assert_no_unknown_keys(obj: dict, known: set[str], ctx: str, allow_unknown: bool) -> None:
    if allow_unknown:
        return
    unknown = set(obj) - known
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys in {ctx}: {unknown_str}")


def _assert_positive(value: object, ctx: str, *, allow_zero: bool = False) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{ctx} must be a number, got {value!r}")
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigError(f"{ctx} must be positive, got {value!r}")


def validate_settings_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    if not isinstance(cfg, dict):
        raise ConfigError("settings must be a mapping")
    _assert_required_keys(cfg, {"budget", "batching", "retry"}, "settings")
    _assert_no_unknown_keys(cfg, SETTINGS_KEYS, "settings", allow_unknown)

    for section, keys in (("budget", BUDGET_KEYS), ("batching", BATCHING_KEYS), ("retry", RETRY_KEYS)):
        if not isinstance(cfg[section], dict):
            raise ConfigError(f"settings.{section} must be a mapping")
        _assert_required_keys(cfg[section], keys - {"max_workers"}, section)
        _assert_no_unknown_keys(cfg[section], keys, section, allow_unknown)

    budget = cfg["budget"]
    _assert_positive(budget["time_seconds"], "budget.time_seconds")
    _assert_positive(budget["memory_mb"], "budget.memory_mb")
    _assert_positive(budget["drain_margin_seconds"], "budget.drain_margin_seconds", allow_zero=True)
    if budget["drain_margin_seconds"] >= budget["time_seconds"]:
        raise ConfigError("budget.drain_margin_seconds must be smaller than budget.time_seconds")

    batching = cfg["batching"]
    _assert_positive(batching["batch_size"], "batching.batch_size")
    _assert_positive(batching["lookup_batch_size"], "batching.lookup_batch_size")
    if batching.get("max_workers") is not None:
        _assert_positive(batching["max_workers"], "batching.max_workers")

    retry = cfg["retry"]
    _assert_positive(retry["max_attempts"], "retry.max_attempts")
    _assert_positive(retry["base_delay"], "retry.base_delay", allow_zero=True)
    _assert_positive(retry["max_delay"], "retry.max_delay", allow_zero=True)
    _assert_positive(retry["jitter"], "retry.jitter", allow_zero=True)

    return cfg
