from pathlib import Path

import pytest

from postal_sync.common.config import default_max_workers, load_settings
from postal_sync.common.errors import ConfigError


def test_defaults_match_run_budget():
    settings = load_settings({})

    assert settings.time_budget_seconds == 600
    assert settings.memory_budget_mb == 512
    assert settings.batch_size == 25
    assert settings.lookup_batch_size == 100
    assert settings.max_workers == 4
    assert settings.download_chunk_bytes == 512 * 2048
    assert settings.retry.max_attempts == 5
    assert settings.snapshot_shortcut is True


def test_environment_overrides():
    settings = load_settings(
        {
            "RECORD_TABLE_NAME": "postal-codes-dev",
            "HASH_TABLE_NAME": "hash-table-dev",
            "TIME_BUDGET_SECONDS": "120",
            "MEMORY_BUDGET_MB": "1024",
            "DRAIN_MARGIN_SECONDS": "15",
            "RETRY_MAX_ATTEMPTS": "2",
            "SNAPSHOT_SHORTCUT": "false",
        }
    )

    assert settings.require_tables() == ("postal-codes-dev", "hash-table-dev")
    assert settings.time_budget_seconds == 120
    assert settings.max_workers == 8
    assert settings.retry.max_attempts == 2
    assert settings.snapshot_shortcut is False


def test_yaml_file_is_merged_under_environment(tmp_path: Path):
    config_path = tmp_path / "settings.yml"
    config_path.write_text(
        """record_table_name: from-file
batching:
  batch_size: 10
  max_workers: 2
""",
        encoding="utf-8",
    )

    settings = load_settings({"RECORD_TABLE_NAME": "from-env"}, config_path=config_path)

    assert settings.record_table_name == "from-env"
    assert settings.batch_size == 10
    assert settings.max_workers == 2
    assert settings.lookup_batch_size == 100


def test_empty_yaml_file_keeps_defaults(tmp_path: Path):
    config_path = tmp_path / "settings.yml"
    config_path.write_text("", encoding="utf-8")

    assert load_settings({}, config_path=config_path).batch_size == 25


def test_unknown_yaml_keys_are_rejected(tmp_path: Path):
    config_path = tmp_path / "settings.yml"
    config_path.write_text("retry:\n  max_tries: 3\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_settings({}, config_path=config_path)


def test_non_mapping_yaml_is_rejected(tmp_path: Path):
    config_path = tmp_path / "settings.yml"
    config_path.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_settings({}, config_path=config_path)


def test_missing_config_file_is_rejected(tmp_path: Path):
    with pytest.raises(ConfigError):
        load_settings({}, config_path=tmp_path / "absent.yml")


@pytest.mark.parametrize(
    "env",
    [
        {"BATCH_SIZE": "zero"},
        {"BATCH_SIZE": "0"},
        {"TIME_BUDGET_SECONDS": "30", "DRAIN_MARGIN_SECONDS": "30"},
        {"SNAPSHOT_SHORTCUT": "maybe"},
    ],
)
def test_invalid_values_raise_config_error(env):
    with pytest.raises(ConfigError):
        load_settings(env)


def test_require_tables_needs_both_names():
    with pytest.raises(ConfigError):
        load_settings({"RECORD_TABLE_NAME": "only-records"}).require_tables()


def test_default_max_workers_scales_with_memory():
    assert default_max_workers(64) == 1
    assert default_max_workers(512) == 4
    assert default_max_workers(4096) == 8
