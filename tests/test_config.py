"""Tests for config loading and validation."""
import pytest
import yaml
from unittest.mock import patch

from config import load_config, _deep_merge


@pytest.fixture(autouse=True)
def no_env_overrides():
    with patch.dict("os.environ", {}) as env:
        for key in ("SIGNALENGINE_DB_PATH", "SIGNALENGINE_LOG_LEVEL", "SIGNALENGINE_EVALUATION_INTERVAL"):
            env.pop(key, None)
        yield env


def _write(tmp_path, data):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


def test_defaults():
    config = load_config()
    assert config["ingestion"]["tick_interval_seconds"] == 15
    assert config["ingestion"]["max_items_per_tick"] == 1000
    assert config["evaluation"]["tick_interval_seconds"] == 300
    assert config["dispatch"]["tick_interval_seconds"] == 30
    assert config["dispatch"]["max_items_per_tick"] == 100
    assert config["dispatch"]["max_retry_count"] == 3
    assert all(config[s]["enabled"] for s in ("ingestion", "evaluation", "dispatch"))


def test_user_file_deep_merged(tmp_path):
    config = load_config(_write(tmp_path, {"dispatch": {"max_retry_count": 5}}))
    assert config["dispatch"]["max_retry_count"] == 5
    assert config["dispatch"]["tick_interval_seconds"] == 30


def test_missing_user_file_uses_defaults(tmp_path):
    config = load_config(str(tmp_path / "absent.yaml"))
    assert config["database"]["path"] == "data/signalengine.db"


def test_env_overrides(no_env_overrides):
    no_env_overrides["SIGNALENGINE_DB_PATH"] = "/tmp/other.db"
    no_env_overrides["SIGNALENGINE_EVALUATION_INTERVAL"] = "60"
    config = load_config()
    assert config["database"]["path"] == "/tmp/other.db"
    assert config["evaluation"]["tick_interval_seconds"] == 60


@pytest.mark.parametrize("override", [
    {"ingestion": {"tick_interval_seconds": 0}},
    {"dispatch": {"max_items_per_tick": 0}},
    {"dispatch": {"max_retry_count": -1}},
    {"notifications": {"default_channel": "SMS"}},
    {"notifications": {"default_recipient": "  "}},
])
def test_invalid_values_rejected(tmp_path, override):
    with pytest.raises(ValueError):
        load_config(_write(tmp_path, override))


def test_deep_merge_does_not_mutate_base():
    base = {"a": {"b": 1, "c": 2}}
    merged = _deep_merge(base, {"a": {"b": 9}})
    assert merged == {"a": {"b": 9, "c": 2}}
    assert base == {"a": {"b": 1, "c": 2}}


def test_get_config_returns_cached(tmp_path):
    import config as config_module
    loaded = load_config(_write(tmp_path, {"dispatch": {"max_retry_count": 7}}))
    assert config_module.get_config() is loaded


def test_default_channel_is_case_insensitive(tmp_path):
    config = load_config(_write(tmp_path, {"notifications": {"default_channel": "slack"}}))
    assert config["notifications"]["default_channel"] == "slack"
