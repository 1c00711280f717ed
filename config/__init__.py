"""Configuration management."""
import os
import yaml
from pathlib import Path

from models.enums import ChannelType

_config = None
_DEFAULT_CONFIG = Path(__file__).parent / "default_config.yaml"

STAGES = ("ingestion", "evaluation", "dispatch")


def load_config(path=None):
    """Load config from YAML, merging defaults with optional overrides."""
    global _config

    with open(_DEFAULT_CONFIG) as f:
        config = yaml.safe_load(f)

    if path and Path(path).exists():
        with open(path) as f:
            overrides = yaml.safe_load(f) or {}
        config = _deep_merge(config, overrides)

    # Environment variable overrides
    env_map = {
        "SIGNALENGINE_DB_PATH": ("database", "path"),
        "SIGNALENGINE_LOG_LEVEL": ("logging", "level"),
        "SIGNALENGINE_EVALUATION_INTERVAL": ("evaluation", "tick_interval_seconds"),
    }
    for env_key, config_path in env_map.items():
        val = os.environ.get(env_key)
        if val:
            d = config
            for k in config_path[:-1]:
                d = d.setdefault(k, {})
            try:
                d[config_path[-1]] = int(val)
            except ValueError:
                d[config_path[-1]] = val

    _validate_config(config)
    _config = config
    return config


def get_config():
    """Return cached config, loading defaults if needed."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def _deep_merge(base, override):
    """Recursively merge override into base dict."""
    result = base.copy()
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _validate_config(config):
    """Basic config validation."""
    required_sections = ["database", "notifications"] + list(STAGES)
    for section in required_sections:
        if section not in config:
            raise ValueError(f"Missing required config section: {section}")

    for stage in STAGES:
        interval = config[stage].get("tick_interval_seconds")
        if not isinstance(interval, (int, float)) or interval < 1:
            raise ValueError(f"{stage}.tick_interval_seconds must be >= 1 second")

    for stage in ("ingestion", "dispatch"):
        if config[stage].get("max_items_per_tick", 0) < 1:
            raise ValueError(f"{stage}.max_items_per_tick must be >= 1")

    if config["dispatch"].get("max_retry_count", -1) < 0:
        raise ValueError("dispatch.max_retry_count must be >= 0")

    notif_cfg = config["notifications"]
    channel = str(notif_cfg.get("default_channel", "")).upper()
    if channel not in {c.value for c in ChannelType}:
        raise ValueError(
            f"notifications.default_channel must be one of {', '.join(c.value for c in ChannelType)}"
        )
    recipient = notif_cfg.get("default_recipient")
    if not isinstance(recipient, str) or not recipient.strip():
        raise ValueError("notifications.default_recipient is required")
