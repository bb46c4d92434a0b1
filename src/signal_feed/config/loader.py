"""Config loader — reads YAML, applies SIGNAL_FEED_* env var overrides."""

from __future__ import annotations

import os
from pathlib import Path

import yaml

from signal_feed.config.schema import AppConfig

# Looked up relative to the working directory; a missing file means defaults.
DEFAULT_CONFIG_PATH = "config.yaml"

# env var -> (section, key)
_ENV_OVERRIDES = {
    "SIGNAL_FEED_API_URL": ("api", "base_url"),
    "SIGNAL_FEED_WS_URL": ("transport", "ws_url"),
    "SIGNAL_FEED_LOG_LEVEL": ("logging", "level"),
    "SIGNAL_FEED_LOG_FORMAT": ("logging", "format"),
    "SIGNAL_FEED_RELAXED_MIN_CONFIDENCE": ("classifier", "relaxed_min_confidence"),
    "SIGNAL_FEED_RELAXED_MIN_STRENGTH": ("classifier", "relaxed_min_strength"),
}


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load config from a YAML file, then apply env var overrides.

    If *path* is None or the file doesn't exist, returns defaults.

    Environment variable overrides:
        SIGNAL_FEED_API_URL                 -> api.base_url
        SIGNAL_FEED_WS_URL                  -> transport.ws_url
        SIGNAL_FEED_LOG_LEVEL               -> logging.level
        SIGNAL_FEED_LOG_FORMAT              -> logging.format
        SIGNAL_FEED_RELAXED_MIN_CONFIDENCE  -> classifier.relaxed_min_confidence
        SIGNAL_FEED_RELAXED_MIN_STRENGTH    -> classifier.relaxed_min_strength
    """
    data: dict = {}
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p) as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError(f"{p}: top level must be a mapping of config sections")

    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            data.setdefault(section, {})[key] = value

    return AppConfig.model_validate(data)
