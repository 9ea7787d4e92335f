"""Global app configuration (provider connection, model, memory window)."""

import os
from pathlib import Path
from typing import Any

from storyweaver.prompts import clamp_turn_window

from .core import data_dir, read_json, write_json

_CONFIG_DEFAULTS: dict[str, Any] = {
    "provider_url": "https://api.openai.com",
    "provider_format": "responses",
    "api_key": "",
    "model": "gpt-4.1-mini",
    "memory_turn_count": 4,
    "turn_timeout_seconds": 120,
}

# Stored value wins; the environment only fills in an unset key/model
_ENV_FALLBACKS = {
    "api_key": "OPENAI_API_KEY",
    "model": "OPENAI_MODEL",
}


def _config_path() -> Path:
    return data_dir() / "config.json"


def _stored() -> dict[str, Any]:
    return read_json(_config_path(), default={})


def get_config() -> dict[str, Any]:
    """Read config, returning defaults merged with stored values."""
    config = dict(_CONFIG_DEFAULTS)
    stored = _stored()
    for key in _CONFIG_DEFAULTS:
        if key in stored:
            config[key] = stored[key]
    for key, env_name in _ENV_FALLBACKS.items():
        if not stored.get(key) and os.getenv(env_name):
            config[key] = os.environ[env_name]
    config["memory_turn_count"] = clamp_turn_window(config["memory_turn_count"])
    return config


def update_config(fields: dict[str, Any]) -> dict[str, Any]:
    """Merge known fields into the stored config and persist. Returns full config."""
    stored = _stored()
    for key, value in fields.items():
        if key in _CONFIG_DEFAULTS:
            stored[key] = value
    if "memory_turn_count" in stored:
        stored["memory_turn_count"] = clamp_turn_window(stored["memory_turn_count"])
    write_json(_config_path(), stored)
    return get_config()
