"""App configuration (narrator connection, game defaults).

get_config() returns defaults merged with {data_dir}/config.json, with the
narrator connection overridden by environment variables:

    NARRATOR_URL, NARRATOR_API_KEY, NARRATOR_FORMAT, NARRATOR_MODEL,
    NARRATOR_TIMEOUT

update_config() applies partial updates: the narrator connection is merged
key-by-key, scalars are overwritten. Environment overrides are never
written back to config.json.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from fate_weaver.llm import HttpLLM

logger = logging.getLogger(__name__)

_CONFIG_DEFAULTS: dict[str, Any] = {
    "narrator": {
        "provider_url": "http://localhost:11434",
        "api_key": "",
        "provider_format": "ollama",
        "model": "",
        "temperature": 0.8,
        "timeout": 120.0,
    },
    "default_setting": "A gritty fantasy tavern on the edge of a cursed forest.",
    "starting_fate_points": None,
    "history_limit": 40,
}

_ENV_OVERRIDES = {
    "NARRATOR_URL": "provider_url",
    "NARRATOR_API_KEY": "api_key",
    "NARRATOR_FORMAT": "provider_format",
    "NARRATOR_MODEL": "model",
    "NARRATOR_TIMEOUT": "timeout",
}

_SCALARS = ("default_setting", "starting_fate_points", "history_limit")


def _config_path(data_dir: Path) -> Path:
    return data_dir / "config.json"


def _read_stored(data_dir: Path) -> dict[str, Any]:
    path = _config_path(data_dir)
    if not path.is_file():
        return {}
    return json.loads(path.read_text())


def _merge(config: dict[str, Any], fields: dict[str, Any]) -> None:
    if isinstance(fields.get("narrator"), dict):
        for key, value in fields["narrator"].items():
            if key in config["narrator"]:
                config["narrator"][key] = value
    for key in _SCALARS:
        if key in fields:
            config[key] = fields[key]


def _stored_config(data_dir: Path) -> dict[str, Any]:
    config = json.loads(json.dumps(_CONFIG_DEFAULTS))
    _merge(config, _read_stored(data_dir))
    return config


def get_config(data_dir: Path) -> dict[str, Any]:
    """Read config, returning defaults merged with stored values and env."""
    config = _stored_config(data_dir)
    for var, key in _ENV_OVERRIDES.items():
        value = os.getenv(var)
        if value:
            config["narrator"][key] = float(value) if key == "timeout" else value
    return config


def update_config(data_dir: Path, fields: dict[str, Any]) -> dict[str, Any]:
    """Merge fields into config and persist. Returns full config."""
    config = _stored_config(data_dir)
    _merge(config, fields)
    _config_path(data_dir).write_text(json.dumps(config, indent=2))
    return get_config(data_dir)


def narrator_llm(config: dict[str, Any]) -> HttpLLM:
    """Build the HTTP narrator client from a config dict."""
    conn = config["narrator"]
    logger.info(
        "narrator backend %s (%s) model=%s",
        conn["provider_url"], conn["provider_format"], conn["model"] or "default",
    )
    return HttpLLM(
        provider_url=conn["provider_url"],
        api_key=conn["api_key"],
        provider_format=conn["provider_format"],
        model=conn["model"],
        temperature=float(conn["temperature"]),
        timeout=float(conn["timeout"]),
    )
