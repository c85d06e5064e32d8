"""
Config loading and saving.

Precedence, highest first: CHATMIRROR_* environment variables, the JSON
file, field defaults.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

import pydantic

from chatmirror.config.schema import Config
from chatmirror.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.chatmirror/config.json").expanduser()


def _overlay(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _overlay(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Path | None = None) -> Config:
    """
    Load configuration from JSON file, then apply environment overrides.

    Args:
        path: Config file path. Defaults to ~/.chatmirror/config.json

    Returns:
        Validated Config object.

    Raises:
        ConfigError: The file is not JSON or does not validate.
    """
    if path is None:
        path = DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.debug(f"No config at {path}, using defaults")
        return Config()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(
            f"{path}: not valid JSON ({e.msg}, line {e.lineno})", {"path": str(path)}
        ) from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a JSON object", {"path": str(path)})

    try:
        # Settings read from the environment only; anything set there wins
        env = Config().model_dump(exclude_unset=True)
        return Config(**_overlay(data, env))
    except pydantic.ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ConfigError(f"{path}: invalid settings ({fields})", {"path": str(path)}) from e


def save_config(config: Config, path: Path | None = None) -> None:
    """
    Save configuration to JSON file.

    Writes a sibling temp file and renames it over the target; an
    interrupted save leaves the previous file intact.

    Args:
        config: Config object to save
        path: Config file path. Defaults to ~/.chatmirror/config.json
    """
    if path is None:
        path = DEFAULT_CONFIG_PATH

    path.parent.mkdir(parents=True, exist_ok=True)

    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(config.model_dump(mode="json"), f, indent=2)
    os.replace(tmp, path)
