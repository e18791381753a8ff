"""Configuration loader with TOML support and merge capability."""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

from chatterm.config.schema import ChattermConfig

logger = logging.getLogger(__name__)

# (section, key) pairs holding filesystem paths.
_PATH_FIELDS = [
    ("general", "log_dir"),
    ("ai", "prompts_dir"),
    ("metrics", "log_dir"),
    ("transport", "data_dir"),
    ("prompts", "store_path"),
]


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _expand_path(path: str | Path) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expandvars(str(path))).expanduser()


def _read_toml(path: Path) -> dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def user_config_path() -> Path:
    return Path.home() / ".config" / "chatterm" / "config.toml"


def load_config(
    config_path: Path | None = None,
    merge_user: bool = True,
) -> ChattermConfig:
    """Load configuration with precedence.

    Priority (highest to lowest):
    1. Provided config_path (or CHATTERM_CONFIG_PATH)
    2. ./chatterm.toml (project-local)
    3. ~/.config/chatterm/config.toml (user)
    4. Built-in defaults (schema)

    Args:
        config_path: Explicit path to config file.
        merge_user: Whether to merge user config from ~/.config/chatterm/.

    Returns:
        Merged ChattermConfig instance.
    """
    env_config = os.environ.get("CHATTERM_CONFIG_PATH")
    if config_path is None and env_config:
        config_path = Path(env_config).expanduser()

    config_data: dict[str, Any] = {}

    if merge_user:
        user_path = user_config_path()
        if user_path.exists():
            config_data = _deep_merge(config_data, _read_toml(user_path))

    local_path = Path("chatterm.toml")
    if local_path.exists():
        config_data = _deep_merge(config_data, _read_toml(local_path))

    if config_path is not None:
        if config_path.exists():
            config_data = _deep_merge(config_data, _read_toml(config_path))
        else:
            logger.warning("Config file %s does not exist, using defaults", config_path)

    for section, key in _PATH_FIELDS:
        value = config_data.get(section, {}).get(key)
        if value:
            config_data[section][key] = _expand_path(value)

    env_level = os.environ.get("CHATTERM_LOG_LEVEL")
    if env_level:
        config_data.setdefault("general", {})["log_level"] = env_level.upper()

    return ChattermConfig(**config_data)
