# graphweave/config/loader.py
"""
Configuration loader for graphweave.

Responsibilities:
- Load default config
- Load user config (optional, deep-merged over the defaults)
- Expand ${ENV_VAR} placeholders
- Validate via schema
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from graphweave.config.schema import GraphweaveConfig
from graphweave.exceptions import ConfigError
from graphweave.logging.logger import get_logger
from graphweave.logging.tags import INDEXER

logger = get_logger(__name__)


DEFAULT_CONFIG_PATH = Path(__file__).parent / "default.yaml"


def _expand_env(value: Any) -> Any:
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    return value


def _deep_merge(base: dict, override: dict) -> dict:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping: {path}")

    return _expand_env(data)


def load_config_dict(data: dict[str, Any]) -> GraphweaveConfig:
    """Validate a raw config dict, raising ConfigError on failure."""
    try:
        return GraphweaveConfig.from_dict(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


def load_config(user_config_path: str | Path | None = None) -> GraphweaveConfig:
    """
    Load and validate configuration.

    Precedence:
    - defaults
    - user config (overrides defaults)
    """
    logger.debug(f"{INDEXER} Loading default config from {DEFAULT_CONFIG_PATH}")
    base_cfg = _load_yaml(DEFAULT_CONFIG_PATH)

    if user_config_path:
        logger.debug(f"{INDEXER} Loading user config from {user_config_path}")
        user_cfg = _load_yaml(Path(user_config_path))
        base_cfg = _deep_merge(base_cfg, user_cfg)

    return load_config_dict(base_cfg)


__all__ = ["DEFAULT_CONFIG_PATH", "load_config", "load_config_dict"]
