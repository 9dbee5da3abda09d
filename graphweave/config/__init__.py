# graphweave/config/__init__.py
"""
Configuration for graphweave.

Usage:
    >>> from graphweave.config import load_config, GraphweaveConfig
    >>> config = load_config("graphweave.yaml")
"""

from .loader import (
    DEFAULT_CONFIG_PATH,
    load_config,
    load_config_dict,
)
from .schema import (
    ChunkSizeConfig,
    EntityPipelineConfig,
    GraphweaveConfig,
    IndexerConfig,
    LoggingConfig,
    RetryConfig,
)

__all__ = [
    # Main config
    "GraphweaveConfig",
    "load_config",
    "load_config_dict",
    # Sub-configs
    "IndexerConfig",
    "ChunkSizeConfig",
    "EntityPipelineConfig",
    "RetryConfig",
    "LoggingConfig",
    # Constants
    "DEFAULT_CONFIG_PATH",
]
