# graphweave/logging/logger.py
"""
Thin wrapper over stdlib logging.

Every module does:

    from graphweave.logging.logger import get_logger
    logger = get_logger(__name__)

Handlers are only installed by configure_logging(); library code never
touches the root logger.
"""

from __future__ import annotations

import logging
import sys

_PACKAGE_LOGGER = "graphweave"
_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

_configured = False


def get_logger(name: str) -> logging.Logger:
    """Return a logger namespaced under the package logger."""
    if name != _PACKAGE_LOGGER and not name.startswith(f"{_PACKAGE_LOGGER}."):
        name = f"{_PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """
    Install a single stream handler on the package logger.

    Safe to call more than once; later calls only change the level.
    """
    global _configured

    logger = logging.getLogger(_PACKAGE_LOGGER)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {level!r}")
    logger.setLevel(level)

    if not _configured:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False
        _configured = True

    return logger


__all__ = ["get_logger", "configure_logging"]
