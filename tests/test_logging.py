# tests/test_logging.py
"""
Tests for graphweave.logging.
"""

import logging

import pytest

from graphweave.logging import configure_logging, get_logger
from graphweave.logging.tags import INDEXER


class TestLogger:
    def test_names_are_namespaced(self):
        assert get_logger("graphweave.indexer").name == "graphweave.indexer"
        assert get_logger("tests.helper").name == "graphweave.tests.helper"

    def test_configure_installs_one_handler(self):
        logger = configure_logging("DEBUG")
        handlers = list(logger.handlers)
        configure_logging("WARNING")

        assert logger.handlers == handlers
        assert len(handlers) >= 1
        assert logger.level == logging.WARNING

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            configure_logging("LOUD")

    def test_tagged_message(self, caplog):
        package = configure_logging("INFO")
        package.addHandler(caplog.handler)
        try:
            get_logger("graphweave.indexer.engine").info(f"{INDEXER} run finished")
        finally:
            package.removeHandler(caplog.handler)

        assert f"{INDEXER} run finished" in caplog.text
