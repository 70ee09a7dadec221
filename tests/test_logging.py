"""Tests for prbench.logging."""

from __future__ import annotations

import logging
import tempfile
import unittest
from pathlib import Path

from prbench.logging import get_logger, setup_logging


class TestLogging(unittest.TestCase):
    def tearDown(self) -> None:
        logger = logging.getLogger("prbench")
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()

    def test_get_logger_namespace(self) -> None:
        self.assertEqual(get_logger("workspace").name, "prbench.workspace")

    def test_console_levels(self) -> None:
        logger = setup_logging()
        self.assertEqual(logger.handlers[0].level, logging.INFO)
        logger = setup_logging(quiet=True)
        self.assertEqual(logger.handlers[0].level, logging.WARNING)
        logger = setup_logging(verbose=True, quiet=True)
        self.assertEqual(logger.handlers[0].level, logging.DEBUG)
        self.assertEqual(len(logger.handlers), 1)

    def test_log_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "prbench.log"
            logger = setup_logging(quiet=True, log_file=path)
            get_logger("test").debug("detail for the file")
            for handler in logger.handlers:
                handler.flush()
            self.assertIn("detail for the file", path.read_text(encoding="utf-8"))
            for handler in logger.handlers:
                handler.close()
            logger.handlers.clear()
