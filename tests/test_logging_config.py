import json
import logging
import sys
import tempfile
import unittest
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

from concierge_relay.config.logging_config import configure_logging, json_formatter


class TestLoggingConfig(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.log_dir = Path(self._tmp.name)

    def tearDown(self):
        logger = logging.getLogger("concierge_relay")
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)
        self._tmp.cleanup()

    def test_configure_logging(self):
        logger = configure_logging("DEBUG", "text", self.log_dir)

        self.assertIsInstance(logger, logging.Logger)
        self.assertEqual(logger.name, "concierge_relay")
        self.assertEqual(logger.level, logging.DEBUG)
        self.assertFalse(logger.propagate)

        # Console handler first, rotating file handler second
        self.assertEqual(len(logger.handlers), 2)
        self.assertIsInstance(logger.handlers[0], logging.StreamHandler)
        self.assertIsInstance(logger.handlers[1], RotatingFileHandler)
        formatter = logger.handlers[0].formatter
        self.assertEqual(formatter._fmt, "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        self.assertTrue((self.log_dir / "concierge_relay.log").exists())

    def test_reconfigure_replaces_handlers(self):
        configure_logging("INFO", "text", self.log_dir)
        logger = configure_logging("INFO", "json", self.log_dir)

        self.assertEqual(len(logger.handlers), 2)
        self.assertIsInstance(logger.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)
        self.assertIs(logger.handlers[0].formatter, logger.handlers[1].formatter)

    def test_json_formatter(self):
        record = logging.LogRecord("concierge_relay", logging.ERROR, __file__, 1, "Call %s failed", ("CA1",), None)

        entry = json.loads(json_formatter().format(record))

        self.assertEqual(entry["event"], "Call CA1 failed")
        self.assertEqual(entry["level"], "error")
        self.assertEqual(entry["logger"], "concierge_relay")
        self.assertIn("timestamp", entry)

    def test_json_formatter_includes_exception(self):
        try:
            raise ValueError("bad frame")
        except ValueError:
            record = logging.LogRecord("concierge_relay", logging.ERROR, __file__, 1, "oops", (), sys.exc_info())

        entry = json.loads(json_formatter().format(record))

        self.assertEqual(entry["event"], "oops")
        self.assertIn("Traceback", entry["exception"])
        self.assertIn("ValueError: bad frame", entry["exception"])

    def test_json_lines_written_to_file(self):
        logger = configure_logging("INFO", "json", self.log_dir)
        logger.warning("Stream %s idle", "MZ1")
        for handler in logger.handlers:
            handler.flush()

        lines = (self.log_dir / "concierge_relay.log").read_text().splitlines()
        entries = [json.loads(line) for line in lines]

        self.assertEqual(entries[-1]["event"], "Stream MZ1 idle")
        self.assertEqual(entries[-1]["level"], "warning")


if __name__ == "__main__":
    unittest.main()
