# tests/test_logging_config.py

"""Tests for the per-run logging configuration."""

import asyncio
import logging
import tempfile
import unittest
from pathlib import Path

from bytsave.config.logging_config import (
    RUN_ID,
    bound_run_id,
    setup_logging,
)


class TestLoggingConfig(unittest.TestCase):
    """Verify logging setup behaviour."""

    def setUp(self) -> None:
        """Clean up the bytsave logger and point logs at a temp dir."""
        self._clear_handlers()
        self._tmp = tempfile.TemporaryDirectory()
        self.logs_dir = Path(self._tmp.name) / "logs"

    def tearDown(self) -> None:
        self._clear_handlers()
        self._tmp.cleanup()

    @staticmethod
    def _clear_handlers() -> None:
        root_logger = logging.getLogger("bytsave")
        for handler in list(root_logger.handlers):
            handler.close()
            root_logger.removeHandler(handler)

    def test_setup_creates_log_file(self) -> None:
        """setup_logging returns a path that exists on disk."""
        log_path = setup_logging(self.logs_dir)
        self.assertTrue(log_path.exists())

    def test_log_file_naming_convention(self) -> None:
        """Log file name matches run_YYYYMMDD_HHMMSS.log format."""
        log_path = setup_logging(self.logs_dir)
        self.assertRegex(log_path.name, r"^run_\d{8}_\d{6}\.log$")

    def test_file_handler_level_debug(self) -> None:
        """File handler should be set to DEBUG level."""
        setup_logging(self.logs_dir)
        root_logger = logging.getLogger("bytsave")
        file_handlers = [
            h
            for h in root_logger.handlers
            if isinstance(h, logging.FileHandler)
        ]
        self.assertEqual(len(file_handlers), 1)
        self.assertEqual(file_handlers[0].level, logging.DEBUG)

    def test_console_handler_level_warning(self) -> None:
        """Console handler should be set to WARNING level."""
        setup_logging(self.logs_dir)
        root_logger = logging.getLogger("bytsave")
        stream_handlers: list[logging.Handler] = [
            h
            for h in root_logger.handlers
            if isinstance(h, logging.StreamHandler)
            and not isinstance(h, logging.FileHandler)
        ]
        self.assertEqual(len(stream_handlers), 1)
        self.assertEqual(stream_handlers[0].level, logging.WARNING)

    def test_repeated_calls_no_duplicate_handlers(self) -> None:
        """Calling setup_logging twice does not duplicate handlers."""
        setup_logging(self.logs_dir)
        root_logger = logging.getLogger("bytsave")
        count_before = len(root_logger.handlers)
        setup_logging(self.logs_dir)
        self.assertEqual(count_before, len(root_logger.handlers))

    def test_child_loggers_reach_the_file(self) -> None:
        """Module loggers under bytsave.* write to the run file."""
        log_path = setup_logging(self.logs_dir)
        logging.getLogger("bytsave.processor").debug("tracker 7 fired")
        for handler in logging.getLogger("bytsave").handlers:
            handler.flush()
        self.assertIn("tracker 7 fired", log_path.read_text("utf-8"))

    def test_lines_carry_the_run_id(self) -> None:
        """Lines inside a bound run show its id; others show a dash."""
        log_path = setup_logging(self.logs_dir)
        child = logging.getLogger("bytsave.processor")
        with bound_run_id("host:42:abc123"):
            child.info("tracker 3 suppressed")
        child.info("between runs")
        for handler in logging.getLogger("bytsave").handlers:
            handler.flush()
        lines = log_path.read_text("utf-8").splitlines()
        inside = [ln for ln in lines if "tracker 3 suppressed" in ln]
        outside = [ln for ln in lines if "between runs" in ln]
        self.assertIn("run=host:42:abc123", inside[0])
        self.assertIn("run=-", outside[0])

    def test_run_id_reaches_worker_threads(self) -> None:
        """asyncio.to_thread workers inherit the bound run id."""
        log_path = setup_logging(self.logs_dir)
        child = logging.getLogger("bytsave.catalog")

        async def run() -> None:
            with bound_run_id("run-7"):
                await asyncio.to_thread(child.info, "fetched in worker")

        asyncio.run(run())
        for handler in logging.getLogger("bytsave").handlers:
            handler.flush()
        self.assertIn(
            "run=run-7 ",
            next(
                ln
                for ln in log_path.read_text("utf-8").splitlines()
                if "fetched in worker" in ln
            ),
        )
        self.assertEqual(RUN_ID.get(), "-")

    def test_log_file_inside_logs_dir(self) -> None:
        """Log file is created inside the given logs directory."""
        log_path = setup_logging(self.logs_dir)
        self.assertEqual(log_path.parent, self.logs_dir)


if __name__ == "__main__":
    unittest.main()
