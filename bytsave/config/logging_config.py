# bytsave/config/logging_config.py

"""Per-run timestamped logging configuration for BytSave.

Each launch creates a dedicated log file inside ``logs/`` named with
the launch timestamp (e.g. ``logs/run_20260214_153045.log``).  Every
``bytsave.*`` logger routes through this file handler.

A process may start several alert runs (``watch`` does, hourly), and a
run fans out across worker threads, so every line carries the id of the
alert run that produced it.  ``grep run=<id>`` over the file isolates
one run; lines logged outside a run show ``run=-``.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from pathlib import Path

from bytsave.config.settings import Settings

_NO_RUN = "-"

# Copied into asyncio tasks and ``asyncio.to_thread`` workers
RUN_ID: ContextVar[str] = ContextVar("bytsave_run_id", default=_NO_RUN)

_DETAILED_FORMAT = (
    "%(asctime)s | %(levelname)-8s | run=%(run_id)s | %(name)s | "
    "%(threadName)s | %(module)s:%(funcName)s:%(lineno)d | %(message)s"
)

_CONSOLE_FORMAT = (
    "%(asctime)s | %(levelname)-8s | run=%(run_id)s | %(message)s"
)

_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class RunIdFilter(logging.Filter):
    """Stamp each record with the alert run active in its context."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = RUN_ID.get()
        return True


@contextmanager
def bound_run_id(run_id: str) -> Iterator[str]:
    """Tag every log line emitted inside the block with *run_id*."""
    token = RUN_ID.set(run_id)
    try:
        yield run_id
    finally:
        RUN_ID.reset(token)


def setup_logging(logs_dir: Path | None = None) -> Path:
    """Initialise the root ``bytsave`` logger for the current run.

    Returns:
        The :class:`~pathlib.Path` to the log file created for this run.
    """
    directory: Path = logs_dir or Settings.LOGS_DIR
    directory.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = directory / f"run_{timestamp}.log"

    root_logger = logging.getLogger("bytsave")
    root_logger.setLevel(logging.DEBUG)

    # Prevent duplicate handlers on repeated calls (e.g. tests)
    if root_logger.handlers:
        return log_file

    run_filter = RunIdFilter()

    # --- File handler (DEBUG+) ---------------------------------------------
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.addFilter(run_filter)
    file_handler.setFormatter(
        logging.Formatter(_DETAILED_FORMAT, datefmt=_DATE_FORMAT)
    )

    # --- Console handler (WARNING+) ----------------------------------------
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.WARNING)
    console_handler.addFilter(run_filter)
    console_handler.setFormatter(
        logging.Formatter(_CONSOLE_FORMAT, datefmt=_DATE_FORMAT)
    )

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    root_logger.info("Logging initialised, log file: %s", log_file)

    return log_file
