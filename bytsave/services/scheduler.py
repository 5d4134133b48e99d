# bytsave/services/scheduler.py

"""Fixed-interval driver for alert runs."""

import asyncio
import logging
from collections.abc import Callable

from bytsave.models.decision import ProcessingResult
from bytsave.services.alert_processor import AlertProcessor

logger = logging.getLogger("bytsave.scheduler")


async def run_periodically(
    processor: AlertProcessor,
    interval_seconds: float,
    stop_event: asyncio.Event | None = None,
    max_runs: int | None = None,
    on_result: Callable[[ProcessingResult], None] | None = None,
) -> int:
    """Call ``process_all`` every *interval_seconds* until stopped.

    Runs are awaited back to back, so two never overlap: a slow run
    simply delays the next one.  A run that fails outright is logged
    and the loop carries on.  Returns the number of completed runs.
    """
    stop = stop_event or asyncio.Event()
    completed = 0
    attempts = 0

    while not stop.is_set():
        attempts += 1
        try:
            result = await processor.process_all()
        except Exception:
            logger.critical("Alert run failed", exc_info=True)
        else:
            completed += 1
            if on_result is not None:
                on_result(result)

        if max_runs is not None and attempts >= max_runs:
            break

        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass

    logger.info("Scheduler stopped after %d runs", completed)
    return completed
