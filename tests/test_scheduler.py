# tests/test_scheduler.py

"""Tests for the fixed-interval run driver."""

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock

from bytsave.models.decision import ProcessingResult
from bytsave.services.scheduler import run_periodically


class TestRunPeriodically(unittest.IsolatedAsyncioTestCase):
    """Sequential scheduling of alert runs."""

    async def test_stops_after_max_runs(self) -> None:
        processor = MagicMock()
        processor.process_all = AsyncMock(return_value=ProcessingResult())
        results: list[ProcessingResult] = []

        completed = await run_periodically(
            processor, interval_seconds=0, max_runs=3,
            on_result=results.append,
        )

        self.assertEqual(completed, 3)
        self.assertEqual(processor.process_all.await_count, 3)
        self.assertEqual(len(results), 3)

    async def test_failed_run_does_not_stop_loop(self) -> None:
        processor = MagicMock()
        processor.process_all = AsyncMock(
            side_effect=[ConnectionError("db down"), ProcessingResult()]
        )
        completed = await run_periodically(
            processor, interval_seconds=0, max_runs=2,
        )
        self.assertEqual(completed, 1)
        self.assertEqual(processor.process_all.await_count, 2)

    async def test_always_failing_runs_still_terminate(self) -> None:
        processor = MagicMock()
        processor.process_all = AsyncMock(side_effect=RuntimeError("boom"))
        completed = await run_periodically(
            processor, interval_seconds=0, max_runs=2,
        )
        self.assertEqual(completed, 0)

    async def test_stop_event_ends_wait(self) -> None:
        stop = asyncio.Event()
        processor = MagicMock()

        async def run_and_stop() -> ProcessingResult:
            stop.set()
            return ProcessingResult()

        processor.process_all = AsyncMock(side_effect=run_and_stop)
        completed = await asyncio.wait_for(
            run_periodically(processor, interval_seconds=3600, stop_event=stop),
            timeout=5,
        )
        self.assertEqual(completed, 1)

    async def test_runs_never_overlap(self) -> None:
        active = 0
        peak = 0

        async def slow_run() -> ProcessingResult:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return ProcessingResult()

        processor = MagicMock()
        processor.process_all = AsyncMock(side_effect=slow_run)
        await run_periodically(processor, interval_seconds=0, max_runs=3)
        self.assertEqual(peak, 1)


if __name__ == "__main__":
    unittest.main()
