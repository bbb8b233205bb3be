"""
Tests for hookgate/utils/scheduler.py - pausable periodic tasks.
"""
import asyncio
from unittest.mock import AsyncMock

from hookgate.utils.scheduler import PeriodicTask


async def _wait_for(predicate, timeout: float = 2.0):
    for _ in range(int(timeout / 0.01)):
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return False


class TestPeriodicTask:
    async def test_runs_repeatedly(self):
        func = AsyncMock()
        task = PeriodicTask("tick", func, interval_seconds=0.01, run_immediately=True)
        task.start()
        try:
            assert await _wait_for(lambda: task.run_count >= 3)
        finally:
            await task.stop()
        assert task.is_running is False

    async def test_waits_one_interval_by_default(self):
        func = AsyncMock()
        task = PeriodicTask("slow", func, interval_seconds=10)
        task.start()
        await asyncio.sleep(0.05)
        await task.stop()
        func.assert_not_awaited()

    async def test_errors_do_not_stop_loop(self):
        calls = []

        async def _flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first")

        func = AsyncMock(side_effect=_flaky)
        task = PeriodicTask("flaky", func, interval_seconds=0.01, run_immediately=True)
        task.start()
        try:
            assert await _wait_for(lambda: task.run_count >= 2)
        finally:
            await task.stop()
        assert task.error_count == 1
        assert task.last_error == "first"

    async def test_pause_and_resume(self):
        func = AsyncMock()
        task = PeriodicTask("pausable", func, interval_seconds=0.01, run_immediately=True)
        task.pause()
        assert task.is_paused is True
        task.start()
        await asyncio.sleep(0.05)
        assert task.run_count == 0

        task.resume()
        try:
            assert await _wait_for(lambda: task.run_count >= 1)
        finally:
            await task.stop()

    async def test_run_once(self):
        func = AsyncMock()
        task = PeriodicTask("manual", func, interval_seconds=60)
        await task.run_once()
        assert task.run_count == 1
        assert task.is_running is False

    async def test_start_is_idempotent(self):
        task = PeriodicTask("once", AsyncMock(), interval_seconds=60)
        task.start()
        first = task._task
        task.start()
        assert task._task is first
        await task.stop()

    async def test_stop_without_start(self):
        await PeriodicTask("never", AsyncMock(), interval_seconds=1).stop()
