"""
Periodic background tasks - lease reaping, rate-limit sweeps, heartbeats.

Each PeriodicTask owns one asyncio task running `while True` with per-cycle
error containment. Tasks can be paused, resumed, run once on demand, and
cancelled; run_count makes progress observable in tests.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[object]],
        interval_seconds: float,
        run_immediately: bool = False,
    ):
        self.name = name
        self._func = func
        self.interval_seconds = interval_seconds
        self._run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self._resumed = asyncio.Event()
        self._resumed.set()
        self.run_count = 0
        self.error_count = 0
        self.last_error: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_paused(self) -> bool:
        return not self._resumed.is_set()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")
        logger.debug("Periodic task started: %s (every %.1fs)", self.name, self.interval_seconds)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.debug("Periodic task stopped: %s", self.name)

    def pause(self) -> None:
        self._resumed.clear()

    def resume(self) -> None:
        self._resumed.set()

    async def run_once(self) -> None:
        """Run one cycle now, in the caller's task. Errors are contained and logged."""
        try:
            await self._func()
            self.run_count += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.error_count += 1
            self.last_error = str(e)
            logger.error("Periodic task %s failed: %s", self.name, str(e))

    async def _loop(self) -> None:
        if not self._run_immediately:
            await asyncio.sleep(self.interval_seconds)
        while True:
            await self._resumed.wait()
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)
