"""
Latency measurement for the ingestion path.

- Timer: monotonic stopwatch reporting whole milliseconds
- LatencyTracker: bounded per-endpoint sample windows with p50/p95/max,
  reported by GET /webhooks/{endpoint}
"""
import math
import time
from collections import deque
from typing import Callable, Optional


class Timer:
    """Starts on construction. Usable as a context manager."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._started = clock()
        self._stopped: Optional[float] = None

    def __enter__(self) -> "Timer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def stop(self) -> int:
        if self._stopped is None:
            self._stopped = self._clock()
        return self.elapsed_ms

    @property
    def elapsed_ms(self) -> int:
        end = self._stopped if self._stopped is not None else self._clock()
        return int((end - self._started) * 1000)


def _percentile(ordered: list[int], pct: float) -> int:
    rank = max(math.ceil(pct * len(ordered) / 100) - 1, 0)
    return ordered[rank]


class LatencyTracker:
    def __init__(self, window: int = 500):
        self.window = window
        self._samples: dict[str, deque] = {}

    def record(self, key: str, elapsed_ms: int) -> None:
        samples = self._samples.get(key)
        if samples is None:
            samples = self._samples[key] = deque(maxlen=self.window)
        samples.append(elapsed_ms)

    def snapshot(self, key: str) -> dict:
        ordered = sorted(self._samples.get(key, ()))
        if not ordered:
            return {"count": 0, "p50": None, "p95": None, "max": None}
        return {
            "count": len(ordered),
            "p50": _percentile(ordered, 50),
            "p95": _percentile(ordered, 95),
            "max": ordered[-1],
        }


def now_ms() -> int:
    """Wall-clock epoch milliseconds."""
    return int(time.time() * 1000)
