"""
Tests for hookgate/utils/metrics.py - Timer and latency windows.
"""
from hookgate.utils.metrics import LatencyTracker, Timer


def _clock(*readings):
    values = iter(readings)
    return lambda: next(values)


class TestTimer:
    def test_elapsed_ms(self):
        timer = Timer(clock=_clock(10.0, 10.25))
        assert timer.stop() == 250

    def test_stop_is_idempotent(self):
        timer = Timer(clock=_clock(1.0, 1.5, 9.0))
        assert timer.stop() == 500
        assert timer.stop() == 500

    def test_context_manager_stops(self):
        with Timer(clock=_clock(2.0, 2.5)) as timer:
            pass
        assert timer.elapsed_ms == 500


class TestLatencyTracker:
    def test_empty_snapshot(self):
        assert LatencyTracker().snapshot("netbanx") == {"count": 0, "p50": None, "p95": None, "max": None}

    def test_percentiles(self):
        tracker = LatencyTracker()
        for ms in range(1, 101):
            tracker.record("netbanx", ms)
        assert tracker.snapshot("netbanx") == {"count": 100, "p50": 50, "p95": 95, "max": 100}

    def test_window_is_bounded_per_endpoint(self):
        tracker = LatencyTracker(window=3)
        for ms in (900, 1, 2, 3):
            tracker.record("netbanx", ms)
        tracker.record("direct-debit", 7)
        assert tracker.snapshot("netbanx")["max"] == 3
        assert tracker.snapshot("netbanx")["count"] == 3
        assert tracker.snapshot("direct-debit")["count"] == 1
