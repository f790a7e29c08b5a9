"""
Unit tests for day boundary scheduling.
"""

import threading
from datetime import datetime

import pytest

from ai_footprint.core.scheduler import DAY_SECONDS, BoundaryScheduler, seconds_until_next_midnight


class TestSecondsUntilMidnight:
    """Test delay calculation."""

    @pytest.mark.parametrize("now, expected", [
        (datetime(2024, 1, 1, 23, 0, 0), 3600),
        (datetime(2024, 1, 1, 0, 0, 0), DAY_SECONDS),
        (datetime(2024, 1, 1, 12, 30, 0), 41400),
        (datetime(2024, 12, 31, 23, 59, 59), 1),
        (datetime(2024, 2, 28, 23, 59, 30), 30),
    ])
    def test_delay(self, now, expected):
        assert seconds_until_next_midnight(now) == pytest.approx(expected)


def almost_midnight():
    return datetime(2024, 1, 1, 23, 59, 59, 950000)


class TestBoundaryScheduler:
    """Test the recurring timer."""

    def test_fires_at_midnight_then_periodically(self):
        fired = []
        done = threading.Event()

        def callback():
            fired.append(True)
            if len(fired) >= 2:
                done.set()

        scheduler = BoundaryScheduler(callback, clock=almost_midnight, period_seconds=0.05)
        scheduler.start()
        try:
            assert done.wait(5)
        finally:
            scheduler.stop()

        assert scheduler.running is False
        assert len(fired) >= 2

    def test_failing_callback_keeps_schedule(self):
        calls = []
        done = threading.Event()

        def callback():
            calls.append(True)
            if len(calls) >= 2:
                done.set()
            raise RuntimeError("check failed")

        scheduler = BoundaryScheduler(callback, clock=almost_midnight, period_seconds=0.05)
        scheduler.start()
        try:
            assert done.wait(5)
        finally:
            scheduler.stop()

    def test_stop_before_fire(self):
        fired = threading.Event()
        scheduler = BoundaryScheduler(fired.set, clock=lambda: datetime(2024, 1, 1, 12, 0, 0))
        scheduler.start()
        assert scheduler.running is True

        scheduler.stop()

        assert scheduler.running is False
        assert not fired.wait(0.1)

    def test_start_is_idempotent(self):
        scheduler = BoundaryScheduler(lambda: None, clock=lambda: datetime(2024, 1, 1, 12, 0, 0))
        scheduler.start()
        scheduler.start()
        scheduler.stop()
        assert scheduler.running is False
