"""
Day boundary scheduling.

Fires a callback at the next local midnight and every 24 hours after, so a
day without any observed turns still closes out.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60


def seconds_until_next_midnight(now: datetime) -> float:
    """Seconds from now until the start of the next calendar day."""
    midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return (midnight - now).total_seconds()


class BoundaryScheduler:
    """Recurring midnight timer.

    The callback runs on the timer thread, so it should only post work to
    the ledger's owning thread (LedgerHost does this with a checkRollover
    command) rather than touch ledger state itself.
    """

    def __init__(
        self,
        callback: Callable[[], None],
        clock: Callable[[], datetime] = datetime.now,
        period_seconds: float = DAY_SECONDS
    ):
        self._callback = callback
        self._clock = clock
        self._period_seconds = period_seconds
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Schedule the first check at the next midnight."""
        with self._lock:
            if self._running:
                return
            self._running = True
            delay = seconds_until_next_midnight(self._clock())
            self._schedule(delay)
        logger.info("Day boundary check scheduled in %.0f seconds", delay)

    def stop(self) -> None:
        with self._lock:
            self._running = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _schedule(self, delay: float) -> None:
        self._timer = threading.Timer(delay, self._fire)
        self._timer.daemon = True
        self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._schedule(self._period_seconds)

        try:
            self._callback()
        except Exception:
            # The timer must keep running even if one check fails
            logger.exception("Day boundary callback failed")
