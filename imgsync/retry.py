"""Retry policy for image pulls.

A :class:`Backoff` holds the retry count and the current delay.  Every
failed attempt sleeps for the current delay and then doubles it, and
the delay is never reset: a client that keeps failing keeps backing off
further, across pulls.  Share one instance between clients to make that
escalation process-wide.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from imgsync import log
from imgsync.config import DEFAULT_RETRIES, DEFAULT_RETRY_DELAY


class Backoff:
    """Retry count plus an escalating delay (in seconds)."""

    def __init__(
        self,
        retries: int = DEFAULT_RETRIES,
        delay: float = DEFAULT_RETRY_DELAY,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if retries < 0:
            raise ValueError(f"retries must be >= 0, got {retries}")
        if delay < 0:
            raise ValueError(f"delay must be >= 0, got {delay}")
        self.retries = retries
        self._delay = float(delay)
        self._sleep = sleep
        self._lock = threading.Lock()

    @property
    def tries(self) -> int:
        """Total attempts allowed: the first one plus the retries."""
        return 1 + self.retries

    @property
    def delay(self) -> float:
        return self._delay

    def failed(self) -> float:
        """Sleep the current delay, double it, and return the slept delay."""
        with self._lock:
            delay = self._delay
            self._delay = delay * 2
        log.debug(f"backing off {delay:g}s (next delay {delay * 2:g}s)")
        self._sleep(delay)
        return delay
