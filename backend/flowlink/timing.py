"""
Fixed-interval tickers used by every polling loop in the package.

The server's shutdown watcher, the controller's readiness wait and the
preview poller all poll on a cadence.  Rather than scattering
``time.sleep`` constants through those loops they share this small
abstraction, which keeps the cadence a named, configurable value and
lets tests substitute a fake clock.
"""

from __future__ import annotations

import time
from typing import Callable, Optional


class Ticker:
    """Schedule ticks at a fixed interval without drifting.

    Ticks are not backpressured: if a tick handler overruns, the next
    deadline is simply moved forward to the next multiple of the
    interval instead of firing several ticks back to back.

    Args:
        interval: Seconds between ticks; must be positive.
        clock: Monotonic clock returning seconds.
        sleep: Function used to block in :meth:`wait`.
    """

    def __init__(
        self,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if interval <= 0:
            raise ValueError("Ticker interval must be positive")
        self.interval = float(interval)
        self._clock = clock
        self._sleep = sleep
        self._next = clock() + self.interval

    def due(self) -> bool:
        """Return True (and schedule the next tick) if a tick is due."""
        now = self._clock()
        if now < self._next:
            return False
        self._advance(now)
        return True

    def wait(self) -> None:
        """Block until the next tick is due."""
        remaining = self._next - self._clock()
        if remaining > 0:
            self._sleep(remaining)
        self._advance(self._clock())

    def _advance(self, now: float) -> None:
        self._next += self.interval
        if self._next <= now:
            missed = int((now - self._next) // self.interval) + 1
            self._next += missed * self.interval


def poll_until(
    predicate: Callable[[], bool],
    ticker: Ticker,
    timeout: Optional[float],
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Evaluate ``predicate`` once per tick until it holds or time runs out.

    Returns:
        True if the predicate became true, False on timeout.
    """
    deadline = None if timeout is None else clock() + timeout
    while True:
        if predicate():
            return True
        if deadline is not None and clock() >= deadline:
            return False
        ticker.wait()
