"""
Cooperative timing primitives for tracking jobs.

``Ticker`` keeps a fixed-rate schedule anchored at the first tick. When a
tick overruns, the deadlines it missed are skipped (and counted) rather
than fired back to back. ``CancellationToken`` lets a caller stop a job
between ticks without interrupting the one in flight.
"""

from __future__ import annotations

import asyncio
import math
import time
from typing import Callable, Optional


class CancellationToken:
    """One-shot cancellation flag that can be awaited."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class Ticker:
    """
    Fixed-rate tick schedule.

    Example:
        >>> ticker = Ticker(interval=60)
        >>> ticker.start()               # first tick is due immediately
        >>> while await ticker.wait(token):
        ...     await do_tick()
        ...     skipped = ticker.advance()
    """

    def __init__(self, interval: float, clock: Callable[[], float] = time.monotonic):
        if interval <= 0:
            raise ValueError("Ticker interval must be positive")
        self.interval = interval
        self._clock = clock
        self._next: Optional[float] = None
        self._last: Optional[float] = None
        self._ticking = False
        self._rescheduled = asyncio.Event()

    @property
    def next_deadline(self) -> Optional[float]:
        return self._next

    def seconds_until_next(self) -> Optional[float]:
        if self._next is None:
            return None
        return max(0.0, self._next - self._clock())

    def start(self) -> None:
        self._next = self._clock()

    def mark_tick(self) -> None:
        """Record that the due tick has started."""
        self._last = self._next
        self._ticking = True

    def advance(self) -> int:
        """
        Move to the next deadline after a tick completes.

        The deadline is measured from the start of the tick that just ran,
        so a ``reschedule`` during that tick is not applied twice.

        Returns:
            Number of deadlines skipped because the tick overran them.
        """
        if self._next is None:
            raise RuntimeError("Ticker not started")

        anchor = self._last if self._ticking else self._next
        self._ticking = False
        self._next = anchor + self.interval
        now = self._clock()
        skipped = 0
        if now > self._next:
            skipped = math.ceil((now - self._next) / self.interval)
            self._next += skipped * self.interval
        return skipped

    def reschedule(self, interval: float) -> None:
        """Change the interval; the next deadline is re-anchored to the last tick."""
        if interval <= 0:
            raise ValueError("Ticker interval must be positive")
        self.interval = interval
        if self._last is not None:
            self._next = self._last + interval
        self._rescheduled.set()

    async def wait(self, token: CancellationToken) -> bool:
        """
        Sleep until the next deadline.

        Returns:
            True when the tick is due, False if the token was cancelled first.
        """
        if self._next is None:
            self.start()

        while not token.cancelled:
            delay = self._next - self._clock()
            if delay <= 0:
                return True

            self._rescheduled.clear()
            waiters = [
                asyncio.create_task(token.wait()),
                asyncio.create_task(self._rescheduled.wait()),
            ]
            try:
                await asyncio.wait(waiters, timeout=delay, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for waiter in waiters:
                    waiter.cancel()
        return False


__all__ = ["CancellationToken", "Ticker"]
