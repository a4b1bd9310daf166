# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Cancellable scheduled tasks for the engine's cooperative timer model.

Everything in the engine runs on one thread. Future work (the next highlight
transition, the stuck-seek watchdog, the simulated media clock) is scheduled
through a Clock, which hands back a handle that can be cancelled.

AsyncioClock runs on the asyncio event loop. VirtualClock is a manual clock
that only moves when advance() is called, for offline simulation and tests.
"""

import asyncio
import heapq
import itertools
import logging
import time
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    """A scheduled callback that can be cancelled before it fires."""

    def cancel(self) -> None:
        """Prevent the callback from running."""


class Clock(Protocol):
    """Time source and timer factory."""

    def now(self) -> float:
        """Current time in seconds (monotonic)."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run callback after delay seconds."""


class AsyncioClock:
    """Clock backed by an asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop: asyncio.AbstractEventLoop | None = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        """The loop timers are scheduled on (the running loop by default)."""
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(max(delay, 0.0), callback)


class VirtualTimer:
    """Timer scheduled on a VirtualClock."""

    def __init__(self, clock: 'VirtualClock', due: float, callback: Callable[[], None]) -> None:
        self.clock = clock
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        if self.cancelled or self.fired:
            return
        self.cancelled = True
        self.clock.cancelled_count += 1


class VirtualClock:
    """
    Manually advanced clock.

    Timers fire in due-time order (ties in scheduling order) as advance()
    moves time forward. Timers scheduled by a firing callback run in the same
    advance() call if they fall due before its target time.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now: float = start
        self._queue: list[tuple[float, int, VirtualTimer]] = []
        self._sequence = itertools.count()
        self.cancelled_count: int = 0
        self.fired_count: int = 0

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> VirtualTimer:
        timer = VirtualTimer(self, self._now + max(delay, 0.0), callback)
        heapq.heappush(self._queue, (timer.due, next(self._sequence), timer))
        return timer

    @property
    def pending(self) -> list[VirtualTimer]:
        """Timers still waiting to fire, in due order."""
        return [t for _, _, t in sorted(self._queue) if not t.cancelled]

    def advance(self, seconds: float) -> None:
        """Move time forward, firing every timer that falls due."""
        self.advance_to(self._now + seconds)

    def advance_to(self, target: float) -> None:
        """Move time forward to an absolute point, firing due timers on the way."""
        while self._queue and self._queue[0][0] <= target:
            due, _, timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._now = max(self._now, due)
            timer.fired = True
            self.fired_count += 1
            timer.callback()
        self._now = max(self._now, target)

    def run_until_idle(self, limit: float = 3600.0) -> None:
        """Fire timers until none remain (bounded by limit seconds of virtual time)."""
        horizon = self._now + limit
        while True:
            live = [entry for entry in self._queue if not entry[2].cancelled]
            if not live:
                return
            next_due = min(live)[0]
            if next_due > horizon:
                logger.warning("VirtualClock stopped at horizon with %d timers pending", len(live))
                return
            self.advance_to(next_due)
