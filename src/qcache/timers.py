"""Timer schedulers.

Queries never touch the event loop's clock directly; stale, GC and retry
timers all go through a ``Scheduler`` so tests can drive virtual time.
All delays are in milliseconds.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import math
from collections.abc import Callable
from typing import Protocol, runtime_checkable


@runtime_checkable
class TimerHandle(Protocol):
    """A pending timer."""

    def cancel(self) -> None:
        """Stop the timer if it has not fired yet."""
        ...


@runtime_checkable
class Scheduler(Protocol):
    """Timer scheduler interface."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run `callback` once after `delay` milliseconds."""
        ...


class AsyncioScheduler:
    """Wall-clock scheduler backed by the running event loop."""

    def call_later(
        self, delay: float, callback: Callable[[], None]
    ) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(delay, 0) / 1000, callback)


class _ManualHandle:
    __slots__ = ("cancelled", "callback", "when")

    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Virtual-time scheduler. Nothing fires until ``advance`` is called.

    Usage:
        scheduler = ManualScheduler()
        cache = QueryCache(scheduler=scheduler, cache_time=1000)
        ...
        scheduler.advance(1000)  # runs every timer due by then, in order
    """

    def __init__(self) -> None:
        self.now: float = 0
        self._queue: list[tuple[float, int, _ManualHandle]] = []
        self._counter = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualHandle:
        handle = _ManualHandle(self.now + max(delay, 0), callback)
        heapq.heappush(self._queue, (handle.when, next(self._counter), handle))
        return handle

    @property
    def pending(self) -> int:
        """Number of timers that are armed and not cancelled."""
        return sum(1 for _, _, h in self._queue if not h.cancelled)

    def advance(self, delay: float = 0) -> None:
        """Move the clock forward, firing due timers, including ones they arm."""
        target = self.now + delay
        while self._queue and self._queue[0][0] <= target:
            when, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.now = when
            handle.callback()
        if not math.isinf(target):
            self.now = target


__all__ = ["AsyncioScheduler", "ManualScheduler", "Scheduler", "TimerHandle"]
