"""Clocks and the timer scheduler driven by the monitoring tick loop."""

import heapq
import itertools
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from .interfaces import Clock
from .logging_utils import get_logger

logger = get_logger(__name__)


class SystemClock(Clock):
    """Clock backed by the host's monotonic and wall clocks."""

    def monotonic(self) -> float:
        return time.monotonic()

    def now(self) -> datetime:
        return datetime.now()


class VirtualClock(Clock):
    """Manually advanced clock for deterministic tests and simulations."""

    def __init__(self, start: datetime | None = None, monotonic_start: float = 0.0) -> None:
        self._wall_start = start or datetime(2024, 1, 1, 12, 0, 0)
        self._monotonic_start = monotonic_start
        self._elapsed = 0.0

    def monotonic(self) -> float:
        return self._monotonic_start + self._elapsed

    def now(self) -> datetime:
        return self._wall_start + timedelta(seconds=self._elapsed)

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("Cannot move a clock backwards")
        self._elapsed += seconds

    def set_wall_time(self, when: datetime) -> None:
        """Jump the wall clock (e.g. to a given hour) without moving the monotonic time."""
        self._wall_start = when - timedelta(seconds=self._elapsed)


@dataclass(order=True)
class TimerHandle:
    """A scheduled callback. Ordered by due time, then scheduling order."""

    due: float
    sequence: int
    callback: Callable[[], None] = field(compare=False)
    started_at: float = field(compare=False, default=0.0)
    cancelled: bool = field(compare=False, default=False)
    fired: bool = field(compare=False, default=False)

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def pending(self) -> bool:
        return not self.cancelled and not self.fired

    def elapsed(self, now: float) -> bool:
        """True once the timer's due time has been reached."""
        return not self.cancelled and now >= self.due


class TimerScheduler:
    """
    Min-heap of due timers fired by an explicit ``run_due`` call.

    Nothing runs on its own: the owner's tick loop calls ``run_due`` with the
    current monotonic time, which keeps every timer deterministic under a
    VirtualClock.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._heap: list[TimerHandle] = []
        self._counter = itertools.count()

    @property
    def clock(self) -> Clock:
        return self._clock

    def call_at(self, due: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(
            due=due,
            sequence=next(self._counter),
            callback=callback,
            started_at=self._clock.monotonic(),
        )
        heapq.heappush(self._heap, handle)
        return handle

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return self.call_at(self._clock.monotonic() + max(0.0, delay), callback)

    def run_due(self, now: float | None = None) -> int:
        """
        Fire every pending timer whose due time is at or before ``now``.

        Args:
            now: Monotonic time to run up to (defaults to the clock's time)

        Returns:
            Number of callbacks fired
        """
        if now is None:
            now = self._clock.monotonic()
        fired = 0
        while self._heap and self._heap[0].due <= now:
            handle = heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            handle.fired = True
            fired += 1
            try:
                handle.callback()
            except Exception as e:
                logger.error(f"Error in timer callback: {e}", exc_info=True)
        return fired

    def cancel_all(self) -> None:
        for handle in self._heap:
            handle.cancel()
        self._heap.clear()

    def pending_count(self) -> int:
        return sum(1 for handle in self._heap if not handle.cancelled)

    def next_due(self) -> float | None:
        live = [handle.due for handle in self._heap if not handle.cancelled]
        return min(live) if live else None
