"""Thread-per-query scheduler.

Every scheduled query gets its own daemon thread.  The thread sleeps until
the next occurrence of the query's ``PeriodSpec``, fires the executable
with that occurrence, and goes back to sleep.  A slow query only delays
its own schedule; other queries keep firing.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULE HANDLE LOOP                                                         │
│                                                                               │
│   schedule(name, period, fn)                                                  │
│      │                                                                        │
│      ▼                                                                        │
│   ┌─────────────────────────────────────────────────────────┐                │
│   │              Daemon Thread (one per query)              │                │
│   │                                                         │                │
│   │   while True:                                           │                │
│   │       due = period.next_after(clock())                  │                │
│   │       if stop_event.wait(due - clock()): break          │                │
│   │       with lock:                                        │                │
│   │           if cancelled: break    ◄──── cancel() holds   │                │
│   │           fire_count += 1              the same lock    │                │
│   │       fn(due)                                           │                │
│   └─────────────────────────────────────────────────────────┘                │
│                                                                               │
│   handle.cancel()  →  cancelled = True (under lock), stop_event.set()         │
│                                                                               │
│  After cancel() returns no new dispatch can start.  A dispatch that was       │
│  already running is not interrupted.                                          │
└──────────────────────────────────────────────────────────────────────────────┘

Ticks that fall due while a previous execution is still running are
skipped: the next occurrence is always computed from the current clock.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any

from turntable.core.logging import get_logger
from turntable.core.period import PeriodSpec
from turntable.core.timestamps import utc_now

log = get_logger(__name__)

Clock = Callable[[], datetime]
Fire = Callable[[datetime], Any]


class ScheduleHandle:
    """A running schedule for one query. Cancel it to stop future fires."""

    def __init__(
        self,
        name: str,
        period: PeriodSpec,
        fn: Fire,
        clock: Clock = utc_now,
    ) -> None:
        self.name = name
        self.period = period
        self._fn = fn
        self._clock = clock
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._cancelled = False
        self._fire_count = 0
        self._last_fire: datetime | None = None
        self._next_fire: datetime | None = None
        self._thread = threading.Thread(
            target=self._loop, daemon=True, name=f"turntable-{name}"
        )

    def start(self) -> ScheduleHandle:
        self._thread.start()
        return self

    def _loop(self) -> None:
        log.debug("schedule_started", query=self.name, period=self.period.to_cron())
        while True:
            due = self.period.next_after(self._clock())
            with self._lock:
                if self._cancelled:
                    break
                self._next_fire = due
            delay = max((due - self._clock()).total_seconds(), 0.0)
            if self._stop_event.wait(delay):
                break

            with self._lock:
                if self._cancelled:
                    break
                self._fire_count += 1
                self._last_fire = due

            try:
                self._fn(due)
            except Exception:
                log.exception("scheduled_fire_failed", query=self.name, time=due.isoformat())

        log.debug("schedule_stopped", query=self.name, fires=self._fire_count)

    def cancel(self) -> bool:
        """Stop future fires. Returns False if already cancelled."""
        with self._lock:
            if self._cancelled:
                return False
            self._cancelled = True
            self._next_fire = None
        self._stop_event.set()
        log.info("schedule_cancelled", query=self.name)
        return True

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)

    @property
    def is_active(self) -> bool:
        with self._lock:
            return not self._cancelled and self._thread.is_alive()

    @property
    def fire_count(self) -> int:
        with self._lock:
            return self._fire_count

    @property
    def next_fire(self) -> datetime | None:
        with self._lock:
            return self._next_fire

    def health(self) -> dict[str, Any]:
        """Return handle health status."""
        with self._lock:
            return {
                "healthy": not self._cancelled and self._thread.is_alive(),
                "query": self.name,
                "period": self.period.to_cron(),
                "fire_count": self._fire_count,
                "last_fire": self._last_fire.isoformat() if self._last_fire else None,
                "next_fire": self._next_fire.isoformat() if self._next_fire else None,
            }


class QueryScheduler:
    """Issues one ``ScheduleHandle`` per scheduled query.

    Example:
        >>> scheduler = QueryScheduler()
        >>> handle = scheduler.schedule("q1", PeriodSpec.parse({"minute": 0}), run)
        >>> handle.cancel()
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock

    def schedule(
        self,
        name: str,
        period: PeriodSpec,
        fn: Fire,
        start: bool = True,
    ) -> ScheduleHandle:
        """Fire ``fn(occurrence)`` at every occurrence of ``period``.

        An all-wildcard period fires every minute.  With ``start=False``
        the handle is returned idle; call ``handle.start()`` to begin.
        """
        handle = ScheduleHandle(name, period, fn, clock=self._clock)
        return handle.start() if start else handle
