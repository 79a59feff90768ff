"""
Backfill replay for newly registered queries.

When a query is added with a backfill start time, every occurrence of its
period between that start and "now" is replayed through the executor, so
the result table holds history from day one instead of from the moment
the query was registered.

Manifesto:
    Replay runs on its own thread, independent of the live schedule: a
    month of hourly history must not hold up the next live tick, and a
    live tick must not stall the replay.  One bad occurrence (a gap in
    the source table, a transient connection error) is recorded and
    skipped; it never aborts the rest of the replay.

Architecture:
    ::

        BackfillRunner.launch(name, period, start, fn)
              │  daemon thread
              ▼
        occurrences(period, start, now)   [start, now), oldest first
              │
              ├── fn(t0)  Ok   → completed
              ├── fn(t1)  Err  → failed (logged, replay continues)
              └── fn(t2)  Ok   → completed
                    │
                    ▼
        BackfillReport  status: COMPLETED (FAILED if any occurrence failed)

Examples:
    >>> period = PeriodSpec.parse({"minute": 0})
    >>> start = datetime(2026, 1, 1, tzinfo=UTC)
    >>> [t.hour for t in occurrences(period, start, start + timedelta(hours=3))]
    [0, 1, 2]

Tags:
    backfill, replay, scheduling, turntable

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from turntable.core.errors import BackfillError
from turntable.core.logging import get_logger
from turntable.core.period import PeriodSpec
from turntable.core.result import Err
from turntable.core.timestamps import ensure_utc, from_epoch_seconds, utc_now

log = get_logger(__name__)


class BackfillStatus(str, Enum):
    """Lifecycle status of a backfill replay."""

    PLANNED = "planned"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class BackfillReport:
    """Progress of one replay."""

    query: str
    start: datetime
    end: datetime
    status: BackfillStatus = BackfillStatus.PLANNED
    completed: int = 0
    failed_times: list[datetime] = field(default_factory=list)
    first: datetime | None = None
    last: datetime | None = None

    @property
    def failed(self) -> int:
        return len(self.failed_times)

    @property
    def total(self) -> int:
        return self.completed + self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "status": self.status.value,
            "completed": self.completed,
            "failed": self.failed,
            "first": self.first.isoformat() if self.first else None,
            "last": self.last.isoformat() if self.last else None,
        }


def resolve_start(value: datetime | int | float | str) -> datetime:
    """Accept epoch seconds (number or numeric text) or a datetime.

    Raises:
        BackfillError: if the value is not a usable start time
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, bool):
        raise BackfillError(f"Invalid backfill start: {value!r}")
    if isinstance(value, (int, float)):
        return from_epoch_seconds(value)
    try:
        return from_epoch_seconds(int(str(value).strip()))
    except (TypeError, ValueError, OverflowError) as e:
        raise BackfillError(f"Invalid backfill start: {value!r}", cause=e) from e


def occurrences(period: PeriodSpec, start: datetime, end: datetime) -> Iterator[datetime]:
    """Every occurrence of ``period`` in ``[start, end)``, strictly increasing."""
    end = ensure_utc(end)
    for t in period.times_for(start):
        if t >= end:
            return
        yield t


class BackfillRunner:
    """Replays an executable over historical occurrences."""

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock

    def run(
        self,
        name: str,
        period: PeriodSpec,
        start: datetime | int | float | str,
        fn: Callable[[datetime], Any],
        end: datetime | None = None,
    ) -> BackfillReport:
        """Invoke ``fn`` once per occurrence, sequentially, oldest first.

        ``end`` defaults to the clock at invocation time.  An occurrence
        whose ``fn`` returns ``Err`` or raises is counted as failed.
        """
        report = BackfillReport(
            query=name,
            start=resolve_start(start),
            end=ensure_utc(end) if end is not None else self._clock(),
        )
        report.status = BackfillStatus.RUNNING
        log.info("backfill_started", query=name, start=report.start.isoformat(),
                 end=report.end.isoformat())

        for t in occurrences(period, report.start, report.end):
            if report.first is None:
                report.first = t
            report.last = t
            try:
                outcome = fn(t)
            except Exception:
                log.exception("backfill_occurrence_failed", query=name, time=t.isoformat())
                report.failed_times.append(t)
                continue
            if isinstance(outcome, Err):
                report.failed_times.append(t)
            else:
                report.completed += 1

        report.status = BackfillStatus.FAILED if report.failed else BackfillStatus.COMPLETED
        log.info("backfill_finished", **report.to_dict())
        return report

    def launch(
        self,
        name: str,
        period: PeriodSpec,
        start: datetime | int | float | str,
        fn: Callable[[datetime], Any],
        end: datetime | None = None,
    ) -> threading.Thread:
        """Run the replay on a daemon thread and return the thread.

        The start time is validated before the thread starts.
        """
        resolved = resolve_start(start)
        end = ensure_utc(end) if end is not None else self._clock()
        thread = threading.Thread(
            target=self.run,
            args=(name, period, resolved, fn, end),
            daemon=True,
            name=f"turntable-backfill-{name}",
        )
        thread.start()
        return thread
