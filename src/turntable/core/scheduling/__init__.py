"""
Scheduling for turntable: live timers, backfill replay and per-query locks.

Architecture:
    ::

        Registry.add()
            │
            ├── QueryScheduler.schedule() ─► ScheduleHandle (daemon thread)
            │                                   fires run(occurrence)
            └── BackfillRunner.launch()   ─► daemon thread
                                                run(t) for t in [start, now)

        QueryLockManager serializes runs of the same query when enabled.

Tags:
    scheduling, timers, backfill, turntable
"""

from .backfill import (
    BackfillReport,
    BackfillRunner,
    BackfillStatus,
    occurrences,
    resolve_start,
)
from .lock_manager import QueryLockManager
from .scheduler import QueryScheduler, ScheduleHandle

__all__ = [
    "BackfillReport",
    "BackfillRunner",
    "BackfillStatus",
    "QueryLockManager",
    "QueryScheduler",
    "ScheduleHandle",
    "occurrences",
    "resolve_start",
]
