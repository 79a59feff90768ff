"""Per-query execution locks.

A live tick and a backfill replay for the same query run on different
threads and may reach the executor at the same moment.  When
``serialize_query_runs`` is enabled the executor holds the query's lock for
the whole execution (query, table creation, inserts), so the first run's
``CREATE TABLE`` can never race a second run, and rows from one execution
are never interleaved with another's.

Locks are in-process only; turntable is not a distributed scheduler.

Example:
    >>> locks = QueryLockManager()
    >>> with locks.hold("q1"):
    ...     locks.is_locked("q1")
    True
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from turntable.core.logging import get_logger

log = get_logger(__name__)


class QueryLockManager:
    """One reentrant lock per query name, created on first use."""

    def __init__(self) -> None:
        self._locks: dict[str, threading.RLock] = {}
        self._held: dict[str, int] = {}
        self._guard = threading.Lock()

    def _lock_for(self, name: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, name: str) -> Iterator[None]:
        """Block until the query's lock is free, hold it for the block."""
        lock = self._lock_for(name)
        if not lock.acquire(blocking=False):
            log.debug("query_lock_wait", query=name)
            lock.acquire()
        with self._guard:
            self._held[name] = self._held.get(name, 0) + 1
        try:
            yield
        finally:
            with self._guard:
                remaining = self._held[name] - 1
                if remaining:
                    self._held[name] = remaining
                else:
                    del self._held[name]
            lock.release()

    def is_locked(self, name: str) -> bool:
        with self._guard:
            return name in self._held

    def list_active_locks(self) -> list[str]:
        with self._guard:
            return sorted(self._held)

    def forget(self, name: str) -> None:
        """Drop the lock object for a removed query (no-op while held)."""
        with self._guard:
            if name not in self._held:
                self._locks.pop(name, None)
