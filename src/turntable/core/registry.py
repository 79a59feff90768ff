"""
Query registry: the lifecycle owner of every scheduled query.

The registry maps query names to ``ScheduledEntry`` objects (definition,
schedule handle, recent results).  It is the only shared mutable state in
the process and the only component that starts and cancels schedules.

Manifesto:
    Readers (``get``, ``list``, the render engine, the memory sink) run on
    request and timer threads while operators add and remove queries.
    The map is therefore never mutated in place: every change builds a
    new read-only mapping and swaps it in under the write lock, so a
    reader sees either the old map or the new one, never half of each.

Architecture:
    ::

        add(name, db, query, period, added, backfill_from)
          │  under write lock
          ├── name taken?            → Err(ConflictError), nothing changes
          ├── PeriodSpec.parse       → Err(InvalidPeriodError)
          ├── resolve_start          → Err(BackfillError)
          ├── snapshot.write(map + new)
          ├── publish map + new entry
          ├── handle.start()          live schedule
          └── backfill.launch()       optional replay thread
                ▼
        Ok(QueryDefinition)

        remove(name)
          │  under write lock
          ├── handle.cancel()        no fire starts after this returns
          ├── publish map − entry
          └── snapshot.write(map − entry)

Examples:
    >>> registry = QueryRegistry(settings)
    >>> registry.add("q1", "d1", "SELECT 1 AS v", {}).unwrap().db
    'd1'
    >>> registry.add("q1", "d1", "SELECT 2 AS v", {}).is_err()
    True
    >>> registry.remove("q1")
    True

Tags:
    registry, lifecycle, scheduling, snapshot, concurrency, turntable

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any

from turntable.core.catalog import DatabaseCatalog
from turntable.core.errors import ConflictError, TurntableError
from turntable.core.executor import QueryExecutor
from turntable.core.logging import get_logger
from turntable.core.models import QueryDefinition, ResultEnvelope, parse_added
from turntable.core.period import PeriodSpec
from turntable.core.result import Err, Ok, Result
from turntable.core.scheduling import (
    BackfillRunner,
    QueryLockManager,
    QueryScheduler,
    ScheduleHandle,
    resolve_start,
)
from turntable.core.settings import TurntableSettings
from turntable.core.sinks import build_sinks
from turntable.core.snapshot import SnapshotStore

log = get_logger(__name__)


@dataclass
class ScheduledEntry:
    """A registered query with its live schedule and recent results."""

    definition: QueryDefinition
    handle: ScheduleHandle
    recent_results: deque[ResultEnvelope] = field(default_factory=deque)


@dataclass(frozen=True, slots=True)
class QueryListing:
    """Everything ``list()`` reports."""

    definitions: tuple[QueryDefinition, ...]
    databases: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "queries": [d.to_dict() for d in self.definitions],
            "dbs": list(self.databases),
        }


class QueryRegistry:
    """Thread-safe owner of all scheduled queries."""

    def __init__(
        self,
        settings: TurntableSettings,
        *,
        catalog: DatabaseCatalog | None = None,
        scheduler: QueryScheduler | None = None,
        backfill: BackfillRunner | None = None,
        store: SnapshotStore | None = None,
        executor: QueryExecutor | None = None,
    ) -> None:
        self.settings = settings
        self.catalog = catalog or DatabaseCatalog(settings)
        self.scheduler = scheduler or QueryScheduler()
        self.backfill = backfill or BackfillRunner()
        self.store = store or SnapshotStore(settings.query_file)
        self.executor = executor or QueryExecutor(
            self.catalog,
            sinks=build_sinks(settings.persist_sinks, self._buffer_for),
            locks=QueryLockManager() if settings.serialize_query_runs else None,
        )
        self._entries: Mapping[str, ScheduledEntry] = MappingProxyType({})
        self._write_lock = threading.RLock()

    # ── Reads (lock-free against the published map) ──────────────

    def _buffer_for(self, name: str) -> deque[ResultEnvelope] | None:
        entry = self._entries.get(name)
        return entry.recent_results if entry is not None else None

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def names(self) -> list[str]:
        return list(self._entries)

    def get(self, name: str) -> QueryDefinition | None:
        """The definition registered under ``name``, or None."""
        entry = self._entries.get(name)
        return entry.definition if entry is not None else None

    def recent_results(self, name: str) -> list[ResultEnvelope]:
        """Buffered envelopes for ``name``, oldest first."""
        entry = self._entries.get(name)
        return list(entry.recent_results) if entry is not None else []

    def list(self) -> QueryListing:
        entries = self._entries
        return QueryListing(
            definitions=tuple(e.definition for e in entries.values()),
            databases=tuple(self.catalog.known_databases()),
        )

    def health(self) -> dict[str, Any]:
        return {name: e.handle.health() for name, e in self._entries.items()}

    # ── Mutations ────────────────────────────────────────────────

    def _publish(self, entries: dict[str, ScheduledEntry]) -> None:
        self._entries = MappingProxyType(entries)

    def _write_snapshot(self, entries: Mapping[str, ScheduledEntry]) -> None:
        self.store.write(e.definition for e in entries.values())

    def add(
        self,
        name: str,
        db: str,
        query: str,
        period: Any = None,
        added: datetime | str | int | float | None = None,
        backfill_from: datetime | int | float | str | None = None,
        *,
        persist: bool = True,
    ) -> Result[QueryDefinition]:
        """Register and schedule a query.

        Returns:
            Ok(definition), or Err(ConflictError) when ``name`` is taken.
            Invalid periods, backfill starts or an unwritable snapshot are
            also returned as Err; in every Err case the registry is unchanged.
        """
        with self._write_lock:
            if name in self._entries:
                log.info("query_add_conflict", query=name)
                return Err(ConflictError(name))

            try:
                definition = QueryDefinition(
                    name=name,
                    db=db,
                    query=query,
                    period=PeriodSpec.parse(period),
                    added=parse_added(added),
                )
                backfill_start = (
                    resolve_start(backfill_from)
                    if backfill_from not in (None, "")
                    else None
                )
            except TurntableError as e:
                log.warning("query_add_rejected", query=name, **e.to_dict())
                return Err(e.with_context(query=name))

            run = self.executor.build(definition)
            handle = self.scheduler.schedule(name, definition.period, run, start=False)
            entry = ScheduledEntry(
                definition=definition,
                handle=handle,
                recent_results=deque(maxlen=self.settings.recent_results_capacity),
            )
            entries = {**self._entries, name: entry}

            if persist:
                try:
                    self._write_snapshot(entries)
                except TurntableError as e:
                    log.error("query_add_snapshot_failed", query=name, **e.to_dict())
                    return Err(e.with_context(query=name))

            self._publish(entries)
            handle.start()

        log.info(
            "query_added",
            query=name,
            db=db,
            period=definition.period.to_cron(),
            backfill_from=backfill_start.isoformat() if backfill_start else None,
        )
        if backfill_start is not None:
            self.backfill.launch(name, definition.period, backfill_start, run)
        return Ok(definition)

    def remove(self, name: str) -> bool:
        """Cancel and drop ``name``. Returns False if it was not registered.

        Raises:
            SnapshotError: if the updated snapshot cannot be written; the
                query is cancelled and removed regardless.
        """
        with self._write_lock:
            entry = self._entries.get(name)
            if entry is None:
                return False
            entry.handle.cancel()
            entries = {k: v for k, v in self._entries.items() if k != name}
            self._publish(entries)
            self._write_snapshot(entries)

        if self.executor.locks is not None:
            self.executor.locks.forget(name)
        log.info("query_removed", query=name)
        return True

    def restore(self, snapshot: list[Mapping[str, Any]] | None = None) -> int:
        """Re-add every persisted definition without backfill.

        ``snapshot`` defaults to the store's contents.  Definitions that
        cannot be added are logged and skipped.  Returns the count restored.
        """
        raw = self.store.read() if snapshot is None else snapshot
        restored = 0
        for data in raw:
            name = data.get("name")
            if not name or "db" not in data or "query" not in data:
                log.warning("query_restore_skipped", query=name, reason="incomplete definition")
                continue
            result = self.add(
                name,
                data["db"],
                data["query"],
                data.get("period"),
                added=data.get("added"),
                persist=False,
            )
            match result:
                case Ok():
                    restored += 1
                case Err(error):
                    log.warning("query_restore_skipped", query=name, reason=str(error))
        log.info("registry_restored", queries=restored, path=str(self.store.path))
        return restored

    def shutdown(self) -> None:
        """Cancel every schedule; the snapshot is left as is."""
        with self._write_lock:
            entries = self._entries
        for entry in entries.values():
            entry.handle.cancel()
        log.info("registry_shutdown", queries=len(entries))
