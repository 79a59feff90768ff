"""
Query executor: run one query, time it, and fan the result out to sinks.

Manifesto:
    A scheduled query fails at 3am on a timer thread.  The failure must be
    logged with its stack trace and must not take the schedule down with
    it.  The executor is therefore the single boundary where exceptions
    stop: every execution returns a ``Result``, never raises.

Architecture:
    ::

        executor.build(definition) ──► run(time=None) ──► Result[ResultEnvelope]
                                          │
                                          ▼
        ┌──────────────────────────────────────────────────────────┐
        │ hold per-query lock (when serialize_query_runs)          │
        │ engine.begin() for definition.db                          │
        │   start = now                                             │
        │   rows  = query with `time` bound to every `?`            │
        │   stop  = now                                             │
        │   envelope = (rows, start, stop, time, elapsed_ms)        │
        │   persist_results(sinks, ...)   savepoint per sink        │
        │ commit                                                    │
        └──────────────────────────────────────────────────────────┘
              │ any exception
              ▼
        log.exception("query_failed") ─► Err(ExecutionError)

        a sink failed ─► sinks that succeeded are committed ─► Err(PersistError)

Examples:
    >>> executor = QueryExecutor(catalog, sinks=[DatabaseSink()])
    >>> run = executor.build(definition)
    >>> result = run()                      # bound to "now"
    >>> result = run(datetime(2026, 1, 1, tzinfo=UTC))
    >>> print(executor.stage("metrics", "SELECT 1 AS v"))
    {'v': 1}

Tags:
    executor, sql, timing, result-envelope, turntable

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import traceback
from collections.abc import Callable, Sequence
from contextlib import nullcontext
from datetime import datetime
from pprint import pformat
from typing import Any

from sqlalchemy.engine import Connection

from turntable.core.catalog import DatabaseCatalog
from turntable.core.errors import ExecutionError, PersistError, StagingError
from turntable.core.logging import LogContext, get_logger
from turntable.core.models import QueryDefinition, ResultEnvelope
from turntable.core.params import bind_time
from turntable.core.result import Err, Ok, Result
from turntable.core.scheduling.lock_manager import QueryLockManager
from turntable.core.sinks import PersistSink, persist_results
from turntable.core.timestamps import ensure_utc, utc_now

log = get_logger(__name__)

QueryRunner = Callable[..., Result[ResultEnvelope]]


def run_query(conn: Connection, sql: str, time: datetime) -> list[dict[str, Any]]:
    """Execute ``sql`` with ``time`` bound to every placeholder; rows as dicts."""
    clause, params = bind_time(sql, time)
    result = conn.execute(clause, params)
    if not result.returns_rows:
        return []
    return [dict(row._mapping) for row in result]


class QueryExecutor:
    """Builds and runs executables for registered queries."""

    def __init__(
        self,
        catalog: DatabaseCatalog,
        sinks: Sequence[PersistSink] = (),
        locks: QueryLockManager | None = None,
    ) -> None:
        self.catalog = catalog
        self.sinks = list(sinks)
        self.locks = locks

    def build(self, definition: QueryDefinition) -> QueryRunner:
        """Return ``run(time=None)`` bound to ``definition``."""

        def run(time: datetime | None = None) -> Result[ResultEnvelope]:
            return self.execute(definition, time)

        run.__name__ = f"run_{definition.name}"
        return run

    def execute(
        self,
        definition: QueryDefinition,
        time: datetime | None = None,
    ) -> Result[ResultEnvelope]:
        """Run ``definition`` once. Never raises."""
        query_time = ensure_utc(time) if time is not None else utc_now()
        guard = self.locks.hold(definition.name) if self.locks else nullcontext()

        with guard, LogContext(query=definition.name, db=definition.db):
            try:
                engine = self.catalog.engine(definition.db)
                with engine.begin() as conn:
                    start = utc_now()
                    rows = run_query(conn, definition.query, query_time)
                    stop = utc_now()
                    envelope = ResultEnvelope.capture(rows, start, stop, query_time)
                    failed = persist_results(self.sinks, definition, envelope, conn)
            except Exception as e:
                log.exception("query_failed", time=query_time.isoformat())
                error = ExecutionError(f"Query {definition.name} failed: {e}", cause=e)
                return Err(
                    error.with_context(
                        query=definition.name,
                        db=definition.db,
                        time=query_time.isoformat(),
                    )
                )

            log.info(
                "query_executed",
                rows=envelope.row_count,
                elapsed_ms=envelope.elapsed_ms,
                time=query_time.isoformat(),
                failed_sinks=failed or None,
            )
            if failed:
                return Err(
                    PersistError(failed).with_context(
                        query=definition.name,
                        db=definition.db,
                        time=query_time.isoformat(),
                    )
                )
            return Ok(envelope)

    def stage(self, db: str, sql: str) -> str:
        """Run ``sql`` once the way a scheduled run would, without persisting.

        Returns a pretty-printed dump of the rows, or the formatted
        traceback when anything fails.  The transaction is rolled back.
        """
        try:
            with self.catalog.engine(db).connect() as conn:
                rows = run_query(conn, sql, utc_now())
        except Exception as e:
            error = StagingError(f"Staging failed: {e}", cause=e).with_context(db=db)
            log.warning("stage_failed", **error.to_dict())
            return traceback.format_exc()
        return "".join(pformat(row) + "\n" for row in rows)
