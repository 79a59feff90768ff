"""
Persist sinks: pluggable consumers of execution envelopes.

Every successful execution is fanned out to the configured sinks, in
order.  Each sink runs in its own savepoint: a failing sink is rolled
back and logged, and the remaining sinks still receive the envelope.

Architecture:
    ::

        QueryExecutor ── envelope ──► persist_results()
                                          │
                          ┌───────────────┼───────────────┐
                          ▼               ▼               ▼
                     DatabaseSink     MemorySink      (custom)
                     result table     ring buffer

Configuration:
    ``TurntableSettings.persist_sinks`` lists sink names; ``build_sinks``
    turns them into instances.

Tags:
    persistence, sinks, fan-out, plugin, turntable
"""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy.engine import Connection

from turntable.core.errors import ConfigError
from turntable.core.logging import get_logger
from turntable.core.models import QueryDefinition, ResultEnvelope

from .database import DatabaseSink, create_results_table, fetch_series, insert_results
from .memory import BufferLookup, MemorySink
from .protocol import PersistSink

log = get_logger(__name__)


def build_sinks(names: Sequence[str], buffers: BufferLookup) -> list[PersistSink]:
    """Instantiate sinks by configured name.

    Raises:
        ConfigError: for an unknown sink name
    """
    sinks: list[PersistSink] = []
    for name in names:
        if name == DatabaseSink.name:
            sinks.append(DatabaseSink())
        elif name == MemorySink.name:
            sinks.append(MemorySink(buffers))
        else:
            raise ConfigError(f"Unknown persist sink: {name}").with_context(sink=name)
    return sinks


def persist_results(
    sinks: Sequence[PersistSink],
    definition: QueryDefinition,
    envelope: ResultEnvelope,
    conn: Connection,
) -> list[str]:
    """Hand ``envelope`` to every sink in order.

    Each sink runs inside its own savepoint on ``conn``; a sink that raises
    has its partial writes rolled back and later sinks still run.

    Returns:
        Names of the sinks that failed (empty when all succeeded).
    """
    failed: list[str] = []
    for sink in sinks:
        try:
            with conn.begin_nested():
                sink.persist(definition, envelope, conn)
        except Exception:
            log.exception("sink_failed", sink=sink.name, query=definition.name)
            failed.append(sink.name)
    return failed


__all__ = [
    "PersistSink",
    "DatabaseSink",
    "MemorySink",
    "build_sinks",
    "persist_results",
    "create_results_table",
    "insert_results",
    "fetch_series",
]
