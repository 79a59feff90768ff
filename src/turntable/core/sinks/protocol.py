"""Persist sink protocol."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from sqlalchemy.engine import Connection

from turntable.core.models import QueryDefinition, ResultEnvelope


@runtime_checkable
class PersistSink(Protocol):
    """A pluggable consumer of execution envelopes.

    ``persist`` is called once per successful execution, inside the same
    database connection (and transaction) the query ran on.  Sinks must be
    append-only: a live tick and a backfill replay for the same query can
    reach a sink at overlapping times.

    Implementations:
        - DatabaseSink: one result table per query
        - MemorySink: bounded ring buffer on the registry entry
    """

    name: str

    def persist(
        self,
        definition: QueryDefinition,
        envelope: ResultEnvelope,
        conn: Connection,
    ) -> None: ...
