"""In-memory sink: keep the most recent envelopes on the registry entry."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable

from sqlalchemy.engine import Connection

from turntable.core.models import QueryDefinition, ResultEnvelope

BufferLookup = Callable[[str], "deque[ResultEnvelope] | None"]


class MemorySink:
    """Append each envelope to the query's bounded ring buffer.

    The buffer belongs to the registry entry; ``lookup`` resolves it by
    query name.  A query removed while an execution was in flight has no
    buffer any more and the envelope is dropped.  ``deque.append`` is
    atomic, so concurrent live and backfill runs need no extra locking.
    """

    name = "memory"

    def __init__(self, lookup: BufferLookup) -> None:
        self._lookup = lookup

    def persist(
        self,
        definition: QueryDefinition,
        envelope: ResultEnvelope,
        conn: Connection,
    ) -> None:
        buffer = self._lookup(definition.name)
        if buffer is not None:
            buffer.append(envelope)
