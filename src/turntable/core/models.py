"""
Core data model: query definitions and result envelopes.

Both types are frozen dataclasses.  A ``QueryDefinition`` is what an
operator registers and what the registry snapshot stores; a
``ResultEnvelope`` is produced once per execution and handed to every
persist sink.

Examples:
    >>> from turntable.core.period import PeriodSpec
    >>> d = QueryDefinition(name="q1", db="d1", query="SELECT 1 AS v",
    ...                     period=PeriodSpec(), added=utc_now())
    >>> QueryDefinition.from_dict(d.to_dict()) == d
    True

Tags:
    models, dataclass, envelope, turntable
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from turntable.core.period import PeriodSpec
from turntable.core.timestamps import (
    elapsed_millis,
    ensure_utc,
    from_epoch_seconds,
    from_iso8601,
    to_iso8601,
    utc_now,
)


@dataclass(frozen=True, slots=True)
class QueryDefinition:
    """A registered, scheduled query. Immutable once created."""

    name: str
    db: str
    query: str
    period: PeriodSpec = field(default_factory=PeriodSpec)
    added: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "db": self.db,
            "query": self.query,
            "period": self.period.to_dict(),
            "added": to_iso8601(self.added),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> QueryDefinition:
        return cls(
            name=data["name"],
            db=data["db"],
            query=data["query"],
            period=PeriodSpec.parse(data.get("period")),
            added=parse_added(data.get("added")),
        )


def parse_added(value: Any) -> datetime:
    """Accept a datetime, ISO-8601 text or epoch seconds; default now."""
    if value is None or value == "":
        return utc_now()
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        return from_epoch_seconds(value)
    return from_iso8601(str(value))


@dataclass(frozen=True, slots=True)
class ResultEnvelope:
    """The captured result of one query execution.

    ``query_time`` is the timestamp bound to the query's placeholders (the
    scheduled occurrence, or the replayed one during backfill); ``start``
    and ``stop`` are wall-clock times around execution.
    """

    rows: tuple[dict[str, Any], ...]
    start: datetime
    stop: datetime
    query_time: datetime
    elapsed_ms: int

    @classmethod
    def capture(
        cls,
        rows: list[dict[str, Any]],
        start: datetime,
        stop: datetime,
        query_time: datetime,
    ) -> ResultEnvelope:
        # wall clock may step backwards between the two reads
        stop = max(stop, start)
        return cls(
            rows=tuple(rows),
            start=start,
            stop=stop,
            query_time=query_time,
            elapsed_ms=elapsed_millis(start, stop),
        )

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows": [dict(r) for r in self.rows],
            "start": to_iso8601(self.start),
            "stop": to_iso8601(self.stop),
            "time": to_iso8601(self.query_time),
            "elapsed": self.elapsed_ms,
        }
