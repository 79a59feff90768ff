"""
Render engine: turn stored result tables into time series.

A render request names one or more targets, ``"<queryName>.<field>"``,
and a time window.  Each target resolves to a registered query (exact
name, or a segment wildcard such as ``web.*.hits``), the field is read
from the query's result table for every run whose ``_start`` falls in
the window, and each row becomes a ``(value, timestamp_ms)`` datapoint.

Architecture:
    ::

        render(["q1.v", "web.*.hits"], from_=-3600, until=None)
              │
              ▼
        resolve_window()        until → now, from → until − 3600
              │
              ▼
        parse_target()          ("q1", "v"), ("web.*", "hits")
              │
              ▼
        match_queries()         exact lookup, or segment-wise fnmatch
              │
              ▼
        fetch_series()          SELECT "v" AS value, _time ... ORDER BY _start
              │
              ▼
        [Series(target, datapoints)]   or None when nothing matched any row

Time window:
    ``until`` defaults to now and ``from`` to ``until`` minus one day.  A
    negative value is an offset: ``from=-3600`` means one hour before
    ``until``; ``until=-60`` means one minute before now.

Examples:
    >>> parse_target("web.frontend.hits")
    Target(query='web.frontend', field='hits')
    >>> resolve_window(-3600, None, now=1_700_000_000)
    (1699996400, 1700000000)

Tags:
    render, time-series, graphite, targets, turntable

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from turntable.core.catalog import DatabaseCatalog
from turntable.core.errors import InvalidTargetError, TurntableError
from turntable.core.logging import get_logger
from turntable.core.models import QueryDefinition
from turntable.core.sinks.database import fetch_series, quote_identifier
from turntable.core.timestamps import from_epoch_seconds, to_epoch_seconds, utc_now

log = get_logger(__name__)

ONE_DAY = 24 * 60 * 60

_SEPARATORS = re.compile(r"[.:/]")
_WILDCARD = re.compile(r"[*?\[]")


@dataclass(frozen=True, slots=True)
class Target:
    """A parsed render target."""

    query: str
    field: str

    @property
    def is_pattern(self) -> bool:
        return bool(_WILDCARD.search(self.query))


@dataclass
class Series:
    """One rendered series."""

    target: str
    datapoints: list[tuple[Any, int]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"target": self.target, "datapoints": [list(p) for p in self.datapoints]}


def parse_target(target: str) -> Target:
    """Split ``target`` on its last ``.``, ``:`` or ``/`` separator.

    Raises:
        InvalidTargetError: if there is no separator, either side is empty,
            or the field is not a plain identifier
    """
    matches = list(_SEPARATORS.finditer(target))
    if not matches:
        raise InvalidTargetError(
            f"Target needs a <query>.<field> form: {target!r}", field="target", value=target
        )
    cut = matches[-1].start()
    query, field_name = target[:cut], target[cut + 1:]
    if not query or not field_name:
        raise InvalidTargetError(f"Incomplete target: {target!r}", field="target", value=target)
    quote_identifier(field_name)
    return Target(query=query, field=field_name)


def absolute_time(t: int, reference: int) -> int:
    """Negative ``t`` is an offset from ``reference``."""
    return reference + t if t < 0 else t


def resolve_window(
    from_: int | None,
    until: int | None,
    now: int,
) -> tuple[int, int]:
    """Resolve the request window to absolute epoch seconds."""
    until = now if until is None else absolute_time(until, now)
    from_ = until - ONE_DAY if from_ is None else absolute_time(from_, until)
    return from_, until


def _segments_match(pattern: str, name: str) -> bool:
    pattern_parts = pattern.split(".")
    name_parts = name.split(".")
    if len(pattern_parts) != len(name_parts):
        return False
    return all(fnmatchcase(n, p) for p, n in zip(pattern_parts, name_parts))


def match_queries(target: Target, names: Iterable[str]) -> list[str]:
    """Registered query names ``target`` refers to.

    A plain query part is an exact lookup; a query part containing
    ``*``, ``?`` or ``[`` is matched segment by segment (split on ``.``)
    against every name with the same number of segments.
    """
    if not target.is_pattern:
        return [target.query] if target.query in set(names) else []
    return sorted(n for n in names if _segments_match(target.query, n))


class RenderEngine:
    """Resolves targets against a registry and reads their series."""

    def __init__(
        self,
        lookup: Callable[[str], QueryDefinition | None],
        names: Callable[[], Iterable[str]],
        catalog: DatabaseCatalog,
        clock: Callable[[], Any] = utc_now,
    ) -> None:
        self._lookup = lookup
        self._names = names
        self.catalog = catalog
        self._clock = clock

    @classmethod
    def for_registry(cls, registry: Any) -> RenderEngine:
        return cls(registry.get, registry.names, registry.catalog)

    def fetch(self, definition: QueryDefinition, field_name: str, from_: int, until: int
              ) -> list[tuple[Any, int]]:
        """Datapoints for one query/field; failures yield ``[]``."""
        try:
            with self.catalog.engine(definition.db).connect() as conn:
                return fetch_series(
                    conn,
                    definition.name,
                    field_name,
                    from_epoch_seconds(from_),
                    from_epoch_seconds(until),
                )
        except (SQLAlchemyError, TurntableError) as e:
            log.warning(
                "render_fetch_failed",
                query=definition.name,
                field=field_name,
                error=str(e),
            )
            return []

    def render(
        self,
        targets: Sequence[str],
        from_: int | None = None,
        until: int | None = None,
    ) -> list[Series] | None:
        """Series for every resolvable target.

        Unknown query names contribute nothing.  Returns None when the
        whole request produced zero datapoints.

        Raises:
            InvalidTargetError: if a target cannot be parsed
        """
        from_, until = resolve_window(from_, until, to_epoch_seconds(self._clock()))
        parsed = [(raw, parse_target(raw)) for raw in targets]

        series: list[Series] = []
        total = 0
        names = list(self._names())
        for raw, target in parsed:
            for name in match_queries(target, names):
                definition = self._lookup(name)
                if definition is None:
                    continue
                points = self.fetch(definition, target.field, from_, until)
                label = raw if not target.is_pattern else f"{name}.{target.field}"
                series.append(Series(target=label, datapoints=points))
                total += len(points)

        log.debug("render", targets=len(parsed), series=len(series), points=total,
                  window=(from_, until))
        return series if total else None
