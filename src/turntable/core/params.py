"""
Positional-parameter binding for query templates.

Query templates use ``?`` placeholders, and every placeholder receives the
same value: the run's timestamp.  ``SELECT count(*) FROM hits WHERE ts > ?
- interval '1 hour' AND ts <= ?`` gets the time bound twice.

Counting is a pure scan of the SQL text that skips ``?`` inside quoted
literals, quoted identifiers and comments, so it works without a live
driver connection and is testable on its own.  ``bind_time`` rewrites
each placeholder to a typed SQLAlchemy bind parameter (``:p0``, ``:p1`` ...)
so every dialect receives a correctly converted timestamp.

Examples:
    >>> count_placeholders("SELECT ? AS a, '?' AS b, ? AS c")
    2
    >>> placeholder_values("SELECT ?, ?", 5)
    [5, 5]

Tags:
    sql, parameters, placeholders, binding, turntable
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.sql.elements import TextClause

from turntable.core.timestamps import to_db_timestamp


def _scan(sql: str) -> Iterator[tuple[str, bool]]:
    """Yield ``(chunk, is_placeholder)`` pieces of ``sql``.

    Quoted strings, quoted identifiers, ``--`` line comments and ``/* */``
    block comments are yielded whole and never contain placeholders.
    """
    i, n = 0, len(sql)
    start = 0
    while i < n:
        ch = sql[i]
        if ch in ("'", '"'):
            end = i + 1
            while end < n:
                if sql[end] == ch:
                    # doubled quote is an escaped quote
                    if end + 1 < n and sql[end + 1] == ch:
                        end += 2
                        continue
                    break
                end += 1
            i = end + 1
        elif sql.startswith("--", i):
            end = sql.find("\n", i)
            i = n if end == -1 else end + 1
        elif sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            i = n if end == -1 else end + 2
        elif ch == "?":
            if start < i:
                yield sql[start:i], False
            yield "?", True
            i += 1
            start = i
        else:
            i += 1
    if start < n:
        yield sql[start:], False


def count_placeholders(sql: str) -> int:
    """Number of positional ``?`` placeholders in ``sql``."""
    return sum(1 for _, is_placeholder in _scan(sql) if is_placeholder)


def placeholder_values(sql: str, value: Any) -> list[Any]:
    """Parameter list for ``sql``: ``value`` once per placeholder, in order."""
    return [value] * count_placeholders(sql)


def _escape_colons(chunk: str) -> str:
    # ':name' inside the template must not be read as a bind parameter
    return chunk.replace(":", "\\:")


def bind_time(sql: str, time: datetime) -> tuple[TextClause, dict[str, datetime]]:
    """Rewrite ``?`` placeholders to typed binds all carrying ``time``.

    Returns the executable clause and its parameter mapping.  The mapping
    has exactly ``count_placeholders(sql)`` entries.
    """
    pieces: list[str] = []
    names: list[str] = []
    for chunk, is_placeholder in _scan(sql):
        if is_placeholder:
            name = f"p{len(names)}"
            names.append(name)
            pieces.append(f":{name}")
        else:
            pieces.append(_escape_colons(chunk))

    clause = text("".join(pieces))
    if names:
        clause = clause.bindparams(*(bindparam(name, type_=DateTime()) for name in names))
    value = to_db_timestamp(time)
    return clause, {name: value for name in names}


__all__ = ["count_placeholders", "placeholder_values", "bind_time"]
