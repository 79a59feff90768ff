"""
Database sink: archive every run into a per-query result table.

The result table is named after the query and shaped by the query itself:
the first run creates it with ``CREATE TABLE "<name>" AS <query>`` (bound
like any other run), empties it, and appends four metadata columns.  Every
run then inserts its rows, each stamped with the run's metadata.

Table layout::

    "<query name>"
    ├── <projected columns of the query>
    ├── _start    TIMESTAMP   wall clock before execution (UTC)
    ├── _stop     TIMESTAMP   wall clock after execution (UTC)
    ├── _time     TIMESTAMP   time bound to the query's placeholders
    └── _elapsed  INTEGER     milliseconds between _start and _stop

The render engine reads the same tables through ``fetch_series``.

Guardrails:
    ❌ Creating the table without an existence check (re-creation wipes history)
    ✅ ``create_results_table`` is a no-op when the table exists
    ❌ Interpolating render fields into SQL unchecked
    ✅ ``quote_identifier`` rejects anything that is not a plain identifier

Tags:
    persistence, sink, sqlalchemy, result-table, turntable
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, MetaData, Table, bindparam, inspect, text
from sqlalchemy.engine import Connection

from turntable.core.errors import InvalidTargetError
from turntable.core.logging import get_logger
from turntable.core.models import QueryDefinition, ResultEnvelope
from turntable.core.params import bind_time
from turntable.core.timestamps import to_db_timestamp, to_epoch_millis

log = get_logger(__name__)

METADATA_COLUMNS: tuple[tuple[str, str], ...] = (
    ("_start", "TIMESTAMP"),
    ("_stop", "TIMESTAMP"),
    ("_time", "TIMESTAMP"),
    ("_elapsed", "INTEGER"),
)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def quote_table(name: str) -> str:
    """Double-quote a query name for use as a table name."""
    return '"' + name.replace('"', '""') + '"'


def quote_identifier(field: str) -> str:
    """Quote a column name; only plain identifiers are accepted."""
    if not _IDENTIFIER.match(field):
        raise InvalidTargetError(f"Invalid field name: {field!r}", field="field", value=field)
    return f'"{field}"'


def table_exists(conn: Connection, name: str) -> bool:
    return inspect(conn).has_table(name)


def create_results_table(conn: Connection, definition: QueryDefinition, time: datetime) -> bool:
    """Create the result table for ``definition`` unless it exists.

    Returns:
        True if the table was created by this call.
    """
    if table_exists(conn, definition.name):
        return False

    table = quote_table(definition.name)
    clause, params = bind_time(f"CREATE TABLE {table} AS {definition.query}", time)
    conn.execute(clause, params)
    conn.execute(text(f"DELETE FROM {table}"))
    for column, type_ in METADATA_COLUMNS:
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {type_}"))

    log.info("results_table_created", query=definition.name)
    return True


def insert_results(conn: Connection, name: str, envelope: ResultEnvelope) -> int:
    """Append the envelope's rows to the result table. Returns rows written."""
    if not envelope.rows:
        return 0

    table = Table(name, MetaData(), autoload_with=conn)
    columns = set(table.columns.keys())
    metadata = {
        "_start": to_db_timestamp(envelope.start),
        "_stop": to_db_timestamp(envelope.stop),
        "_time": to_db_timestamp(envelope.query_time),
        "_elapsed": envelope.elapsed_ms,
    }

    records: list[dict[str, Any]] = []
    dropped: set[str] = set()
    for row in envelope.rows:
        record = {k: v for k, v in row.items() if k in columns}
        dropped.update(k for k in row if k not in columns)
        record.update(metadata)
        records.append(record)

    if dropped:
        log.warning("result_columns_dropped", query=name, columns=sorted(dropped))

    conn.execute(table.insert(), records)
    return len(records)


def fetch_series(
    conn: Connection,
    name: str,
    field: str,
    from_: datetime,
    until: datetime,
) -> list[tuple[Any, int]]:
    """``(value, timestamp_ms)`` pairs whose ``_start`` lies in ``[from_, until]``.

    Rows come back ordered by ``_start``.  A missing table yields ``[]``.
    """
    column = quote_identifier(field)
    if not table_exists(conn, name):
        return []

    stmt = (
        text(
            f"SELECT {column} AS value, _time FROM {quote_table(name)} "
            "WHERE _start >= :from_ AND _start <= :until "
            "ORDER BY _start"
        )
        .bindparams(
            bindparam("from_", type_=DateTime()),
            bindparam("until", type_=DateTime()),
        )
        .columns(_time=DateTime)
    )
    rows = conn.execute(
        stmt,
        {"from_": to_db_timestamp(from_), "until": to_db_timestamp(until)},
    )
    return [(row.value, to_epoch_millis(row._mapping["_time"])) for row in rows]


class DatabaseSink:
    """Persist each envelope to the query's result table."""

    name = "database"

    def persist(
        self,
        definition: QueryDefinition,
        envelope: ResultEnvelope,
        conn: Connection,
    ) -> None:
        create_results_table(conn, definition, envelope.query_time)
        written = insert_results(conn, definition.name, envelope)
        log.debug("results_persisted", query=definition.name, rows=written)
