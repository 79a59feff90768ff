"""Database catalog: resolve database names to SQLAlchemy engines.

Queries name the database they run against (``db="metrics"``); the catalog
turns that name into an engine using the ``servers`` mapping from settings,
falling back to ``default_server_url`` (a template with ``{db}``) for names
that are not listed.  Engines are created lazily, once per name, and
shared; connections are checked out per execution.

Tags:
    database, sqlalchemy, engine, connection, catalog, turntable
"""

from __future__ import annotations

import threading
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from turntable.core.errors import UnknownDatabaseError
from turntable.core.logging import get_logger
from turntable.core.settings import TurntableSettings

log = get_logger(__name__)


def create_turntable_engine(url: str, *, echo: bool = False, **kwargs: Any) -> Engine:
    """Create a SQLAlchemy engine with sane defaults.

    SQLite engines are opened with ``check_same_thread=False`` (timer and
    backfill threads share the pool) and WAL journaling.  pysqlite's own
    transaction handling is switched off and SQLAlchemy emits
    ``BEGIN IMMEDIATE`` itself, so the per-sink savepoints roll back DDL as
    well as rows and concurrent writers wait on ``busy_timeout``.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        engine = create_engine(url, echo=echo, **kwargs)

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _do_begin(conn: Any) -> None:
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    kwargs.setdefault("pool_pre_ping", True)
    return create_engine(url, echo=echo, **kwargs)


class DatabaseCatalog:
    """Lazily-built, thread-safe map of database name → Engine."""

    def __init__(self, settings: TurntableSettings) -> None:
        self.settings = settings
        self._engines: dict[str, Engine] = {}
        self._lock = threading.Lock()

    def url_for(self, db: str) -> str:
        """Connection URL for ``db``.

        Raises:
            UnknownDatabaseError: if ``db`` is not listed and no template is set
        """
        url = self.settings.servers.get(db)
        if url:
            return url
        template = self.settings.default_server_url
        if template:
            return template.format(db=db)
        raise UnknownDatabaseError(db)

    def engine(self, db: str) -> Engine:
        with self._lock:
            engine = self._engines.get(db)
            if engine is None:
                url = self.url_for(db)
                engine = create_turntable_engine(url)
                self._engines[db] = engine
                log.debug("engine_created", db=db, backend=engine.dialect.name)
            return engine

    def known_databases(self) -> list[str]:
        return self.settings.known_databases()

    def dispose(self) -> None:
        """Dispose every engine's pool (process shutdown)."""
        with self._lock:
            engines, self._engines = self._engines, {}
        for engine in engines.values():
            engine.dispose()
