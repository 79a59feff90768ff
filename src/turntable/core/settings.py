"""Process settings for turntable.

Every knob the core and its surfaces need (named database servers, the
registry snapshot path, persist sinks, logging, HTTP binding) lives on one
``TurntableSettings`` model.  Values come from ``TURNTABLE_``-prefixed
environment variables or a ``.env`` file.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.
    A typo'd sink name or a missing database URL should fail at startup,
    not on the first scheduled tick an hour later.

Examples:
    >>> settings = TurntableSettings(
    ...     servers={"metrics": "postgresql://localhost/metrics"},
    ...     query_file="queries.json",
    ... )
    >>> settings.known_databases()
    ['metrics']

    Environment::

        TURNTABLE_SERVERS='{"metrics": "postgresql://localhost/metrics"}'
        TURNTABLE_DEFAULT_SERVER_URL='postgresql://localhost/{db}'
        TURNTABLE_PERSIST_SINKS='["database", "memory"]'

Tags:
    settings, configuration, pydantic, environment, turntable

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

KNOWN_SINKS = ("database", "memory")


class TurntableSettings(BaseSettings):
    """Settings for the turntable service.

    Fields
    ──────
    servers                  : database name → SQLAlchemy URL
    default_server_url       : URL template with ``{db}`` for unlisted names
    query_file               : durable registry snapshot (JSON)
    persist_sinks            : sink names run in order on every result
    recent_results_capacity  : per-query in-memory ring buffer size
    serialize_query_runs     : one execution at a time per query name
    """

    model_config = SettingsConfigDict(
        env_prefix="TURNTABLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Databases ────────────────────────────────────────────────
    servers: dict[str, str] = Field(
        default_factory=dict,
        description="Database name to SQLAlchemy URL",
    )
    default_server_url: str | None = Field(
        default=None,
        description="URL template used for database names not listed in servers",
    )

    # ── Registry ─────────────────────────────────────────────────
    query_file: Path = Field(
        default_factory=lambda: Path("turntable-queries.json"),
        description="Durable registry snapshot",
    )

    # ── Persistence ──────────────────────────────────────────────
    persist_sinks: list[str] = Field(default_factory=lambda: list(KNOWN_SINKS))
    recent_results_capacity: int = Field(default=100, ge=1)
    serialize_query_runs: bool = True

    # ── Network ──────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: list[str] = Field(default_factory=lambda: [".*"])

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str | None = Field(
        default=None,
        description="json | console (default: json when stdout is not a tty)",
    )

    @field_validator("persist_sinks")
    @classmethod
    def _check_sinks(cls, value: list[str]) -> list[str]:
        unknown = [name for name in value if name not in KNOWN_SINKS]
        if unknown:
            raise ValueError(f"unknown persist sinks: {', '.join(unknown)}")
        return value

    @field_validator("default_server_url")
    @classmethod
    def _check_template(cls, value: str | None) -> str | None:
        if value is not None and "{db}" not in value:
            raise ValueError("default_server_url must contain a {db} placeholder")
        return value

    def known_databases(self) -> list[str]:
        """Database names configured explicitly, in declaration order."""
        return list(self.servers)

    @property
    def json_logs(self) -> bool | None:
        if self.log_format is None:
            return None
        return self.log_format.lower() == "json"
