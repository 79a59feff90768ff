"""
UTC timestamp utilities.

Every time value inside turntable is a timezone-aware UTC ``datetime``.
Result tables store naive UTC (``TIMESTAMP`` without zone) because that is
the portable column type across SQLite and PostgreSQL; the helpers here are
the only place that conversion happens.

Tags:
    timestamps, utc, datetime, epoch, turntable

STDLIB ONLY - NO PYDANTIC.
"""

from datetime import UTC, datetime, timedelta


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def from_epoch_seconds(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, UTC)


def to_epoch_seconds(value: datetime) -> int:
    """Seconds since the unix epoch, as by time(2)."""
    return int(ensure_utc(value).timestamp())


def to_epoch_millis(value: datetime) -> int:
    return int(ensure_utc(value).timestamp() * 1000)


def to_db_timestamp(value: datetime) -> datetime:
    """Naive UTC datetime suitable for a ``TIMESTAMP`` column."""
    return ensure_utc(value).replace(tzinfo=None)


def elapsed_millis(start: datetime, stop: datetime) -> int:
    """Whole milliseconds between two datetimes."""
    return round((stop - start) / timedelta(milliseconds=1))


def to_iso8601(value: datetime) -> str:
    return ensure_utc(value).isoformat()


def from_iso8601(value: str) -> datetime:
    return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
