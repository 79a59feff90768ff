"""
Recurrence specifications for scheduled queries.

A ``PeriodSpec`` is a set of field selectors (minute, hour, day of month,
month, day of week).  Each field is either a wildcard (``None``) or the
sorted tuple of values it fires on.  It is the structured form of a 5-field
cron expression and is evaluated with croniter.  An instant matches only
when every restricted field matches; unlike classic cron, restricting both
day of month and day of week selects days that satisfy both.

Manifesto:
    Operators describe schedules as data (``{"minute": [0, 30]}``) or as
    the cron strings they already know.  Both collapse into one frozen,
    validated value so the scheduler, the backfill runner, and the
    registry snapshot all see the same thing.

Accepted input forms::

    None / "" / {}                      every minute (all wildcards)
    {"minute": 0, "hour": [6, 18]}      mapping of field → int | list | range
    {"minute": {"start": 0, "end": 60, "step": 15}}
    '{"minute": [0, 30]}'               JSON text of a mapping
    "*/15 6-18 * * 1-5"                 5-field cron expression

Field keys accept ``day-of-week``, ``day_of_week``, ``weekday`` and ``dow``
as synonyms; ``day``, ``day-of-month``, ``day_of_month`` and ``dom``
likewise.  Range mappings use an exclusive ``end`` like ``range()``.

Examples:
    >>> spec = PeriodSpec.parse({"minute": [0, 30], "hour": 5})
    >>> spec.to_cron()
    '0,30 5 * * *'
    >>> PeriodSpec.parse("*/20 * * * *").minute
    (0, 20, 40)
    >>> PeriodSpec.parse({}).to_cron()
    '* * * * *'

Tags:
    scheduling, cron, croniter, recurrence, turntable

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, fields
from datetime import datetime, timedelta
from typing import Any

from croniter import croniter

from turntable.core.errors import InvalidPeriodError
from turntable.core.timestamps import ensure_utc

# field name → (min, max) inclusive
FIELD_BOUNDS: dict[str, tuple[int, int]] = {
    "minute": (0, 59),
    "hour": (0, 23),
    "day": (1, 31),
    "month": (1, 12),
    "day_of_week": (0, 6),
}

_ALIASES = {
    "minute": "minute",
    "minutes": "minute",
    "hour": "hour",
    "hours": "hour",
    "day": "day",
    "day-of-month": "day",
    "day_of_month": "day",
    "dom": "day",
    "month": "month",
    "months": "month",
    "day-of-week": "day_of_week",
    "day_of_week": "day_of_week",
    "weekday": "day_of_week",
    "dow": "day_of_week",
}


@dataclass(frozen=True, slots=True)
class PeriodSpec:
    """Parsed cron-like recurrence. ``None`` fields are wildcards."""

    minute: tuple[int, ...] | None = None
    hour: tuple[int, ...] | None = None
    day: tuple[int, ...] | None = None
    month: tuple[int, ...] | None = None
    day_of_week: tuple[int, ...] | None = None

    # ── Parsing ──────────────────────────────────────────────────

    @classmethod
    def parse(cls, value: Any) -> PeriodSpec:
        """Parse any accepted input form into a PeriodSpec."""
        if value is None:
            return cls()
        if isinstance(value, PeriodSpec):
            return value
        if isinstance(value, Mapping):
            return cls.from_mapping(value)
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return cls()
            if text.startswith("{"):
                try:
                    decoded = json.loads(text)
                except json.JSONDecodeError as e:
                    raise InvalidPeriodError(
                        f"Period is not valid JSON: {e.msg}", value=value, cause=e
                    ) from e
                if not isinstance(decoded, Mapping):
                    raise InvalidPeriodError("Period JSON must be an object", value=value)
                return cls.from_mapping(decoded)
            return cls.from_cron(text)
        raise InvalidPeriodError(
            f"Unsupported period type: {type(value).__name__}", value=value
        )

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> PeriodSpec:
        selected: dict[str, tuple[int, ...] | None] = {}
        for raw_key, raw_value in mapping.items():
            key = _ALIASES.get(str(raw_key).strip().lower())
            if key is None:
                raise InvalidPeriodError(
                    f"Unknown period field: {raw_key}", field=str(raw_key)
                )
            if key in selected:
                raise InvalidPeriodError(f"Duplicate period field: {raw_key}", field=key)
            selected[key] = _selector_values(key, raw_value)
        return cls(**selected)

    @classmethod
    def from_cron(cls, expression: str) -> PeriodSpec:
        parts = expression.split()
        if len(parts) != 5:
            raise InvalidPeriodError(
                f"Cron expression needs 5 fields, got {len(parts)}", value=expression
            )
        names = [f.name for f in fields(cls)]
        return cls(**{name: _parse_cron_field(name, part) for name, part in zip(names, parts)})

    # ── Rendering ────────────────────────────────────────────────

    @property
    def is_empty(self) -> bool:
        """True when every field is a wildcard (fires every minute)."""
        return all(getattr(self, f.name) is None for f in fields(self))

    def to_cron(self) -> str:
        return " ".join(
            "*" if (values := getattr(self, f.name)) is None else ",".join(map(str, values))
            for f in fields(self)
        )

    def to_dict(self) -> dict[str, list[int]]:
        """JSON-safe mapping of the restricted fields only."""
        return {
            f.name: list(values)
            for f in fields(self)
            if (values := getattr(self, f.name)) is not None
        }

    def __str__(self) -> str:
        return self.to_cron()

    # ── Evaluation ───────────────────────────────────────────────

    def next_after(self, after: datetime) -> datetime:
        """First occurrence strictly after ``after`` (UTC)."""
        it = croniter(self.to_cron(), ensure_utc(after), day_or=False)
        return ensure_utc(it.get_next(datetime))

    def times_for(self, start: datetime) -> Iterator[datetime]:
        """Endless, strictly increasing occurrences at or after ``start``."""
        start = ensure_utc(start)
        it = croniter(self.to_cron(), start - timedelta(seconds=1), day_or=False)
        while True:
            t = ensure_utc(it.get_next(datetime))
            if t >= start:
                yield t


def _check_bounds(name: str, values: list[int]) -> tuple[int, ...]:
    low, high = FIELD_BOUNDS[name]
    if name == "day_of_week":
        # cron allows 7 for Sunday
        values = [0 if v == 7 else v for v in values]
    for v in values:
        if not low <= v <= high:
            raise InvalidPeriodError(
                f"{name} value {v} outside {low}-{high}", field=name, value=v
            )
    if not values:
        raise InvalidPeriodError(f"{name} selects no values", field=name)
    return tuple(sorted(set(values)))


def _selector_values(name: str, raw: Any) -> tuple[int, ...] | None:
    if raw is None or raw == "*":
        return None
    if isinstance(raw, bool):
        raise InvalidPeriodError(f"{name} must be an integer", field=name, value=raw)
    if isinstance(raw, int):
        return _check_bounds(name, [raw])
    if isinstance(raw, str):
        return _parse_cron_field(name, raw)
    if isinstance(raw, Mapping):
        try:
            start = int(raw["start"])
            end = int(raw["end"])
            step = int(raw.get("step", 1))
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidPeriodError(
                f"{name} range needs integer start/end", field=name, value=raw, cause=e
            ) from e
        if step <= 0:
            raise InvalidPeriodError(f"{name} range step must be positive", field=name)
        return _check_bounds(name, list(range(start, end, step)))
    if isinstance(raw, (list, tuple, set, frozenset)):
        values: list[int] = []
        for item in raw:
            nested = _selector_values(name, item)
            if nested is None:
                return None
            values.extend(nested)
        return _check_bounds(name, values)
    raise InvalidPeriodError(
        f"Unsupported {name} selector: {type(raw).__name__}", field=name, value=raw
    )


def _parse_cron_field(name: str, text: str) -> tuple[int, ...] | None:
    """Expand one cron field (``*``, ``a``, ``a-b``, ``*/n``, ``a-b/n``, lists)."""
    text = text.strip()
    if text == "*":
        return None
    low, high = FIELD_BOUNDS[name]
    if name == "day_of_week":
        high = 7
    values: list[int] = []
    for part in text.split(","):
        base, _, step_text = part.partition("/")
        try:
            step = int(step_text) if step_text else 1
            if base == "*":
                start, stop = low, high
            elif "-" in base:
                first, last = base.split("-", 1)
                start, stop = int(first), int(last)
            else:
                start = int(base)
                stop = high if step_text else start
        except ValueError as e:
            raise InvalidPeriodError(
                f"Invalid {name} field: {text!r}", field=name, value=text, cause=e
            ) from e
        if step <= 0 or stop < start:
            raise InvalidPeriodError(f"Invalid {name} field: {text!r}", field=name, value=text)
        values.extend(range(start, stop + 1, step))
    return _check_bounds(name, values)


__all__ = ["PeriodSpec", "FIELD_BOUNDS"]
