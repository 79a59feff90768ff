"""
turntable core primitives.

Import the pieces most callers need from here::

    from turntable.core import QueryRegistry, RenderEngine, TurntableSettings
"""

from turntable.core.errors import (
    BackfillError,
    ConfigError,
    ConflictError,
    ErrorCategory,
    ExecutionError,
    InvalidPeriodError,
    InvalidTargetError,
    PersistError,
    QueryNotFoundError,
    SnapshotError,
    StagingError,
    TurntableError,
    UnknownDatabaseError,
    ValidationError,
)
from turntable.core.models import QueryDefinition, ResultEnvelope
from turntable.core.period import PeriodSpec
from turntable.core.registry import QueryListing, QueryRegistry, ScheduledEntry
from turntable.core.render import RenderEngine, Series, Target, parse_target, resolve_window
from turntable.core.result import Err, Ok, Result
from turntable.core.settings import TurntableSettings

__all__ = [
    "BackfillError",
    "ConfigError",
    "ConflictError",
    "Err",
    "ErrorCategory",
    "ExecutionError",
    "InvalidPeriodError",
    "InvalidTargetError",
    "Ok",
    "PeriodSpec",
    "QueryDefinition",
    "QueryListing",
    "QueryNotFoundError",
    "QueryRegistry",
    "RenderEngine",
    "Result",
    "ResultEnvelope",
    "ScheduledEntry",
    "Series",
    "SnapshotError",
    "StagingError",
    "PersistError",
    "Target",
    "TurntableError",
    "TurntableSettings",
    "UnknownDatabaseError",
    "ValidationError",
    "parse_target",
    "resolve_window",
]
