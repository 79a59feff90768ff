"""
Structured error types for turntable.

Every failure the core can surface belongs to one typed hierarchy rooted at
``TurntableError``.  Each error carries a category for routing, a retry
flag, free-form context for logging, and an optional chained cause.

Manifesto:
    Scheduled queries fail in the background, far away from whoever
    registered them.  An error that lands in the log without its query
    name, database, and category is an error nobody can act on:

    - **Typed hierarchy:** ConflictError, ExecutionError, ... all share a base
    - **Categorized:** ErrorCategory drives HTTP status and alert routing
    - **Context-rich:** ``with_context(query=..., db=...)`` for structured logs
    - **Chained:** the driver exception is preserved as ``__cause__``

Architecture:
    ::

        TurntableError
        ├── ConflictError            name already registered
        ├── QueryNotFoundError       unknown query name
        ├── ExecutionError           query binding / execution failed
        ├── StagingError             ad-hoc preview failed
        ├── BackfillError            replay could not be planned
        ├── ValidationError
        │   ├── InvalidPeriodError   bad recurrence selector
        │   └── InvalidTargetError   bad render target
        ├── ConfigError
        │   └── UnknownDatabaseError db name not configured
        └── StorageError
            └── SnapshotError        registry file unreadable / unwritable

Examples:
    >>> err = ConflictError("exists").with_context(query="q1")
    >>> err.to_dict()["context"]
    {'query': 'q1'}

Tags:
    error-handling, exception-hierarchy, error-context, turntable

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for classification and HTTP mapping."""

    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    EXECUTION = "EXECUTION"
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    STORAGE = "STORAGE"
    INTERNAL = "INTERNAL"


class TurntableError(Exception):
    """
    Base exception for all turntable errors.

    Subclasses set ``default_category`` and ``default_retryable`` so call
    sites only pass a message (and usually a ``cause``).
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> TurntableError:
        """Attach context to this error (fluent API)."""
        self.context.update({k: v for k, v in kwargs.items() if v is not None})
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.context:
            result["context"] = dict(self.context)
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# REGISTRY ERRORS
# =============================================================================


class ConflictError(TurntableError):
    """A query with this name is already registered."""

    default_category = ErrorCategory.CONFLICT

    def __init__(self, name: str, message: str | None = None, **kwargs: Any):
        self.name = name
        super().__init__(
            message or "Query by this name already exists. Remove it first.",
            **kwargs,
        )
        self.context.setdefault("query", name)


class QueryNotFoundError(TurntableError):
    """No query with this name is registered."""

    default_category = ErrorCategory.NOT_FOUND

    def __init__(self, name: str, message: str | None = None, **kwargs: Any):
        self.name = name
        super().__init__(message or f"Query not found: {name}", **kwargs)
        self.context.setdefault("query", name)


# =============================================================================
# EXECUTION ERRORS
# =============================================================================


class ExecutionError(TurntableError):
    """
    Query binding or execution failed.

    Raised only inside the executor; scheduled paths receive it wrapped in
    an ``Err`` and it is never allowed to escape a timer thread.
    """

    default_category = ErrorCategory.EXECUTION
    default_retryable = True


class StagingError(ExecutionError):
    """Ad-hoc preview execution failed."""

    default_retryable = False


class PersistError(ExecutionError):
    """
    The query ran but one or more sinks could not store its envelope.

    Each failed sink's partial writes are rolled back to its savepoint;
    sinks that succeeded are committed.
    """

    def __init__(self, failed_sinks: list[str], message: str | None = None, **kwargs: Any):
        self.failed_sinks = list(failed_sinks)
        super().__init__(
            message or f"Persist failed for sinks: {', '.join(self.failed_sinks)}",
            **kwargs,
        )
        self.context.setdefault("failed_sinks", self.failed_sinks)


class BackfillError(TurntableError):
    """A backfill could not be planned (bad start time, bad period)."""

    default_category = ErrorCategory.VALIDATION


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(TurntableError):
    """Input validation error. Never retryable."""

    default_category = ErrorCategory.VALIDATION

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


class InvalidPeriodError(ValidationError):
    """Recurrence selector is malformed or out of range."""


class InvalidTargetError(ValidationError):
    """Render target cannot be parsed."""


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(TurntableError):
    """Configuration error. Never retryable."""

    default_category = ErrorCategory.CONFIG


class UnknownDatabaseError(ConfigError):
    """Database name is not configured and no default URL template is set."""

    def __init__(self, db: str, message: str | None = None, **kwargs: Any):
        self.db = db
        super().__init__(message or f"Unknown database: {db}", **kwargs)
        self.context.setdefault("db", db)


# =============================================================================
# STORAGE ERRORS
# =============================================================================


class StorageError(TurntableError):
    """Storage-related error (disk, file system)."""

    default_category = ErrorCategory.STORAGE


class SnapshotError(StorageError):
    """Registry snapshot could not be read or written."""


HTTP_STATUS_BY_CATEGORY: dict[ErrorCategory, int] = {
    ErrorCategory.CONFLICT: 409,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.VALIDATION: 422,
    ErrorCategory.CONFIG: 400,
    ErrorCategory.EXECUTION: 500,
    ErrorCategory.STORAGE: 500,
    ErrorCategory.INTERNAL: 500,
}


def http_status_for(error: Exception) -> int:
    """Map an error to the HTTP status the API responds with."""
    if isinstance(error, TurntableError):
        return HTTP_STATUS_BY_CATEGORY.get(error.category, 500)
    return 500


__all__ = [
    "ErrorCategory",
    "TurntableError",
    "ConflictError",
    "QueryNotFoundError",
    "ExecutionError",
    "StagingError",
    "PersistError",
    "BackfillError",
    "ValidationError",
    "InvalidPeriodError",
    "InvalidTargetError",
    "ConfigError",
    "UnknownDatabaseError",
    "StorageError",
    "SnapshotError",
    "http_status_for",
]
