"""
Error handlers: map turntable errors to RFC 7807 responses.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

from turntable.api.schemas import ProblemDetail
from turntable.core.errors import TurntableError, http_status_for
from turntable.core.logging import get_logger

log = get_logger(__name__)


def problem_response(
    *,
    status: int,
    title: str,
    detail: str = "",
    instance: str = "",
    code: str = "",
) -> JSONResponse:
    """Build a RFC 7807 JSON error response."""
    body = ProblemDetail(title=title, status=status, detail=detail, instance=instance, code=code)
    return JSONResponse(status_code=status, content=body.model_dump())


async def turntable_error_handler(request: Request, exc: TurntableError) -> JSONResponse:
    """Typed errors keep their category-derived status."""
    return problem_response(
        status=http_status_for(exc),
        title=type(exc).__name__,
        detail=exc.message,
        instance=str(request.url),
        code=exc.category.value,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions: returns 500 with ProblemDetail."""
    log.error("unhandled_exception", path=request.url.path, exc_info=exc)
    return problem_response(
        status=500,
        title="Internal Server Error",
        detail="An unexpected error occurred.",
        instance=str(request.url),
        code="INTERNAL",
    )
