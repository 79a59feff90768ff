"""
API schemas: request bodies and the RFC 7807 error envelope.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ProblemDetail(BaseModel):
    """RFC 7807 «Problem Details for HTTP APIs»."""

    type: str = Field(default="about:blank")
    title: str
    status: int
    detail: str = ""
    instance: str = ""
    code: str = ""


class AddQueryBody(BaseModel):
    """``POST /add`` body.

    ``period`` accepts a selector mapping, its JSON text, or a cron
    string; ``backfill`` is a start time in epoch seconds.
    """

    name: str = Field(min_length=1)
    db: str = Field(min_length=1)
    query: str = Field(min_length=1)
    period: dict[str, Any] | str | None = None
    backfill: int | str | None = None


class NameBody(BaseModel):
    name: str
