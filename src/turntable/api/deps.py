"""
FastAPI dependency injection: app-scoped singletons.

Usage in routes::

    from turntable.api.deps import Registry

    @router.get("/things")
    def list_things(registry: Registry):
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from turntable.core.registry import QueryRegistry
from turntable.core.render import RenderEngine


def get_registry(request: Request) -> QueryRegistry:
    return request.app.state.registry


def get_render_engine(request: Request) -> RenderEngine:
    return request.app.state.render_engine


Registry = Annotated[QueryRegistry, Depends(get_registry)]
Renderer = Annotated[RenderEngine, Depends(get_render_engine)]
