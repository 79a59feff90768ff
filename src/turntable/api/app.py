"""
FastAPI application factory.

``create_app()`` wires settings, the query registry, the render engine,
CORS, error handlers and routes into one ``FastAPI`` instance.  The
lifespan restores persisted queries on startup and cancels every schedule
on shutdown.

Manifesto:
    The app factory is the single composition root: the registry and the
    render engine are built here and stashed on ``app.state`` so routes
    never construct core objects themselves.

Tags:
    turntable, api, app-factory, composition-root, FastAPI

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from turntable import __version__
from turntable.api.errors import turntable_error_handler, unhandled_exception_handler
from turntable.core.errors import TurntableError
from turntable.core.logging import configure_logging, get_logger
from turntable.core.registry import QueryRegistry
from turntable.core.render import RenderEngine
from turntable.core.settings import TurntableSettings

CORS_HEADERS = ["X-Requested-With", "X-File-Name", "Origin", "Content-Type"]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: restore queries, then cancel them on exit."""
    log = get_logger("turntable.api")
    registry: QueryRegistry = app.state.registry

    if app.state.restore_on_startup:
        restored = registry.restore()
        log.info("turntable API starting", version=app.version, queries=restored)
    else:
        log.info("turntable API starting", version=app.version)

    yield

    registry.shutdown()
    registry.catalog.dispose()
    log.info("turntable API shutting down")


def create_app(
    *,
    settings: TurntableSettings | None = None,
    registry: QueryRegistry | None = None,
    restore_on_startup: bool = True,
) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Parameters
    ----------
    settings : TurntableSettings | None
        Override settings (useful for testing).  Loaded from the
        environment when ``None``.
    registry : QueryRegistry | None
        Pre-built registry (tests inject one with a fake clock).
    restore_on_startup : bool
        Re-add the persisted queries when the app starts.
    """
    settings = settings or (registry.settings if registry else TurntableSettings())
    configure_logging(level=settings.log_level, json_format=settings.json_logs)
    registry = registry or QueryRegistry(settings)

    app = FastAPI(
        title="turntable",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.registry = registry
    app.state.render_engine = RenderEngine.for_registry(registry)
    app.state.restore_on_startup = restore_on_startup

    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex="|".join(f"(?:{o})" for o in settings.cors_origins),
        allow_methods=["GET", "POST"],
        allow_headers=CORS_HEADERS,
    )

    app.add_exception_handler(TurntableError, turntable_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    from turntable.api.routes import router

    app.include_router(router)
    return app
