"""
HTTP routes.

GET       /render?target=...&from=...&until=...
POST      /add     {name, db, query, period, backfill}
POST      /remove  {name}
GET       /stage?db=...&query=...
GET|POST  /get?name=...
GET|POST  /queries
GET       /health
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Body, HTTPException, Query, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool

from turntable.api.deps import Registry, Renderer
from turntable.api.schemas import AddQueryBody, NameBody
from turntable.core.errors import ConflictError
from turntable.core.result import Err, Ok

router = APIRouter()


@router.get("/render")
def render(
    renderer: Renderer,
    target: Annotated[list[str], Query()],
    from_: Annotated[int | None, Query(alias="from")] = None,
    until: Annotated[int | None, Query()] = None,
) -> list[dict[str, Any]]:
    """Render targets as ``{"target", "datapoints": [[value, ms], ...]}``.

    404 when no target produced any datapoint.

    Example:
        GET /render?target=q1.v&from=-3600

        Response:
        [{"target": "q1.v", "datapoints": [[1, 1760716800000]]}]
    """
    series = renderer.render(target, from_, until)
    if series is None:
        raise HTTPException(status_code=404)
    return [s.to_dict() for s in series]


@router.post("/add")
def add_query(registry: Registry, body: AddQueryBody) -> Any:
    """Register a query. 409 when the name exists."""
    result = registry.add(
        body.name,
        body.db,
        body.query,
        body.period,
        backfill_from=body.backfill,
    )
    match result:
        case Ok(definition):
            return definition.to_dict()
        case Err(ConflictError() as error):
            return JSONResponse(status_code=409, content={"error": error.message})
        case Err(error):
            raise error


@router.post("/remove", status_code=204)
def remove_query(registry: Registry, body: NameBody) -> Response:
    """Cancel and drop a query. 204 on success, 404 when unknown."""
    if not registry.remove(body.name):
        raise HTTPException(status_code=404)
    return Response(status_code=204)


@router.get("/stage", response_class=PlainTextResponse)
async def stage(registry: Registry, db: str, query: str) -> str:
    """Run a query once without persisting; rows or the error trace as text."""
    return await run_in_threadpool(registry.executor.stage, db, query)


@router.api_route("/get", methods=["GET", "POST"])
def get_query(
    registry: Registry,
    name: Annotated[str | None, Query()] = None,
    body: Annotated[NameBody | None, Body()] = None,
) -> dict[str, Any]:
    """Definition of one query; 404 when unknown."""
    name = name or (body.name if body else None)
    definition = registry.get(name) if name else None
    if definition is None:
        raise HTTPException(status_code=404)
    return definition.to_dict()


@router.api_route("/queries", methods=["GET", "POST"])
def list_queries(registry: Registry) -> dict[str, Any]:
    """All definitions and the configured database names."""
    return registry.list().to_dict()


@router.get("/health")
def health(registry: Registry) -> dict[str, Any]:
    """Schedule health for every registered query."""
    schedules = registry.health()
    return {
        "status": "ok" if all(h["healthy"] for h in schedules.values()) else "degraded",
        "queries": schedules,
    }
