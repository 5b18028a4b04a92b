"""Read-only HTTP API over the query façade.

Endpoints:
    GET /entities                     list entities (kind, visibility, tag, policyLevel filters)
    GET /entities/{ord_id}            one entity with stale/conflicted/dangling flags
    GET /entities/{ord_id}/effective  post-inheritance attributes
    GET /entities/{ord_id}/issues     issues recorded for the entity
    GET /stats                        graph counters
    GET /health                       liveness probe
    GET /metrics                      Prometheus text format

The API is intended for local/operator use and is unauthenticated.
"""

from __future__ import annotations

from typing import cast

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from orda import __version__
from orda.aggregator import Aggregator
from orda.models.enums import EntityKind
from orda.observability.logging import get_logger
from orda.observability.metrics import get_metrics
from orda.query import EntityView, QueryFacade

logger = get_logger(__name__)


def get_query(request: Request) -> QueryFacade:
    aggregator = getattr(request.app.state, "aggregator", None)
    if aggregator is None:
        raise HTTPException(status_code=503, detail="Aggregator not configured")
    return cast(Aggregator, aggregator).query


def _dump(view: EntityView) -> dict[str, object]:
    return view.model_dump(mode="json", by_alias=True)


def create_entities_router() -> APIRouter:
    router = APIRouter(prefix="/entities", tags=["entities"])

    @router.get("")
    async def list_entities(
        kind: EntityKind | None = Query(default=None, description="Entity kind"),
        visibility: str | None = Query(default=None, description="Effective visibility"),
        tag: list[str] | None = Query(default=None, description="Required tags"),
        policy_level: str | None = Query(default=None, alias="policyLevel"),
        include_removed: bool = Query(default=False, alias="includeRemoved"),
        query: QueryFacade = Depends(get_query),
    ) -> JSONResponse:
        views = query.list(
            kind=kind,
            visibility=visibility,
            tags=tag,
            policy_level=policy_level,
            include_removed=include_removed,
        )
        return JSONResponse(content={"data": [_dump(v) for v in views], "count": len(views)})

    @router.get("/{ord_id}")
    async def get_entity(
        ord_id: str,
        include_removed: bool = Query(default=False, alias="includeRemoved"),
        query: QueryFacade = Depends(get_query),
    ) -> JSONResponse:
        view = query.get(ord_id, include_removed=include_removed)
        if view is None:
            raise HTTPException(status_code=404, detail=f"Entity not found: {ord_id}")
        return JSONResponse(content=_dump(view))

    @router.get("/{ord_id}/effective")
    async def get_effective(
        ord_id: str, query: QueryFacade = Depends(get_query)
    ) -> JSONResponse:
        effective = query.effective_attributes(ord_id)
        if effective is None:
            raise HTTPException(status_code=404, detail=f"Entity not found: {ord_id}")
        return JSONResponse(content=effective)

    @router.get("/{ord_id}/issues")
    async def get_issues(ord_id: str, query: QueryFacade = Depends(get_query)) -> JSONResponse:
        issues = query.issues(ord_id)
        return JSONResponse(
            content={
                "data": [i.model_dump(mode="json", by_alias=True) for i in issues],
                "count": len(issues),
            }
        )

    return router


def create_app(aggregator: Aggregator) -> FastAPI:
    """Build the FastAPI application serving ``aggregator``'s graph."""
    app = FastAPI(
        title="ORD Aggregator",
        description="Read-only view of the aggregated Open Resource Discovery metadata",
        version=__version__,
    )
    app.state.aggregator = aggregator
    app.include_router(create_entities_router())

    @app.get("/stats")
    async def stats(query: QueryFacade = Depends(get_query)) -> JSONResponse:
        return JSONResponse(content=query.stats())

    @app.get("/health")
    async def health() -> JSONResponse:
        """Liveness probe: always OK if the process is running."""
        return JSONResponse(status_code=200, content={"status": "ok"})

    @app.get("/metrics")
    async def metrics() -> PlainTextResponse:
        """Return Prometheus-compatible metrics."""
        return PlainTextResponse(
            content=get_metrics().export_prometheus(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    logger.info("orda.server.app_created", revision=aggregator.snapshot.revision)
    return app
