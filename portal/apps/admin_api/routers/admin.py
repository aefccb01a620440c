"""Cache administration, on-demand maintenance, health and Prometheus metrics."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from starlette.responses import Response

from portal.apps.admin_api.dependencies import get_cache, get_database
from portal.apps.admin_api.responses import error_response, ok
from portal.apps.admin_api.schemas import CacheInvalidatePayload
from portal.core.cache import TaggedCache
from portal.core.db import Database
from portal.core.result import ConflictError
from portal.maintenance.optimizer import run_optimization

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])


@router.get("/api/admin/cache/stats")
async def cache_stats(cache: TaggedCache = Depends(get_cache)):
    return ok(data=cache.get_statistics().to_dict())


@router.get("/api/admin/cache/debug")
async def cache_debug(cache: TaggedCache = Depends(get_cache)):
    return ok(data=cache.get_debug_info())


@router.post("/api/admin/cache/invalidate")
async def cache_invalidate(
    payload: CacheInvalidatePayload, cache: TaggedCache = Depends(get_cache)
):
    if payload.clear:
        removed = cache.clear()
    else:
        removed = 0
        if payload.tags:
            removed += cache.invalidate_by_tags(payload.tags)
        if payload.pattern:
            removed += cache.invalidate_by_pattern(payload.pattern)
        if payload.key and cache.delete(payload.key):
            removed += 1
    logger.info("Cache invalidated from admin", extra={"removed": removed})
    return ok(f"{removed} entrées invalidées", removed=removed)


@router.post("/api/admin/maintenance/optimize")
async def optimize(
    request: Request,
    cache: TaggedCache = Depends(get_cache),
    database: Database = Depends(get_database),
):
    lock = request.app.state.maintenance_lock
    if lock.locked():
        return error_response(
            ConflictError(
                entity_type="maintenance",
                message="Une optimisation est déjà en cours",
                code="MAINTENANCE_RUNNING",
            )
        )
    # Dedicated handle per run; the optimizer disposes it when done.
    async with lock:
        report = await run_optimization(
            cache, request.app.state.settings, database_url=database.url
        )
    return ok(
        "Optimisation terminée",
        data=report.to_dict(),
        report=report.render_text(),
    )


@router.get("/health", include_in_schema=False)
async def health_check(database: Database = Depends(get_database)) -> JSONResponse:
    checks = {"database": "ok"}
    status_code = 200
    try:
        async with database.session() as session:
            await session.execute(text("SELECT 1"))
    except Exception:  # pragma: no cover - depends on runtime DB availability
        logger.exception("Health check database probe failed")
        checks["database"] = "error"
        status_code = 503
    return JSONResponse(
        {"status": "ok" if status_code == 200 else "error", "checks": checks},
        status_code=status_code,
    )


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
