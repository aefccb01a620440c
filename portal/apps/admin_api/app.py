"""FastAPI application wiring for the portal API."""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from portal.apps.admin_api.responses import validation_exception_handler
from portal.apps.admin_api.routers import (
    admin,
    analytics,
    catalog,
    directors,
    logs,
    public,
    stats,
)
from portal.apps.admin_api.security import limiter
from portal.core.cache import CacheConfig, TaggedCache
from portal.core.db import Database
from portal.core.error_handler import GracefulShutdown
from portal.core.logging import configure_logging
from portal.core.settings import Settings, get_settings
from portal.domain.analytics import NewsAnalyticsService
from portal.maintenance.scheduler import create_maintenance_scheduler

request_logger = logging.getLogger("portal.requests")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: schema, cache sweeper, maintenance schedule."""
    settings: Settings = app.state.settings
    database: Database = app.state.database
    cache: TaggedCache = app.state.cache
    logger.info("Starting portal API...")

    if settings.auto_create_schema:
        await database.create_all()

    shutdown_manager = GracefulShutdown(timeout=15.0)
    shutdown_manager.add_task(cache.start_cleanup_task())
    logger.info("Cache sweeper started")

    scheduler = None
    try:
        scheduler = create_maintenance_scheduler(
            cache, settings, lock=app.state.maintenance_lock
        )
        if scheduler is not None:
            scheduler.start()
            logger.info("Maintenance scheduler started")
    except Exception as exc:
        logger.error("Maintenance scheduler failed to start: %s", exc, exc_info=True)
        scheduler = None

    app.state.scheduler = scheduler
    routes = [r.path for r in app.routes if hasattr(r, "path")]
    logger.info("Application started with %d routes", len(routes))

    try:
        yield
    finally:
        logger.info("Shutting down application...")
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        cache.stop_cleanup_task()
        await shutdown_manager.shutdown()
        await app.state.analytics.wait_for_pending()
        await database.dispose()
        logger.info("Application shut down complete")


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    cache: Optional[TaggedCache] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)
    docs_url = "/docs" if settings.admin_docs_enabled else None
    redoc_url = "/redoc" if settings.admin_docs_enabled else None
    openapi_url = "/openapi.json" if settings.admin_docs_enabled else None

    app = FastAPI(
        title="Ministry Portal API",
        lifespan=lifespan,
        docs_url=docs_url,
        redoc_url=redoc_url,
        openapi_url=openapi_url,
    )

    if database is None:
        database = Database(settings=settings)
    if cache is None:
        cache = TaggedCache(CacheConfig.from_settings(settings))
    app.state.settings = settings
    app.state.database = database
    app.state.cache = cache
    app.state.maintenance_lock = asyncio.Lock()
    app.state.analytics = NewsAnalyticsService(
        database.session_factory,
        cache,
        global_stats_ttl=timedelta(seconds=settings.analytics_global_stats_ttl_seconds),
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # Analytics before public: /api/news/analytics must not match /api/news/{id_or_slug}.
    app.include_router(analytics.router)
    app.include_router(public.router)
    app.include_router(directors.router)
    app.include_router(catalog.router)
    app.include_router(stats.router)
    app.include_router(logs.router)
    app.include_router(admin.router)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration = (time.perf_counter() - start) * 1000
            request_logger.exception(
                "HTTP %s %s failed",
                request.method,
                request.url.path,
                extra={"path": request.url.path, "method": request.method, "duration_ms": duration},
            )
            raise
        duration = (time.perf_counter() - start) * 1000
        request_logger.info(
            "HTTP %s %s -> %s (%.1f ms)",
            request.method,
            request.url.path,
            response.status_code,
            duration,
        )
        return response

    return app


__all__ = ["create_app", "lifespan"]
