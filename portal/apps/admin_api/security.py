"""Rate limiting for the public write endpoints."""

from __future__ import annotations

import logging

from fastapi import Request
from slowapi import Limiter

from portal.core.settings import get_settings

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """
    Extract client IP from request, honouring X-Forwarded-For when
    TRUST_PROXY_HEADERS is set (portal deployed behind a reverse proxy).
    """
    if get_settings().trust_proxy_headers:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            # "client, proxy1, proxy2": leftmost entry is the client
            client_ip = forwarded_for.split(",")[0].strip()
            if client_ip:
                return client_ip
    return request.client.host if request and request.client else "unknown"


def tracking_limit() -> str:
    return get_settings().rate_limit_tracking


def _build_limiter() -> Limiter:
    settings = get_settings()
    if settings.rate_limit_enabled:
        logger.info(
            "Rate limiter using in-memory storage",
            extra={"tracking_limit": settings.rate_limit_tracking},
        )
    return Limiter(
        key_func=get_client_ip,
        default_limits=[],
        enabled=settings.rate_limit_enabled,
    )


limiter = _build_limiter()


__all__ = ["get_client_ip", "limiter", "tracking_limit"]
