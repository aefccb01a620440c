"""FastAPI dependencies resolving the per-process objects kept on `app.state`."""

from __future__ import annotations

from typing import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.cache import TaggedCache
from portal.core.db import Database
from portal.domain.analytics import NewsAnalyticsService


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_cache(request: Request) -> TaggedCache:
    return request.app.state.cache


def get_analytics(request: Request) -> NewsAnalyticsService:
    return request.app.state.analytics


async def get_session(database: Database = Depends(get_database)) -> AsyncIterator[AsyncSession]:
    async with database.session() as session:
        yield session


__all__ = ["get_analytics", "get_cache", "get_database", "get_session"]
