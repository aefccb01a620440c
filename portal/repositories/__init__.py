"""Repositories for portal content tables."""

from __future__ import annotations

from typing import Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.result import DatabaseError, NotFoundError, Result, failure, success
from portal.core.sanitizers import escape_like
from portal.domain.models import (
    Alert,
    Director,
    Document,
    Establishment,
    Event,
    News,
    Service,
    SystemLog,
    YearlyStatistic,
)

from .base import BaseRepository


class NewsRepository(BaseRepository[News]):
    def __init__(self, session: AsyncSession):
        super().__init__(News, session)

    async def get_published(self, id_or_slug: str) -> Result[News, NotFoundError | DatabaseError]:
        criteria = [News.status == "published"]
        if id_or_slug.isdigit():
            criteria.append(News.id == int(id_or_slug))
        else:
            criteria.append(News.slug == id_or_slug)
        try:
            news = (await self.session.execute(select(News).where(*criteria))).scalar_one_or_none()
        except SQLAlchemyError as exc:
            return failure(self._db_error("get_published", exc))
        if news is None:
            return failure(NotFoundError(entity_type="News", entity_id=id_or_slug))
        return success(news)

    async def list_published(
        self, *, limit: int, offset: int = 0, category: str | None = None
    ) -> Result[Sequence[News], DatabaseError]:
        criteria = [News.status == "published"]
        if category:
            criteria.append(News.category == category)
        return await self.list(
            *criteria,
            order_by=(News.published_at.desc(), News.id.desc()),
            limit=limit,
            offset=offset,
        )

    async def most_viewed_published(self, limit: int) -> Result[Sequence[News], DatabaseError]:
        return await self.list(
            News.status == "published",
            order_by=(News.view_count.desc(), News.id),
            limit=limit,
        )


class DirectorRepository(BaseRepository[Director]):
    def __init__(self, session: AsyncSession):
        super().__init__(Director, session)

    async def find_active_by_title(
        self, title: str, *, exclude_id: int | None = None
    ) -> Result[Director | None, DatabaseError]:
        stmt = select(Director).where(
            Director.active.is_(True),
            func.lower(Director.title) == title.strip().lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Director.id != exclude_id)
        try:
            holder = (await self.session.execute(stmt.limit(1))).scalar_one_or_none()
        except SQLAlchemyError as exc:
            return failure(self._db_error("find_active_by_title", exc))
        return success(holder)

    async def count_subdirections(self, key: str) -> Result[int, DatabaseError]:
        return await self.count(Director.direction == key)


class EstablishmentRepository(BaseRepository[Establishment]):
    def __init__(self, session: AsyncSession):
        super().__init__(Establishment, session)


class DocumentRepository(BaseRepository[Document]):
    def __init__(self, session: AsyncSession):
        super().__init__(Document, session)


class ServiceRepository(BaseRepository[Service]):
    def __init__(self, session: AsyncSession):
        super().__init__(Service, session)


class EventRepository(BaseRepository[Event]):
    def __init__(self, session: AsyncSession):
        super().__init__(Event, session)


class SystemLogRepository(BaseRepository[SystemLog]):
    def __init__(self, session: AsyncSession):
        super().__init__(SystemLog, session)


class AlertRepository(BaseRepository[Alert]):
    def __init__(self, session: AsyncSession):
        super().__init__(Alert, session)


class YearlyStatisticRepository(BaseRepository[YearlyStatistic]):
    def __init__(self, session: AsyncSession):
        super().__init__(YearlyStatistic, session)

    async def latest(self, kind: str) -> Result[YearlyStatistic | None, DatabaseError]:
        stmt = (
            select(YearlyStatistic)
            .where(YearlyStatistic.kind == kind)
            .order_by(YearlyStatistic.year.desc())
            .limit(1)
        )
        try:
            row = (await self.session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            return failure(self._db_error("latest", exc))
        return success(row)


def text_filter(term: str, *columns):
    """Case-insensitive substring match of `term` on any of `columns`."""
    pattern = f"%{escape_like(term.strip().lower())}%"
    return or_(*(func.lower(column).like(pattern, escape="\\") for column in columns))


__all__ = [
    "AlertRepository",
    "BaseRepository",
    "DirectorRepository",
    "DocumentRepository",
    "EstablishmentRepository",
    "EventRepository",
    "NewsRepository",
    "ServiceRepository",
    "SystemLogRepository",
    "YearlyStatisticRepository",
    "text_filter",
]
