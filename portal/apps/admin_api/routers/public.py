"""Read-only endpoints consumed by the public site: news and search."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.apps.admin_api.dependencies import get_cache, get_session
from portal.apps.admin_api.responses import error_response, ok
from portal.core.cache import CacheKeys, CacheTags, CacheTTL, TaggedCache
from portal.core.result import Failure, Success
from portal.domain.models import Document, Establishment, News, Service
from portal.repositories import NewsRepository, text_filter

router = APIRouter(prefix="/api", tags=["public"])

SEARCH_MIN_LENGTH = 2


@router.get("/news")
async def list_news(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    category: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
    cache: TaggedCache = Depends(get_cache),
):
    key = CacheKeys.news_list(page, limit, category)
    cached = cache.get(key)
    if cached is not None:
        return ok(**cached)

    repository = NewsRepository(session)
    listing = await repository.list_published(
        limit=limit, offset=(page - 1) * limit, category=category
    )
    if listing.is_failure():
        return error_response(listing.error)
    criteria = [News.status == "published"]
    if category:
        criteria.append(News.category == category)
    total = await repository.count(*criteria)
    if total.is_failure():
        return error_response(total.error)

    payload = {
        "data": [news.to_summary() for news in listing.unwrap()],
        "pagination": {"page": page, "limit": limit, "total": total.unwrap()},
    }
    cache.set(key, payload, ttl=CacheTTL.SHORT, tags=(CacheTags.NEWS,))
    return ok(**payload)


@router.get("/news/{id_or_slug}")
async def get_news(
    id_or_slug: str,
    session: AsyncSession = Depends(get_session),
    cache: TaggedCache = Depends(get_cache),
):
    if id_or_slug.isdigit():
        cached = cache.get(CacheKeys.news_details(int(id_or_slug)))
        if cached is not None:
            return ok(data=cached)

    match await NewsRepository(session).get_published(id_or_slug):
        case Success(news):
            details = news.to_dict()
            cache.set(
                CacheKeys.news_details(news.id),
                details,
                ttl=CacheTTL.MEDIUM,
                tags=(CacheTags.NEWS, CacheTags.article(news.id)),
            )
            return ok(data=details)
        case Failure(error):
            return error_response(error)


@router.get("/search")
async def search(
    q: str = Query(default="", max_length=100),
    limit: int = Query(default=10, ge=1, le=50),
    session: AsyncSession = Depends(get_session),
):
    term = q.strip()
    if len(term) < SEARCH_MIN_LENGTH:
        return ok(data={"news": [], "services": [], "documents": [], "establishments": []})

    news = (
        await session.execute(
            select(News)
            .where(News.status == "published", text_filter(term, News.title, News.summary))
            .order_by(News.published_at.desc(), News.id.desc())
            .limit(limit)
        )
    ).scalars().all()
    services = (
        await session.execute(
            select(Service)
            .where(
                Service.active.is_(True),
                Service.status == "published",
                text_filter(term, Service.name, Service.description),
            )
            .order_by(Service.sort_order, Service.name)
            .limit(limit)
        )
    ).scalars().all()
    documents = (
        await session.execute(
            select(Document)
            .where(
                Document.status == "published",
                text_filter(term, Document.title, Document.description),
            )
            .order_by(Document.published_at.desc())
            .limit(limit)
        )
    ).scalars().all()
    establishments = (
        await session.execute(
            select(Establishment)
            .where(
                Establishment.active.is_(True),
                text_filter(term, Establishment.name, Establishment.city, Establishment.region),
            )
            .order_by(Establishment.name)
            .limit(limit)
        )
    ).scalars().all()

    return ok(
        query=term,
        data={
            "news": [item.to_summary() for item in news],
            "services": [
                {"id": item.id, "name": item.name, "category": item.category, "url": item.url}
                for item in services
            ],
            "documents": [
                {"id": item.id, "title": item.title, "category": item.category, "url": item.url}
                for item in documents
            ],
            "establishments": [
                {"id": item.id, "name": item.name, "city": item.city, "region": item.region}
                for item in establishments
            ],
        },
    )
