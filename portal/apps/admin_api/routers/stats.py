"""Yearly statistics (students, teachers, institutions) and homepage figures."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from portal.apps.admin_api.dependencies import get_cache, get_session
from portal.apps.admin_api.responses import error_response, ok
from portal.apps.admin_api.routers.catalog import (
    create_entity,
    delete_entity,
    row_to_dict,
    update_entity,
)
from portal.apps.admin_api.schemas import StatisticPayload
from portal.core.cache import CacheKeys, CacheTags, CacheTTL, TaggedCache
from portal.core.result import Failure, NotFoundError, Success, failure
from portal.domain.models import YearlyStatistic
from portal.domain.statistics import homepage_stats
from portal.repositories import YearlyStatisticRepository

router = APIRouter(prefix="/api/stats", tags=["stats"])

StatKind = Literal["students", "teachers", "institutions"]


def _invalidate_on_success(response: JSONResponse, cache: TaggedCache) -> JSONResponse:
    if response.status_code < 400:
        cache.invalidate_by_tags([CacheTags.STATS])
    return response


async def _fetch(repository: YearlyStatisticRepository, kind: str, stat_id: int):
    """Fetch a row; one filed under another kind counts as missing."""
    result = await repository.get(stat_id)
    if result.is_success() and result.unwrap().kind != kind:
        return failure(NotFoundError(entity_type="YearlyStatistic", entity_id=stat_id))
    return result


@router.get("/homepage")
async def get_homepage_stats(
    session: AsyncSession = Depends(get_session),
    cache: TaggedCache = Depends(get_cache),
):
    key = CacheKeys.homepage_stats()
    cached = cache.get(key)
    if cached is not None:
        return ok(data=cached)

    result = await homepage_stats(session)
    if result.is_failure():
        return error_response(result.error)
    figures = result.unwrap()
    cache.set(key, figures, ttl=CacheTTL.MEDIUM, tags=(CacheTags.STATS,))
    return ok(data=figures)


@router.get("/{kind}")
async def list_statistics(kind: StatKind, session: AsyncSession = Depends(get_session)):
    result = await YearlyStatisticRepository(session).list(
        YearlyStatistic.kind == kind, order_by=YearlyStatistic.year.desc()
    )
    if result.is_failure():
        return error_response(result.error)
    return ok(data=[row_to_dict(item) for item in result.unwrap()])


@router.post("/{kind}", status_code=status.HTTP_201_CREATED)
async def create_statistic(
    kind: StatKind,
    payload: StatisticPayload,
    session: AsyncSession = Depends(get_session),
    cache: TaggedCache = Depends(get_cache),
):
    response = await create_entity(
        YearlyStatisticRepository(session),
        YearlyStatistic,
        {**payload.values(), "kind": kind},
        "Statistique",
    )
    return _invalidate_on_success(response, cache)


@router.get("/{kind}/{stat_id}")
async def get_statistic(
    kind: StatKind, stat_id: int, session: AsyncSession = Depends(get_session)
):
    match await _fetch(YearlyStatisticRepository(session), kind, stat_id):
        case Success(row):
            return ok(data=row_to_dict(row))
        case Failure(error):
            return error_response(error)


@router.put("/{kind}/{stat_id}")
async def update_statistic(
    kind: StatKind,
    stat_id: int,
    payload: StatisticPayload,
    session: AsyncSession = Depends(get_session),
    cache: TaggedCache = Depends(get_cache),
):
    repository = YearlyStatisticRepository(session)
    found = await _fetch(repository, kind, stat_id)
    if found.is_failure():
        return error_response(found.error)
    response = await update_entity(repository, stat_id, payload.changes(), "Statistique")
    return _invalidate_on_success(response, cache)


@router.delete("/{kind}/{stat_id}")
async def delete_statistic(
    kind: StatKind,
    stat_id: int,
    session: AsyncSession = Depends(get_session),
    cache: TaggedCache = Depends(get_cache),
):
    repository = YearlyStatisticRepository(session)
    found = await _fetch(repository, kind, stat_id)
    if found.is_failure():
        return error_response(found.error)
    response = await delete_entity(repository, stat_id, "Statistique")
    return _invalidate_on_success(response, cache)
