"""Yearly education statistics and the homepage headline figures."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.result import DatabaseError, Result, success
from portal.domain.models import Establishment, News, YearlyStatistic
from portal.repositories import (
    EstablishmentRepository,
    NewsRepository,
    YearlyStatisticRepository,
)


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def total_students(figures: Mapping[str, Any]) -> int:
    return _as_int(figures.get("totalStudents"))


def total_teachers(figures: Mapping[str, Any]) -> int:
    """Public university staff summed over grades, plus private institutions."""
    public = sum(_as_int(grade.get("total")) for grade in figures.get("publicUniversities") or [])
    private = _as_int((figures.get("privateInstitutions") or {}).get("total"))
    return public + private


def institution_split(figures: Mapping[str, Any]) -> tuple[int, int]:
    return _as_int(figures.get("totalPublic")), _as_int(figures.get("totalPrivate"))


def _year(row: Optional[YearlyStatistic]) -> Optional[int]:
    return row.year if row is not None else None


async def homepage_stats(session: AsyncSession) -> Result[dict[str, Any], DatabaseError]:
    """Latest year of each kind, with establishment counts when no institution figures exist."""
    stats = YearlyStatisticRepository(session)
    latest: dict[str, Optional[YearlyStatistic]] = {}
    for kind in ("students", "teachers", "institutions"):
        result = await stats.latest(kind)
        if result.is_failure():
            return result
        latest[kind] = result.unwrap()

    establishments = EstablishmentRepository(session)
    counted = await establishments.count()
    if counted.is_failure():
        return counted
    published = await NewsRepository(session).count(News.status == "published")
    if published.is_failure():
        return published

    institutions = latest["institutions"]
    if institutions is not None:
        public, private = institution_split(institutions.figures or {})
    else:
        public_count = await establishments.count(Establishment.status == "public")
        private_count = await establishments.count(Establishment.status == "private")
        for result in (public_count, private_count):
            if result.is_failure():
                return result
        public, private = public_count.unwrap(), private_count.unwrap()

    students, teachers = latest["students"], latest["teachers"]
    return success(
        {
            "students": {
                "total": total_students(students.figures or {}) if students else 0,
                "year": _year(students),
            },
            "teachers": {
                "total": total_teachers(teachers.figures or {}) if teachers else 0,
                "year": _year(teachers),
            },
            "institutions": {
                "total": public + private,
                "public": public,
                "private": private,
                "year": _year(institutions),
            },
            "establishments": counted.unwrap(),
            "publishedNews": published.unwrap(),
        }
    )


__all__ = [
    "homepage_stats",
    "institution_split",
    "total_students",
    "total_teachers",
]
