"""Frequent query shapes the maintenance run checks index coverage for."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence


@dataclass(frozen=True)
class QueryShape:
    pattern: str
    frequency: str  # high, medium, low
    table: str
    columns: tuple[str, ...] = ()


class FrequentQueryPolicy(Protocol):
    def frequent_queries(self) -> Sequence[QueryShape]: ...


DEFAULT_QUERY_SHAPES = (
    QueryShape("news WHERE status = 'published'", "high", "news", ("status",)),
    QueryShape(
        "daily_news_stats GROUP BY date (SUM total_views)",
        "medium",
        "daily_news_stats",
        ("date",),
    ),
    QueryShape("view_events WHERE news_id = ?", "high", "view_events", ("news_id",)),
)


class StaticQueryCatalogue:
    """Fixed list of shapes; swap for a profiler-backed policy when one exists."""

    def __init__(self, shapes: Sequence[QueryShape] = DEFAULT_QUERY_SHAPES):
        self._shapes = tuple(shapes)

    def frequent_queries(self) -> Sequence[QueryShape]:
        return self._shapes


__all__ = ["DEFAULT_QUERY_SHAPES", "FrequentQueryPolicy", "QueryShape", "StaticQueryCatalogue"]
