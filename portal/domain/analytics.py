"""News analytics: event tracking, daily rollups and aggregated statistics.

Raw `ViewEvent`/`ShareEvent` rows are appended by `track_view`/`track_share`.
Each tracked event schedules a background refresh of the article's
`DailyNewsStats` row for that day; reports read the rollups only.

Example:
    service = NewsAnalyticsService(database.session_factory, cache)
    await service.track_view(news_id, TrackingContext(session_id="abc"))
    snapshot = await service.get_global_stats(30)
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import delete, distinct, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portal.core.cache import CacheKeys, CacheTags, CacheTTL, TaggedCache
from portal.core.error_handler import safe_background_task
from portal.core.metrics import ANALYTICS_EVENTS_TOTAL
from portal.core.result import (
    DatabaseError,
    NotFoundError,
    Result,
    ValidationError,
    failure,
    success,
)
from portal.core.time_utils import day_bounds, ensure_utc, utc_now
from portal.domain.analytics_models import (
    SHARE_PLATFORMS,
    DailyNewsStats,
    ShareEvent,
    ViewEvent,
    classify_user_agent,
)
from portal.domain.models import News

logger = logging.getLogger(__name__)

MIN_PERIOD_DAYS = 1
MAX_PERIOD_DAYS = 365
TOP_ARTICLES_LIMIT = 10
TOP_COUNTRIES_LIMIT = 5
TREND_WINDOW_DAYS = 7


def clamp_period(period_days: Any) -> int:
    try:
        days = int(period_days)
    except (TypeError, ValueError):
        days = 30
    return max(MIN_PERIOD_DAYS, min(MAX_PERIOD_DAYS, days))


def ratio_percent(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    return round(numerator / denominator * 100, 2)


def growth_percent(current: float, previous: float) -> float:
    if not previous:
        return 0.0
    return round((current - previous) / previous * 100, 2)


def calculate_trend(daily_views: list[int]) -> str:
    """Compare the mean of the last 7 days with the 7 days before them."""
    if len(daily_views) < 2:
        return "stable"
    recent = daily_views[-TREND_WINDOW_DAYS:]
    previous = daily_views[-2 * TREND_WINDOW_DAYS:-TREND_WINDOW_DAYS]
    if not previous:
        return "stable"
    recent_avg = sum(recent) / len(recent)
    previous_avg = sum(previous) / len(previous)
    if recent_avg > previous_avg * 1.1:
        return "growing"
    if recent_avg < previous_avg * 0.9:
        return "declining"
    return "stable"


@dataclass(frozen=True)
class TrackingContext:
    """Request-derived data attached to a view or share event."""

    session_id: str
    user_id: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    reading_time: float = 0
    scroll_depth: float = 0
    video_watched: bool = False
    video_current_time: float = 0
    video_duration: float = 0
    platform: Optional[str] = None
    share_url: Optional[str] = None
    share_text: Optional[str] = None
    custom_message: Optional[str] = None


@dataclass(frozen=True)
class DailyPoint:
    date: date
    views: int
    shares: int


@dataclass(frozen=True)
class ArticleRanking:
    news_id: int
    title: str
    slug: str
    total_views: int
    total_shares: int
    avg_reading_time: float


@dataclass(frozen=True)
class GlobalOverview:
    total_views: int = 0
    total_unique_views: int = 0
    total_shares: int = 0
    active_articles: int = 0
    avg_reading_time: float = 0.0
    avg_scroll_depth: float = 0.0
    engagement_rate: float = 0.0


@dataclass(frozen=True)
class GlobalStatsSnapshot:
    start: date
    end: date
    days: int
    overview: GlobalOverview
    daily_breakdown: list[DailyPoint]
    top_articles: list[ArticleRanking]
    views_growth: float
    shares_growth: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": {
                "start": self.start.isoformat(),
                "end": self.end.isoformat(),
                "days": self.days,
            },
            "overview": asdict(self.overview),
            "daily_breakdown": [
                {"date": point.date.isoformat(), "views": point.views, "shares": point.shares}
                for point in self.daily_breakdown
            ],
            "top_articles": [asdict(article) for article in self.top_articles],
            "trends": {
                "views_growth": self.views_growth,
                "shares_growth": self.shares_growth,
            },
        }


@dataclass(frozen=True)
class NewsStats:
    news_id: int
    start: date
    end: date
    total_views: int
    unique_views: int
    total_shares: int
    avg_reading_time: float
    avg_scroll_depth: float
    engagement_rate: float
    shares_by_platform: dict[str, int]
    device_stats: dict[str, int]
    daily: list[dict[str, Any]] = field(default_factory=list)
    peak_day: Optional[dict[str, Any]] = None
    trend: str = "stable"

    def to_dict(self) -> dict[str, Any]:
        return {
            "news_id": self.news_id,
            "period": {"start": self.start.isoformat(), "end": self.end.isoformat()},
            "totals": {
                "total_views": self.total_views,
                "unique_views": self.unique_views,
                "total_shares": self.total_shares,
                "avg_reading_time": self.avg_reading_time,
                "avg_scroll_depth": self.avg_scroll_depth,
                "engagement_rate": self.engagement_rate,
                "shares_by_platform": self.shares_by_platform,
                "device_stats": self.device_stats,
            },
            "daily_stats": self.daily,
            "summary": {
                "days_with_data": len(self.daily),
                "peak_day": self.peak_day,
                "trend": self.trend,
            },
        }


class NewsAnalyticsService:
    """Tracks article views/shares and serves rollup-based statistics."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: TaggedCache,
        *,
        global_stats_ttl: timedelta = CacheTTL.GLOBAL_STATS,
        schedule_rollups: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session_factory = session_factory
        self._cache = cache
        self._global_stats_ttl = global_stats_ttl
        self._schedule_rollups = schedule_rollups
        self._clock = clock
        self._pending: set[asyncio.Task] = set()

    def _today(self) -> date:
        return ensure_utc(self._clock()).date()

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    async def track_view(self, news_id: int, context: TrackingContext) -> Optional[ViewEvent]:
        """Record a view. Returns None (and logs) instead of raising."""
        is_bot, device_type = classify_user_agent(context.user_agent)
        try:
            async with self._session_factory() as session:
                news = await session.get(News, news_id)
                if news is None:
                    logger.warning("View tracked for unknown article", extra={"news_id": news_id})
                    ANALYTICS_EVENTS_TOTAL.labels(kind="view", outcome="unknown_article").inc()
                    return None

                event = ViewEvent(
                    news_id=news_id,
                    session_id=context.session_id,
                    user_id=context.user_id,
                    ip=context.ip,
                    user_agent=context.user_agent,
                    referrer=context.referrer,
                    country=context.country,
                    city=context.city,
                    reading_time=max(context.reading_time or 0, 0),
                    scroll_depth=min(max(context.scroll_depth or 0, 0), 100),
                    video_watched=bool(context.video_watched),
                    video_current_time=context.video_current_time or 0,
                    video_duration=context.video_duration or 0,
                    device_type=device_type,
                    is_bot=is_bot,
                    timestamp=self._clock(),
                )
                session.add(event)
                if not is_bot:
                    news.view_count = (news.view_count or 0) + 1
                await session.commit()
        except (SQLAlchemyError, OSError):
            logger.exception("Failed to track view", extra={"news_id": news_id})
            ANALYTICS_EVENTS_TOTAL.labels(kind="view", outcome="error").inc()
            return None

        ANALYTICS_EVENTS_TOTAL.labels(kind="view", outcome="bot" if is_bot else "recorded").inc()
        self._schedule_rollup(news_id, event.timestamp)
        return event

    async def track_share(self, news_id: int, context: TrackingContext) -> Optional[ShareEvent]:
        """Record a share. Same contract as `track_view`."""
        platform = context.platform if context.platform in SHARE_PLATFORMS else "other"
        is_bot, _ = classify_user_agent(context.user_agent)
        try:
            async with self._session_factory() as session:
                if await session.get(News, news_id) is None:
                    logger.warning("Share tracked for unknown article", extra={"news_id": news_id})
                    ANALYTICS_EVENTS_TOTAL.labels(kind="share", outcome="unknown_article").inc()
                    return None

                event = ShareEvent(
                    news_id=news_id,
                    platform=platform,
                    session_id=context.session_id,
                    user_id=context.user_id,
                    ip=context.ip,
                    user_agent=context.user_agent,
                    referrer=context.referrer,
                    share_url=context.share_url,
                    share_text=context.share_text,
                    custom_message=context.custom_message,
                    country=context.country,
                    city=context.city,
                    is_bot=is_bot,
                    timestamp=self._clock(),
                )
                session.add(event)
                await session.commit()
        except (SQLAlchemyError, OSError):
            logger.exception("Failed to track share", extra={"news_id": news_id})
            ANALYTICS_EVENTS_TOTAL.labels(kind="share", outcome="error").inc()
            return None

        ANALYTICS_EVENTS_TOTAL.labels(kind="share", outcome="bot" if is_bot else "recorded").inc()
        self._schedule_rollup(news_id, event.timestamp)
        return event

    def _schedule_rollup(self, news_id: int, moment: datetime) -> None:
        if not self._schedule_rollups:
            return
        day = ensure_utc(moment).date()
        task = safe_background_task(
            f"daily_stats:{news_id}:{day.isoformat()}",
            self.update_daily_stats(news_id, day),
        )
        self._pending.add(task)
        task.add_done_callback(self._forget)

    def _forget(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled():
            # Already logged by safe_background_task.
            task.exception()

    async def wait_for_pending(self) -> None:
        """Await rollups scheduled by tracking calls (tests, shutdown)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Daily rollups
    # ------------------------------------------------------------------

    async def update_daily_stats(self, news_id: int, day: date) -> Optional[DailyNewsStats]:
        """Rebuild the (article, day) rollup from raw events and upsert it.

        While a row is incomplete its view and share totals only grow. Once
        the day is over the row is marked complete and takes the recomputed
        values as-is.
        """
        for attempt in (1, 2):
            try:
                row = await self._upsert_daily_stats(news_id, day)
            except IntegrityError:
                # Concurrent insert of the same (news_id, date); the retry updates it.
                if attempt == 2:
                    raise
                logger.debug(
                    "Daily stats insert raced, retrying",
                    extra={"news_id": news_id, "day": day.isoformat()},
                )
                continue
            break

        self._cache.invalidate_by_tags([CacheTags.article(news_id)])
        self._cache.invalidate_by_pattern(f"news:stats:{news_id}:*")
        return row

    async def _upsert_daily_stats(self, news_id: int, day: date) -> DailyNewsStats:
        start, end = day_bounds(day)
        in_window = (
            ViewEvent.news_id == news_id,
            ViewEvent.is_bot.is_(False),
            ViewEvent.timestamp >= start,
            ViewEvent.timestamp < end,
        )
        share_window = (
            ShareEvent.news_id == news_id,
            ShareEvent.is_bot.is_(False),
            ShareEvent.timestamp >= start,
            ShareEvent.timestamp < end,
        )

        async with self._session_factory() as session:
            views = (
                await session.execute(
                    select(
                        func.count(ViewEvent.id),
                        func.count(distinct(ViewEvent.session_id)),
                        func.avg(ViewEvent.reading_time),
                        func.avg(ViewEvent.scroll_depth),
                    ).where(*in_window)
                )
            ).one()
            devices = (
                await session.execute(
                    select(ViewEvent.device_type, func.count(ViewEvent.id))
                    .where(*in_window)
                    .group_by(ViewEvent.device_type)
                )
            ).all()
            countries = (
                await session.execute(
                    select(ViewEvent.country, func.count(ViewEvent.id).label("views"))
                    .where(*in_window, ViewEvent.country.is_not(None))
                    .group_by(ViewEvent.country)
                    .order_by(func.count(ViewEvent.id).desc(), ViewEvent.country)
                    .limit(TOP_COUNTRIES_LIMIT)
                )
            ).all()
            shares = (
                await session.execute(
                    select(ShareEvent.platform, func.count(ShareEvent.id))
                    .where(*share_window)
                    .group_by(ShareEvent.platform)
                )
            ).all()

            total_views = int(views[0] or 0)
            shares_by_platform = {platform: int(count) for platform, count in shares}
            total_shares = sum(shares_by_platform.values())
            is_complete = day < self._today()

            row = (
                await session.execute(
                    select(DailyNewsStats).where(
                        DailyNewsStats.news_id == news_id, DailyNewsStats.date == day
                    )
                )
            ).scalar_one_or_none()
            if row is None:
                row = DailyNewsStats(news_id=news_id, date=day)
                session.add(row)
                previous_views = previous_shares = 0
            elif row.is_complete:
                previous_views = previous_shares = 0
            else:
                previous_views, previous_shares = row.total_views, row.total_shares

            if is_complete:
                row.total_views = total_views
                row.total_shares = total_shares
            else:
                row.total_views = max(previous_views, total_views)
                row.total_shares = max(previous_shares, total_shares)
            row.unique_views = int(views[1] or 0)
            row.avg_reading_time = round(float(views[2] or 0), 2)
            row.avg_scroll_depth = round(float(views[3] or 0), 2)
            row.shares_by_platform = shares_by_platform
            row.device_stats = {device: int(count) for device, count in devices}
            row.top_countries = [
                {"country": country, "views": int(count)} for country, count in countries
            ]
            row.is_complete = is_complete
            row.last_updated = self._clock()
            await session.commit()
            return row

    async def refresh_incomplete_stats(self, window_days: int = 7, batch_size: int = 50) -> int:
        """Recompute incomplete rollups of the recent window; returns how many were refreshed."""
        since = self._today() - timedelta(days=window_days)
        async with self._session_factory() as session:
            pending = (
                await session.execute(
                    select(DailyNewsStats.news_id, DailyNewsStats.date)
                    .where(DailyNewsStats.is_complete.is_(False), DailyNewsStats.date >= since)
                    .order_by(DailyNewsStats.date)
                    .limit(batch_size)
                )
            ).all()

        refreshed = 0
        for news_id, day in pending:
            await self.update_daily_stats(news_id, day)
            refreshed += 1
        return refreshed

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def get_global_stats(self, period_days: int = 30) -> GlobalStatsSnapshot:
        days = clamp_period(period_days)
        return await self._cache.wrap(
            CacheKeys.global_stats(days),
            lambda: self._compute_global_stats(days),
            ttl=self._global_stats_ttl,
            tags=(CacheTags.ANALYTICS, CacheTags.GLOBAL),
        )

    async def _compute_global_stats(self, days: int) -> GlobalStatsSnapshot:
        end = self._today()
        start = end - timedelta(days=days - 1)
        previous_end = start - timedelta(days=1)
        previous_start = previous_end - timedelta(days=days - 1)
        window = (DailyNewsStats.date >= start, DailyNewsStats.date <= end)

        async with self._session_factory() as session:
            totals = (
                await session.execute(
                    select(
                        func.coalesce(func.sum(DailyNewsStats.total_views), 0),
                        func.coalesce(func.sum(DailyNewsStats.unique_views), 0),
                        func.coalesce(func.sum(DailyNewsStats.total_shares), 0),
                        func.avg(DailyNewsStats.avg_reading_time),
                        func.avg(DailyNewsStats.avg_scroll_depth),
                        func.count(distinct(DailyNewsStats.news_id)),
                    ).where(*window)
                )
            ).one()
            breakdown = (
                await session.execute(
                    select(
                        DailyNewsStats.date,
                        func.sum(DailyNewsStats.total_views),
                        func.sum(DailyNewsStats.total_shares),
                    )
                    .where(*window)
                    .group_by(DailyNewsStats.date)
                    .order_by(DailyNewsStats.date)
                )
            ).all()
            previous = (
                await session.execute(
                    select(
                        func.coalesce(func.sum(DailyNewsStats.total_views), 0),
                        func.coalesce(func.sum(DailyNewsStats.total_shares), 0),
                    ).where(
                        DailyNewsStats.date >= previous_start,
                        DailyNewsStats.date <= previous_end,
                    )
                )
            ).one()
            top_articles = await self._rank_articles(session, start, end, TOP_ARTICLES_LIMIT)

        total_views, total_unique, total_shares = (int(value) for value in totals[:3])
        overview = GlobalOverview(
            total_views=total_views,
            total_unique_views=total_unique,
            total_shares=total_shares,
            active_articles=int(totals[5] or 0),
            avg_reading_time=round(float(totals[3] or 0), 2),
            avg_scroll_depth=round(float(totals[4] or 0), 2),
            engagement_rate=ratio_percent(total_shares, total_views),
        )
        return GlobalStatsSnapshot(
            start=start,
            end=end,
            days=days,
            overview=overview,
            daily_breakdown=[
                DailyPoint(date=day, views=int(views or 0), shares=int(shares or 0))
                for day, views, shares in breakdown
            ],
            top_articles=top_articles,
            views_growth=growth_percent(total_views, int(previous[0])),
            shares_growth=growth_percent(total_shares, int(previous[1])),
        )

    async def _rank_articles(
        self, session: AsyncSession, start: date, end: date, limit: int
    ) -> list[ArticleRanking]:
        views = func.sum(DailyNewsStats.total_views)
        rows = (
            await session.execute(
                select(
                    DailyNewsStats.news_id,
                    News.title,
                    News.slug,
                    views,
                    func.sum(DailyNewsStats.total_shares),
                    func.avg(DailyNewsStats.avg_reading_time),
                )
                .join(News, News.id == DailyNewsStats.news_id)
                .where(DailyNewsStats.date >= start, DailyNewsStats.date <= end)
                .group_by(DailyNewsStats.news_id, News.title, News.slug)
                .order_by(views.desc(), DailyNewsStats.news_id)
                .limit(limit)
            )
        ).all()
        return [
            ArticleRanking(
                news_id=news_id,
                title=title,
                slug=slug,
                total_views=int(total_views or 0),
                total_shares=int(total_shares or 0),
                avg_reading_time=round(float(reading or 0), 2),
            )
            for news_id, title, slug, total_views, total_shares, reading in rows
        ]

    async def top_articles_since(self, days: int = 30, limit: int = 20) -> list[ArticleRanking]:
        end = self._today()
        start = end - timedelta(days=max(days, 1) - 1)
        async with self._session_factory() as session:
            return await self._rank_articles(session, start, end, limit)

    async def get_news_stats(
        self, news_id: int, start: date, end: date
    ) -> Result[NewsStats, NotFoundError | ValidationError | DatabaseError]:
        if start > end:
            return failure(
                ValidationError(field="start", message="must not be after end", value=str(start))
            )
        try:
            async with self._session_factory() as session:
                if await session.get(News, news_id) is None:
                    return failure(NotFoundError(entity_type="News", entity_id=news_id))
                rows = (
                    await session.execute(
                        select(DailyNewsStats)
                        .where(
                            DailyNewsStats.news_id == news_id,
                            DailyNewsStats.date >= start,
                            DailyNewsStats.date <= end,
                        )
                        .order_by(DailyNewsStats.date)
                    )
                ).scalars().all()
        except SQLAlchemyError as exc:
            logger.exception("Failed to load news stats", extra={"news_id": news_id})
            return failure(
                DatabaseError(operation="get_news_stats", message=str(exc), original_exception=exc)
            )

        return success(self._summarize(news_id, start, end, rows))

    @staticmethod
    def _summarize(
        news_id: int, start: date, end: date, rows: Iterable[DailyNewsStats]
    ) -> NewsStats:
        rows = list(rows)
        platforms: Counter[str] = Counter()
        devices: Counter[str] = Counter()
        for row in rows:
            platforms.update(row.shares_by_platform or {})
            devices.update(row.device_stats or {})

        total_views = sum(row.total_views for row in rows)
        total_shares = sum(row.total_shares for row in rows)
        peak = None
        for row in rows:
            if row.total_views > (peak.total_views if peak else 0):
                peak = row

        def _mean(values: list[float]) -> float:
            return round(sum(values) / len(values), 2) if values else 0.0

        return NewsStats(
            news_id=news_id,
            start=start,
            end=end,
            total_views=total_views,
            unique_views=sum(row.unique_views for row in rows),
            total_shares=total_shares,
            avg_reading_time=_mean([row.avg_reading_time for row in rows]),
            avg_scroll_depth=_mean([row.avg_scroll_depth for row in rows]),
            engagement_rate=ratio_percent(total_shares, total_views),
            shares_by_platform=dict(platforms),
            device_stats=dict(devices),
            daily=[row.to_dict() for row in rows],
            peak_day=peak.to_dict() if peak else None,
            trend=calculate_trend([row.total_views for row in rows]),
        )

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    async def purge_bot_events(self, cutoff: datetime) -> dict[str, int]:
        """Delete bot-flagged events older than `cutoff`, one transaction per table."""
        deleted: dict[str, int] = {}
        for model in (ViewEvent, ShareEvent):
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(model).where(model.is_bot.is_(True), model.timestamp < cutoff)
                )
                await session.commit()
                deleted[model.__tablename__] = int(result.rowcount or 0)
        logger.info("Purged bot analytics events", extra={"cutoff": cutoff.isoformat(), **deleted})
        return deleted

    async def cleanup_old_stats(self, retention_days: int = 730) -> dict[str, Any]:
        cutoff = self._today() - timedelta(days=retention_days)
        async with self._session_factory() as session:
            result = await session.execute(
                delete(DailyNewsStats).where(DailyNewsStats.date < cutoff)
            )
            await session.commit()
        deleted = int(result.rowcount or 0)
        logger.info(
            "Removed old daily stats",
            extra={"cutoff": cutoff.isoformat(), "deleted_stats": deleted},
        )
        return {"cutoff": cutoff.isoformat(), "deleted_stats": deleted}


__all__ = [
    "ArticleRanking",
    "DailyPoint",
    "GlobalOverview",
    "GlobalStatsSnapshot",
    "NewsAnalyticsService",
    "NewsStats",
    "TrackingContext",
    "calculate_trend",
    "clamp_period",
    "growth_percent",
    "ratio_percent",
]
