"""Raw analytics events and their per-day rollup.

`view_events` and `share_events` are append-only; `daily_news_stats` is
rebuilt from them by `NewsAnalyticsService.update_daily_stats`.
"""

from __future__ import annotations

import re
import datetime as dt
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from portal.core.time_utils import utc_now

from .base import Base

SHARE_PLATFORMS = ("facebook", "twitter", "linkedin", "whatsapp", "email", "copy", "other")
DEVICE_TYPES = ("mobile", "tablet", "desktop", "unknown")

_BOT_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (r"bot", r"crawl", r"spider", r"scrape", r"facebook", r"twitter", r"linkedin")
)
_MOBILE = re.compile(r"mobile", re.IGNORECASE)
_TABLET = re.compile(r"tablet|ipad", re.IGNORECASE)
_DESKTOP = re.compile(r"desktop|windows|mac|linux", re.IGNORECASE)


def is_bot_user_agent(user_agent: Optional[str]) -> bool:
    if not user_agent:
        return False
    return any(pattern.search(user_agent) for pattern in _BOT_PATTERNS)


def device_type_for(user_agent: Optional[str]) -> str:
    if not user_agent:
        return "unknown"
    if _MOBILE.search(user_agent):
        return "mobile"
    if _TABLET.search(user_agent):
        return "tablet"
    if _DESKTOP.search(user_agent):
        return "desktop"
    return "unknown"


def classify_user_agent(user_agent: Optional[str]) -> tuple[bool, str]:
    """Return `(is_bot, device_type)` for a raw User-Agent header."""
    return is_bot_user_agent(user_agent), device_type_for(user_agent)


class ViewEvent(Base):
    __tablename__ = "view_events"
    __table_args__ = (
        Index("ix_view_events_news_timestamp", "news_id", "timestamp"),
        Index("ix_view_events_bot_timestamp", "is_bot", "timestamp"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    news_id: Mapped[int] = mapped_column(
        ForeignKey("news.id", ondelete="CASCADE"), nullable=False
    )
    session_id: Mapped[str] = mapped_column(String(120), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    referrer: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    reading_time: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    scroll_depth: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    video_watched: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    video_current_time: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    video_duration: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    device_type: Mapped[str] = mapped_column(String(10), default="unknown", nullable=False)
    is_bot: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class ShareEvent(Base):
    __tablename__ = "share_events"
    __table_args__ = (
        Index("ix_share_events_news_timestamp", "news_id", "timestamp"),
        Index("ix_share_events_bot_timestamp", "is_bot", "timestamp"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    news_id: Mapped[int] = mapped_column(
        ForeignKey("news.id", ondelete="CASCADE"), nullable=False
    )
    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    session_id: Mapped[str] = mapped_column(String(120), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    referrer: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    share_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    share_text: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    custom_message: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    is_bot: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class DailyNewsStats(Base):
    __tablename__ = "daily_news_stats"
    __table_args__ = (
        UniqueConstraint("news_id", "date", name="uq_daily_news_stats_news_date"),
        Index("ix_daily_news_stats_date", "date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    news_id: Mapped[int] = mapped_column(
        ForeignKey("news.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    total_views: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unique_views: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    avg_reading_time: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    avg_scroll_depth: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    total_shares: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    shares_by_platform: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    device_stats: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    top_countries: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    is_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "news_id": self.news_id,
            "date": self.date.isoformat(),
            "total_views": self.total_views,
            "unique_views": self.unique_views,
            "avg_reading_time": self.avg_reading_time,
            "avg_scroll_depth": self.avg_scroll_depth,
            "total_shares": self.total_shares,
            "shares_by_platform": dict(self.shares_by_platform or {}),
            "device_stats": dict(self.device_stats or {}),
            "top_countries": list(self.top_countries or []),
            "is_complete": self.is_complete,
        }


# Read paths of the rollup reports and of the maintenance purge.
Index(
    "daily_stats_aggregation",
    DailyNewsStats.date.desc(),
    DailyNewsStats.total_views.desc(),
)
Index(
    "view_events_aggregation",
    ViewEvent.timestamp.desc(),
    ViewEvent.news_id,
    ViewEvent.is_bot,
)

AGGREGATION_INDEXES = ("daily_stats_aggregation", "view_events_aggregation")


__all__ = [
    "AGGREGATION_INDEXES",
    "DEVICE_TYPES",
    "DailyNewsStats",
    "SHARE_PLATFORMS",
    "ShareEvent",
    "ViewEvent",
    "classify_user_agent",
    "device_type_for",
    "is_bot_user_agent",
]
