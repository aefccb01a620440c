from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, validates

from portal.core.sanitizers import sanitize_plain_text, slugify
from portal.core.time_utils import utc_now

from .base import Base

NEWS_STATUSES = ("draft", "published", "archived")
LOG_LEVELS = ("error", "warning", "info", "success", "debug")
LOG_PRIORITIES = ("low", "medium", "high", "critical")
ALERT_LEVELS = ("info", "warning", "danger")
STAT_KINDS = ("students", "teachers", "institutions")


def _require_text(field: str, value: Optional[str]) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValueError(f"{field} cannot be empty")
    return cleaned


class News(Base):
    __tablename__ = "news"
    __table_args__ = (
        Index("ix_news_status_published_at", "status", "published_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    slug: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="draft", nullable=False)
    view_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    @validates("title")
    def _validate_title(self, _key, value: Optional[str]) -> str:
        title = _require_text("News title", value)
        if not self.slug:
            self.slug = slugify(title)
        return title

    @validates("status")
    def _validate_status(self, _key, value: str) -> str:
        if value not in NEWS_STATUSES:
            raise ValueError(f"Unknown news status: {value}")
        return value

    def to_summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "slug": self.slug,
            "summary": self.summary,
            "category": self.category,
            "status": self.status,
            "view_count": self.view_count,
            "published_at": self.published_at.isoformat() if self.published_at else None,
        }

    def to_dict(self) -> dict[str, Any]:
        return {**self.to_summary(), "content": self.content}

    def __repr__(self) -> str:
        return f"<News {self.id} {self.slug}>"


class Director(Base):
    """Head of a main direction (SG/DGES/DGR) or of one of its sub-directions."""

    __tablename__ = "directors"
    __table_args__ = (Index("ix_directors_direction", "direction"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    photo: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    telephone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    key: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    manager: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    mission: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    direction: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    @validates("title", "name")
    def _validate_required(self, key, value: Optional[str]) -> str:
        return _require_text(key, value)

    @validates("message")
    def _sanitize_message(self, _key, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return sanitize_plain_text(value, max_length=5000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "titre": self.title,
            "nom": self.name,
            "photo": self.photo,
            "email": self.email,
            "telephone": self.telephone,
            "message": self.message,
            "key": self.key,
            "nomComplet": self.full_name,
            "responsable": self.manager,
            "mission": self.mission,
            "direction": self.direction,
            "ordre": self.sort_order,
            "active": self.active,
        }

    def __repr__(self) -> str:
        return f"<Director {self.id} {self.title}>"


class Establishment(Base):
    __tablename__ = "establishments"
    __table_args__ = (Index("ix_establishments_region", "region"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(250), nullable=False)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="public", nullable=False)
    region: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    website: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @validates("name")
    def _validate_name(self, _key, value: Optional[str]) -> str:
        return _require_text("Establishment name", value)


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(40), nullable=False)
    file_type: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    url: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="published", nullable=False)
    published_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class Service(Base):
    __tablename__ = "services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(250), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(40), nullable=False)
    url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    icon: Mapped[str] = mapped_column(String(60), default="Settings", nullable=False)
    is_online: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="draft", nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (Index("ix_events_starts_at", "starts_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[str] = mapped_column(String(300), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    published: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Alert(Base):
    """Banner shown on the public site while active and not past `ends_at`."""

    __tablename__ = "alerts"
    __table_args__ = (Index("ix_alerts_status_ends_at", "status", "ends_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    level: Mapped[str] = mapped_column(String(10), default="info", nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(String(10), default="active", nullable=False)
    link: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    starts_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @validates("level")
    def _validate_level(self, _key, value: str) -> str:
        if value not in ALERT_LEVELS:
            raise ValueError(f"Unknown alert level: {value}")
        return value


class YearlyStatistic(Base):
    """One year of published figures for students, teachers or institutions.

    `figures` keeps the shape the back-office form sends (totals, gender and
    sector breakdowns); only the headline totals are read server-side.
    """

    __tablename__ = "yearly_statistics"
    __table_args__ = (UniqueConstraint("kind", "year", name="uq_yearly_statistics_kind_year"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    figures: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    @validates("kind")
    def _validate_kind(self, _key, value: str) -> str:
        if value not in STAT_KINDS:
            raise ValueError(f"Unknown statistics kind: {value}")
        return value


class SystemLog(Base):
    __tablename__ = "system_logs"
    __table_args__ = (
        Index("ix_system_logs_timestamp", "timestamp"),
        Index("ix_system_logs_level_type", "level", "type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    level: Mapped[str] = mapped_column(String(10), nullable=False)
    type: Mapped[str] = mapped_column(String(60), nullable=False)
    category: Mapped[str] = mapped_column(String(40), default="system", nullable=False)
    priority: Mapped[str] = mapped_column(String(10), default="medium", nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    username: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    @validates("level")
    def _validate_level(self, _key, value: str) -> str:
        if value not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {value}")
        return value

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "level": self.level,
            "type": self.type,
            "category": self.category,
            "priority": self.priority,
            "message": self.message,
            "username": self.username,
            "ip": self.ip,
            "user_agent": self.user_agent,
            "details": self.details,
        }


__all__ = [
    "ALERT_LEVELS",
    "Alert",
    "Director",
    "Document",
    "Establishment",
    "Event",
    "LOG_LEVELS",
    "LOG_PRIORITIES",
    "NEWS_STATUSES",
    "News",
    "STAT_KINDS",
    "Service",
    "SystemLog",
    "YearlyStatistic",
]
