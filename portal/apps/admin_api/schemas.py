"""Request payloads for the portal API.

Payloads validate before any write; field names follow what the back-office
UI sends (French keys for directors).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from portal.domain.analytics_models import SHARE_PLATFORMS


def _http_url(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip()
    if not cleaned:
        return None
    parsed = urlparse(cleaned)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("must be an http(s) URL")
    return cleaned


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    def changes(self) -> dict[str, Any]:
        """Model column values for the fields the client actually sent."""
        return self.model_dump(exclude_unset=True)

    def values(self) -> dict[str, Any]:
        return self.model_dump()


class DirectorPayload(_Payload):
    title: str = Field(..., min_length=1, max_length=200, alias="titre")
    name: str = Field(..., min_length=1, max_length=200, alias="nom")
    photo: Optional[str] = None
    email: Optional[str] = Field(default=None, max_length=200)
    telephone: Optional[str] = Field(default=None, max_length=50)
    message: Optional[str] = None
    key: Optional[str] = Field(default=None, max_length=20)
    full_name: Optional[str] = Field(default=None, alias="nomComplet")
    manager: Optional[str] = Field(default=None, alias="responsable")
    mission: Optional[str] = None
    direction: Optional[str] = Field(default=None, max_length=20)
    sort_order: int = Field(default=0, alias="ordre")
    active: bool = True


class DirectorUpdatePayload(DirectorPayload):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200, alias="titre")
    name: Optional[str] = Field(default=None, min_length=1, max_length=200, alias="nom")


class EstablishmentPayload(_Payload):
    name: str = Field(..., min_length=1, max_length=250)
    type: str = Field(..., min_length=1, max_length=40)
    status: str = Field(default="public", max_length=20)
    region: Optional[str] = None
    city: Optional[str] = None
    address: Optional[str] = None
    description: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    website: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    active: bool = True

    @field_validator("website")
    @classmethod
    def _check_website(cls, value: Optional[str]) -> Optional[str]:
        return _http_url(value)


class DocumentPayload(_Payload):
    title: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = None
    category: str = Field(..., min_length=1, max_length=40)
    file_type: Optional[str] = Field(default=None, max_length=10)
    url: str
    status: str = "published"
    published_at: Optional[datetime] = None

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        checked = _http_url(value)
        if checked is None:
            raise ValueError("url is required")
        return checked

    def values(self) -> dict[str, Any]:
        data = super().values()
        if data["published_at"] is None:
            data.pop("published_at")
        return data


class ServicePayload(_Payload):
    name: str = Field(..., min_length=1, max_length=250)
    description: Optional[str] = None
    category: str = Field(..., min_length=1, max_length=40)
    url: Optional[str] = None
    icon: str = "Settings"
    is_online: bool = False
    status: Literal["draft", "published", "archived"] = "draft"
    active: bool = True
    sort_order: int = Field(default=0, alias="order")

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: Optional[str]) -> Optional[str]:
        return _http_url(value)


class EventPayload(_Payload):
    title: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = None
    location: str = Field(..., min_length=1, max_length=300)
    starts_at: datetime
    ends_at: Optional[datetime] = None
    published: bool = True

    @model_validator(mode="after")
    def _check_range(self) -> "EventPayload":
        if self.ends_at is not None and self.ends_at < self.starts_at:
            raise ValueError("ends_at must not be before starts_at")
        return self


class AlertPayload(_Payload):
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)
    level: Literal["info", "warning", "danger"] = "info"
    priority: int = Field(default=0, ge=0, le=10)
    status: Literal["active", "inactive"] = "active"
    link: Optional[str] = None
    starts_at: Optional[datetime] = Field(default=None, alias="startDate")
    ends_at: Optional[datetime] = Field(default=None, alias="endDate")

    @field_validator("link")
    @classmethod
    def _check_link(cls, value: Optional[str]) -> Optional[str]:
        return _http_url(value)

    @model_validator(mode="after")
    def _check_range(self) -> "AlertPayload":
        if self.starts_at and self.ends_at and self.ends_at <= self.starts_at:
            raise ValueError("endDate must be after startDate")
        return self

    def values(self) -> dict[str, Any]:
        data = super().values()
        if data["starts_at"] is None:
            data.pop("starts_at")
        return data


class StatisticPayload(_Payload):
    year: int = Field(..., ge=1960, le=2100)
    figures: dict[str, Any] = Field(default_factory=dict)


class TrackEventPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    news_id: int = Field(..., ge=1, alias="newsId")
    event_type: Literal["view", "share"] = Field(..., alias="eventType")
    session_id: Optional[str] = Field(default=None, max_length=120, alias="sessionId")
    reading_time: float = Field(default=0, ge=0, alias="readingTime")
    scroll_depth: float = Field(default=0, ge=0, le=100, alias="scrollDepth")
    video_watched: bool = Field(default=False, alias="videoWatched")
    video_current_time: float = Field(default=0, ge=0, alias="videoCurrentTime")
    video_duration: float = Field(default=0, ge=0, alias="videoDuration")
    platform: Optional[str] = None
    share_url: Optional[str] = Field(default=None, alias="shareUrl")
    share_text: Optional[str] = Field(default=None, alias="shareText")
    custom_message: Optional[str] = Field(default=None, alias="customMessage")

    @model_validator(mode="after")
    def _check_platform(self) -> "TrackEventPayload":
        if self.event_type == "share":
            if not self.platform:
                raise ValueError("platform is required for share events")
            if self.platform not in SHARE_PLATFORMS:
                raise ValueError(f"platform must be one of {', '.join(SHARE_PLATFORMS)}")
        return self


class CacheInvalidatePayload(BaseModel):
    tags: list[str] = Field(default_factory=list)
    pattern: Optional[str] = None
    key: Optional[str] = None
    clear: bool = False


class LogClearPayload(BaseModel):
    older_than_days: Optional[int] = Field(default=None, ge=0, alias="olderThan")
    level: Optional[str] = None
    category: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


__all__ = [
    "CacheInvalidatePayload",
    "DirectorPayload",
    "DirectorUpdatePayload",
    "DocumentPayload",
    "EstablishmentPayload",
    "EventPayload",
    "LogClearPayload",
    "ServicePayload",
    "TrackEventPayload",
]
