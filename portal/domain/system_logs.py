"""Persistent system log: writing, filtering, statistics, CSV export, purge."""

from __future__ import annotations

import csv
import io
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.time_utils import ensure_utc, utc_now
from portal.domain.models import SystemLog
from portal.repositories import SystemLogRepository, text_filter

logger = logging.getLogger(__name__)

CSV_HEADERS = (
    "Timestamp",
    "Level",
    "Type",
    "Category",
    "Priority",
    "Message",
    "Username",
    "IP",
    "User Agent",
    "Details",
)


@dataclass(frozen=True)
class LogFilters:
    level: Optional[str] = None
    type: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    search: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None

    def criteria(self) -> list[Any]:
        criteria: list[Any] = []
        for column, value in (
            (SystemLog.level, self.level),
            (SystemLog.type, self.type),
            (SystemLog.category, self.category),
            (SystemLog.priority, self.priority),
        ):
            if value:
                criteria.append(column == value)
        if self.search:
            criteria.append(text_filter(self.search, SystemLog.message, SystemLog.username))
        if self.since:
            criteria.append(SystemLog.timestamp >= self.since)
        if self.until:
            criteria.append(SystemLog.timestamp <= self.until)
        return criteria


async def record_log(
    session: AsyncSession,
    *,
    level: str,
    type: str,
    message: str,
    category: str = "system",
    priority: str = "medium",
    username: Optional[str] = None,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> SystemLog:
    entry = SystemLog(
        level=level,
        type=type,
        category=category,
        priority=priority,
        message=message,
        username=username,
        ip=ip,
        user_agent=user_agent,
        details=details,
        timestamp=utc_now(),
    )
    session.add(entry)
    await session.commit()
    return entry


class SystemLogService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repository = SystemLogRepository(session)

    async def search(
        self, filters: LogFilters, *, page: int = 1, limit: int = 50
    ) -> tuple[Sequence[SystemLog], int]:
        criteria = filters.criteria()
        total = (await self.repository.count(*criteria)).unwrap()
        rows = (
            await self.repository.list(
                *criteria,
                order_by=(SystemLog.timestamp.desc(), SystemLog.id.desc()),
                limit=limit,
                offset=(page - 1) * limit,
            )
        ).unwrap()
        return rows, total

    async def stats(self) -> dict[str, Any]:
        async def grouped(column) -> dict[str, int]:
            rows = (
                await self.session.execute(
                    select(column, func.count(SystemLog.id)).group_by(column)
                )
            ).all()
            return {str(key): int(count) for key, count in rows}

        critical_unprocessed = (
            await self.repository.count(
                SystemLog.priority == "critical", SystemLog.processed.is_(False)
            )
        ).unwrap()
        return {
            "level_stats": await grouped(SystemLog.level),
            "category_stats": await grouped(SystemLog.category),
            "priority_stats": await grouped(SystemLog.priority),
            "critical_unprocessed": critical_unprocessed,
            "total": (await self.repository.count()).unwrap(),
        }

    async def export_csv(self, filters: LogFilters) -> str:
        rows = (
            await self.repository.list(
                *filters.criteria(), order_by=(SystemLog.timestamp.desc(), SystemLog.id.desc())
            )
        ).unwrap()
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(CSV_HEADERS)
        for row in rows:
            timestamp = ensure_utc(row.timestamp)
            writer.writerow(
                (
                    timestamp.isoformat() if timestamp else "",
                    row.level,
                    row.type,
                    row.category,
                    row.priority,
                    row.message,
                    row.username or "",
                    row.ip or "",
                    row.user_agent or "",
                    json.dumps(row.details, ensure_ascii=False) if row.details else "",
                )
            )
        return buffer.getvalue()

    async def clear(
        self,
        *,
        older_than_days: Optional[int] = None,
        level: Optional[str] = None,
        category: Optional[str] = None,
    ) -> tuple[int, str]:
        """Delete logs by age, level or category (first one given wins), else all."""
        stmt = delete(SystemLog)
        if older_than_days is not None:
            cutoff = utc_now() - timedelta(days=older_than_days)
            stmt = stmt.where(SystemLog.timestamp < cutoff)
            description = f"logs de plus de {older_than_days} jours"
        elif level:
            stmt = stmt.where(SystemLog.level == level)
            description = f"logs de niveau {level}"
        elif category:
            stmt = stmt.where(SystemLog.category == category)
            description = f"logs de catégorie {category}"
        else:
            description = "tous les logs"

        result = await self.session.execute(stmt)
        await self.session.commit()
        deleted = int(result.rowcount or 0)
        logger.warning("System logs cleared", extra={"deleted": deleted, "scope": description})
        return deleted, description


__all__ = ["CSV_HEADERS", "LogFilters", "SystemLogService", "record_log"]
