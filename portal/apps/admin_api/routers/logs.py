from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from portal.apps.admin_api.dependencies import get_session
from portal.apps.admin_api.responses import ok
from portal.apps.admin_api.schemas import LogClearPayload
from portal.core.time_utils import utc_today
from portal.domain.system_logs import LogFilters, SystemLogService, record_log

router = APIRouter(prefix="/api/admin/logs", tags=["logs"])


def _filters(
    level: Optional[str] = None,
    type: Optional[str] = None,
    category: Optional[str] = None,
    priority: Optional[str] = None,
    search: Optional[str] = Query(default=None, max_length=200),
    since: Optional[datetime] = Query(default=None, alias="startDate"),
    until: Optional[datetime] = Query(default=None, alias="endDate"),
) -> LogFilters:
    return LogFilters(
        level=level,
        type=type,
        category=category,
        priority=priority,
        search=search,
        since=since,
        until=until,
    )


@router.get("")
async def list_logs(
    filters: LogFilters = Depends(_filters),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
):
    rows, total = await SystemLogService(session).search(filters, page=page, limit=limit)
    return ok(
        data=[row.to_dict() for row in rows],
        pagination={
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    )


@router.get("/stats")
async def logs_stats(session: AsyncSession = Depends(get_session)):
    return ok(data=await SystemLogService(session).stats())


@router.get("/export")
async def export_logs(
    filters: LogFilters = Depends(_filters),
    session: AsyncSession = Depends(get_session),
):
    content = await SystemLogService(session).export_csv(filters)
    filename = f"system-logs-{utc_today().isoformat()}.csv"
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/clear")
async def clear_logs(payload: LogClearPayload, session: AsyncSession = Depends(get_session)):
    service = SystemLogService(session)
    deleted, description = await service.clear(
        older_than_days=payload.older_than_days,
        level=payload.level,
        category=payload.category,
    )
    await record_log(
        session,
        level="warning",
        type="logs_cleared",
        category="admin",
        priority="high",
        message=f"Suppression de {deleted} {description}",
        details={"deleted": deleted, "scope": description},
    )
    return ok(f"{deleted} {description} supprimés", deleted=deleted)
