import uuid
from datetime import date, timedelta
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse

from portal.apps.admin_api.dependencies import get_analytics
from portal.apps.admin_api.responses import error_response, ok
from portal.apps.admin_api.schemas import TrackEventPayload
from portal.apps.admin_api.security import get_client_ip, limiter, tracking_limit
from portal.core.result import Failure, Success, ValidationError
from portal.core.time_utils import utc_today
from portal.domain.analytics import NewsAnalyticsService, TrackingContext, clamp_period

router = APIRouter(prefix="/api/news/analytics", tags=["analytics"])


@router.get("")
async def get_analytics_stats(
    type: Literal["global", "news"] = "global",
    period: int = Query(default=30),
    news_id: Optional[int] = Query(default=None, alias="newsId"),
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    analytics: NewsAnalyticsService = Depends(get_analytics),
):
    if type == "global":
        snapshot = await analytics.get_global_stats(clamp_period(period))
        return ok(data=snapshot.to_dict())

    if news_id is None:
        return error_response(
            ValidationError(field="newsId", message="newsId requis pour les stats d'article")
        )
    end = end_date or utc_today()
    start = start_date or end - timedelta(days=clamp_period(period))
    match await analytics.get_news_stats(news_id, start, end):
        case Success(stats):
            return ok(data=stats.to_dict())
        case Failure(error):
            return error_response(error)


@router.post("")
@limiter.limit(tracking_limit, key_func=get_client_ip)
async def track_event(
    request: Request,
    payload: TrackEventPayload,
    analytics: NewsAnalyticsService = Depends(get_analytics),
):
    headers = request.headers
    context = TrackingContext(
        session_id=payload.session_id or f"api_{uuid.uuid4().hex[:16]}",
        ip=get_client_ip(request),
        user_agent=headers.get("user-agent"),
        referrer=headers.get("referer"),
        country=headers.get("cf-ipcountry"),
        city=headers.get("cf-ipcity"),
        reading_time=payload.reading_time,
        scroll_depth=payload.scroll_depth,
        video_watched=payload.video_watched,
        video_current_time=payload.video_current_time,
        video_duration=payload.video_duration,
        platform=payload.platform,
        share_url=payload.share_url,
        share_text=payload.share_text,
        custom_message=payload.custom_message,
    )
    if payload.event_type == "view":
        event = await analytics.track_view(payload.news_id, context)
    else:
        event = await analytics.track_share(payload.news_id, context)

    if event is None:
        return JSONResponse(
            {
                "success": False,
                "error": "Événement non enregistré",
                "code": "TRACKING_REJECTED",
            },
            status_code=status.HTTP_404_NOT_FOUND,
        )
    return ok(
        data={
            "eventId": event.id,
            "newsId": payload.news_id,
            "eventType": payload.event_type,
            "timestamp": event.timestamp,
        }
    )
