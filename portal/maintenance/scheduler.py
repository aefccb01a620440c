"""Cron schedule for the optimization routine inside the API process."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from portal.core.cache import TaggedCache
from portal.maintenance.optimizer import run_optimization

logger = logging.getLogger(__name__)

JOB_ID = "performance_optimization"


async def _scheduled_run(cache: TaggedCache, settings: Any, lock: asyncio.Lock) -> None:
    # Shared with POST /api/admin/maintenance/optimize: one run at a time per process.
    if lock.locked():
        logger.warning("Scheduled optimization skipped: a run is already in progress")
        return
    async with lock:
        report = await run_optimization(cache, settings)
    logger.info(
        "Scheduled optimization done",
        extra={"errors": len(report.errors), "duration_seconds": report.duration_seconds},
    )


def create_maintenance_scheduler(
    cache: TaggedCache, settings: Any, *, lock: Optional[asyncio.Lock] = None
) -> Optional[AsyncIOScheduler]:
    """Build a started-on-demand scheduler, or None when MAINTENANCE_CRON is empty."""
    expression = (settings.maintenance_cron or "").strip()
    if not expression:
        return None
    try:
        trigger = CronTrigger.from_crontab(expression, timezone="UTC")
    except ValueError as exc:
        logger.error("Invalid MAINTENANCE_CRON %r: %s", expression, exc)
        return None

    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        _scheduled_run,
        trigger,
        id=JOB_ID,
        args=[cache, settings, lock if lock is not None else asyncio.Lock()],
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    logger.info("Maintenance scheduled", extra={"cron": expression})
    return scheduler


__all__ = ["JOB_ID", "create_maintenance_scheduler"]
