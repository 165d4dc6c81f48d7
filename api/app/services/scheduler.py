from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.core.config import Settings
from app.services.refresh import RefreshCoordinator

logger = logging.getLogger(__name__)

FALLBACK_REFRESH_JOB_ID = "mv-fallback-refresh"


def build_refresh_scheduler(coordinator: RefreshCoordinator, settings: Settings) -> AsyncIOScheduler:
    try:
        trigger = CronTrigger.from_crontab(settings.fallback_refresh_cron, timezone=settings.scheduler_timezone)
    except ValueError as exc:
        raise ValueError(f"Invalid fallback_refresh_cron: {settings.fallback_refresh_cron}") from exc

    scheduler = AsyncIOScheduler(timezone=settings.scheduler_timezone)
    scheduler.add_job(
        coordinator.evaluate_and_refresh,
        trigger=trigger,
        id=FALLBACK_REFRESH_JOB_ID,
        max_instances=1,
        misfire_grace_time=300,
        coalesce=True,
        replace_existing=True,
    )
    return scheduler


def start_refresh_scheduler(coordinator: RefreshCoordinator, settings: Settings) -> AsyncIOScheduler | None:
    if not settings.scheduler_enabled:
        logger.info("refresh scheduler disabled; %s will only refresh on demand", settings.materialized_view_name)
        return None

    scheduler = build_refresh_scheduler(coordinator, settings)
    scheduler.start()
    logger.info(
        "refresh scheduler started for %s cron=%r timezone=%s",
        settings.materialized_view_name,
        settings.fallback_refresh_cron,
        settings.scheduler_timezone,
    )
    return scheduler


def stop_refresh_scheduler(scheduler: AsyncIOScheduler | None) -> None:
    if scheduler is None or not scheduler.running:
        return
    scheduler.shutdown(wait=False)
