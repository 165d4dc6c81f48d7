import logging
import time
from datetime import timedelta

from fastapi import APIRouter, Depends, Query

from app.schemas.materialized_views import (
    CronStatusOut,
    DailyJobInfoOut,
    DisableSchedulerOut,
    ErrorOut,
    HealthDetailsOut,
    HealthOut,
    InitializeSchedulerOut,
    RefreshOut,
    RefreshStatisticsErrorOut,
    RefreshStatisticsOut,
    StatisticsOut,
)
from app.services.refresh import ExternalJobStatus, RefreshCoordinator, RefreshStatistics, get_refresh_coordinator
from app.services.repository import RepositoryError

router = APIRouter()
logger = logging.getLogger(__name__)

FALLBACK_INFO = "Application will use daily fallback scheduling"


@router.post("/refresh", response_model=RefreshOut, response_model_exclude_none=True)
async def force_refresh(coordinator: RefreshCoordinator = Depends(get_refresh_coordinator)) -> RefreshOut:
    logger.info("force refresh request received")
    outcome = await coordinator.force_refresh()
    return RefreshOut(success=outcome.success, message=outcome.message, error=outcome.error, timestamp=_now_ms())


@router.get("/statistics", response_model=StatisticsOut | ErrorOut)
async def get_statistics(
    coordinator: RefreshCoordinator = Depends(get_refresh_coordinator),
    window_hours: int | None = Query(default=None, ge=1, le=720),
) -> StatisticsOut | ErrorOut:
    window = timedelta(hours=window_hours) if window_hours is not None else None
    result = await coordinator.get_refresh_statistics(window)
    if result.statistics is None:
        return ErrorOut(error=result.error or "refresh statistics unavailable", timestamp=_now_ms())
    return StatisticsOut(statistics=_statistics_out(result.statistics), timestamp=_now_ms())


@router.post("/initialize-scheduler", response_model=InitializeSchedulerOut | ErrorOut)
async def initialize_scheduler(
    coordinator: RefreshCoordinator = Depends(get_refresh_coordinator),
) -> InitializeSchedulerOut | ErrorOut:
    logger.info("initialize scheduler request received")
    try:
        result = await coordinator.initialize_external_scheduler()
    except RepositoryError as exc:
        logger.error("failed to initialize scheduler: %s", exc)
        return ErrorOut(error=str(exc), timestamp=_now_ms())

    return InitializeSchedulerOut(
        supported=result.supported,
        pg_cron_available=result.pg_cron_available,
        message=result.message,
        schedule_info=coordinator.schedule_description,
        timestamp=_now_ms(),
    )


@router.post("/disable-scheduler", response_model=DisableSchedulerOut | ErrorOut)
async def disable_scheduler(
    coordinator: RefreshCoordinator = Depends(get_refresh_coordinator),
) -> DisableSchedulerOut | ErrorOut:
    logger.info("disable scheduler request received")
    try:
        result = await coordinator.disable_external_scheduler()
    except RepositoryError as exc:
        logger.error("failed to disable scheduler: %s", exc)
        return ErrorOut(error=str(exc), timestamp=_now_ms())

    return DisableSchedulerOut(
        supported=result.supported,
        pg_cron_available=result.pg_cron_available,
        message=result.message,
        fallback_info=FALLBACK_INFO,
        timestamp=_now_ms(),
    )


@router.get("/cron-status", response_model=CronStatusOut | ErrorOut)
async def get_cron_status(coordinator: RefreshCoordinator = Depends(get_refresh_coordinator)) -> CronStatusOut | ErrorOut:
    try:
        available = await coordinator.is_external_scheduler_available()
        job_status = await coordinator.get_external_job_status(available)
    except RepositoryError as exc:
        logger.error("failed to get cron status: %s", exc)
        return ErrorOut(error=str(exc), timestamp=_now_ms())

    return CronStatusOut(
        pg_cron_available=available,
        daily_job_info=_job_info_out(job_status),
        schedule_description=coordinator.schedule_description,
        timestamp=_now_ms(),
    )


@router.get("/health", response_model=HealthOut | ErrorOut)
async def get_health(coordinator: RefreshCoordinator = Depends(get_refresh_coordinator)) -> HealthOut | ErrorOut:
    try:
        health = await coordinator.get_health()
    except RepositoryError as exc:
        logger.error("failed to get refresh health: %s", exc)
        return ErrorOut(error=str(exc), timestamp=_now_ms())

    statistics: RefreshStatisticsOut | RefreshStatisticsErrorOut
    if health.refresh_statistics.statistics is None:
        statistics = RefreshStatisticsErrorOut(error=health.refresh_statistics.error or "refresh statistics unavailable")
    else:
        statistics = _statistics_out(health.refresh_statistics.statistics)

    return HealthOut(
        health=HealthDetailsOut(
            pg_cron_available=health.pg_cron_available,
            daily_job_active=health.daily_job_active,
            daily_job_details=_job_info_out(health.daily_job_details),
            refresh_statistics=statistics,
            overall_status=health.overall_status.value,
            status_description=health.status_description,
            refresh_schedule=health.refresh_schedule,
        ),
        timestamp=_now_ms(),
    )


def _statistics_out(stats: RefreshStatistics) -> RefreshStatisticsOut:
    return RefreshStatisticsOut(
        refresh_count=stats.refresh_count,
        last_refresh=stats.last_refresh,
        average_duration_ms=stats.average_duration_ms,
        error_count=stats.error_count,
    )


def _job_info_out(job_status: ExternalJobStatus) -> DailyJobInfoOut:
    return DailyJobInfoOut(
        job_name=job_status.job_name,
        job_exists=job_status.job_exists,
        active=job_status.active,
        status=job_status.status.value,
        message=job_status.message,
        schedule=job_status.schedule,
        command=job_status.command,
        job_id=job_status.job_id,
    )


def _now_ms() -> int:
    return int(time.time() * 1000)
