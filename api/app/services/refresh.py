"""Refresh coordination for the active-users materialized view.

The coordinator decides on every tick whether the pg_cron job owns refresh
duty or whether the application must refresh the view itself. Nothing is
cached between calls: both probes are re-run each time, so jobs created or
removed out-of-band are picked up on the next tick.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import lru_cache
from typing import Any, Protocol

from opentelemetry import trace

from app.core.config import Settings, get_settings
from app.services.repository import (
    CronJobRecord,
    RefreshKind,
    RefreshRecord,
    RepositoryError,
    get_repository,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

PG_CRON_EXTENSION = "pg_cron"


class RefreshDatastore(Protocol):
    async def is_extension_installed(self, extension_name: str, *, timeout: float | None = None) -> bool: ...

    async def get_cron_job(self, job_name: str, *, timeout: float | None = None) -> CronJobRecord | None: ...

    async def call_refresh_function(self, function_name: str, *, timeout: float | None = None) -> None: ...

    async def refresh_materialized_view(
        self, view_name: str, *, concurrently: bool = True, timeout: float | None = None
    ) -> None: ...

    async def insert_refresh_record(self, record: RefreshRecord, *, timeout: float | None = None) -> None: ...

    async def get_refresh_statistics(
        self, view_name: str, *, since: datetime, timeout: float | None = None
    ) -> dict[str, Any]: ...


class OverallStatus(str, Enum):
    OPTIMAL = "OPTIMAL"
    AVAILABLE = "AVAILABLE"
    FALLBACK = "FALLBACK"


class JobStatus(str, Enum):
    UNSUPPORTED = "unsupported"
    NOT_CONFIGURED = "not_configured"
    ACTIVE = "active"
    INACTIVE = "inactive"


STATUS_DESCRIPTIONS = {
    OverallStatus.OPTIMAL: "Daily database-level refresh via pg_cron is active",
    OverallStatus.AVAILABLE: (
        "pg_cron available but the daily job is not configured; the application-level daily refresh is in effect"
    ),
    OverallStatus.FALLBACK: "pg_cron not available; using application-level daily fallback refresh",
}


@dataclass(slots=True)
class StrategyResult:
    strategy: str
    ok: bool
    error: str | None = None


@dataclass(slots=True)
class RefreshOutcome:
    success: bool
    message: str
    duration_ms: int
    error: str | None = None
    strategy: str | None = None


@dataclass(slots=True)
class RefreshStatistics:
    refresh_count: int
    last_refresh: datetime | None
    average_duration_ms: float
    error_count: int


@dataclass(slots=True)
class StatisticsResult:
    statistics: RefreshStatistics | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.statistics is not None


@dataclass(slots=True)
class ExternalJobStatus:
    job_name: str
    job_exists: bool
    active: bool
    status: JobStatus
    message: str
    schedule: str | None = None
    command: str | None = None
    job_id: int | None = None


@dataclass(slots=True)
class SchedulerManagementResult:
    supported: bool
    pg_cron_available: bool
    message: str


@dataclass(slots=True)
class RefreshHealth:
    pg_cron_available: bool
    daily_job_active: bool
    daily_job_details: ExternalJobStatus
    refresh_statistics: StatisticsResult
    overall_status: OverallStatus
    status_description: str
    refresh_schedule: str


def derive_overall_status(pg_cron_available: bool, job_active: bool) -> OverallStatus:
    if pg_cron_available and job_active:
        return OverallStatus.OPTIMAL
    if pg_cron_available:
        return OverallStatus.AVAILABLE
    return OverallStatus.FALLBACK


def describe_cron_schedule(expression: str, timezone_name: str) -> str:
    if expression.split() == ["0", "0", "*", "*", "*"]:
        return f"Daily at 00:00 {timezone_name}"
    return f"Cron '{expression}' ({timezone_name})"


class RefreshCoordinator:
    def __init__(
        self,
        datastore: RefreshDatastore,
        *,
        view_name: str,
        refresh_function_name: str,
        cron_job_name: str,
        schedule_description: str,
        probe_timeout_seconds: float = 5.0,
        refresh_timeout_seconds: float = 60.0,
        statistics_window: timedelta = timedelta(hours=24),
    ) -> None:
        self.datastore = datastore
        self.view_name = view_name
        self.refresh_function_name = refresh_function_name
        self.cron_job_name = cron_job_name
        self.schedule_description = schedule_description
        self.probe_timeout_seconds = probe_timeout_seconds
        self.refresh_timeout_seconds = refresh_timeout_seconds
        self.statistics_window = statistics_window
        self._refresh_lock = asyncio.Lock()

    @property
    def strategies(self) -> list[tuple[str, Callable[[], Awaitable[None]]]]:
        return [
            ("database_function", self._refresh_via_function),
            ("concurrent_refresh", self._refresh_view_directly),
        ]

    async def evaluate_and_refresh(self) -> None:
        """Scheduled entry point; never raises."""
        try:
            with tracer.start_as_current_span("materialized_view.evaluate") as span:
                span.set_attribute("materialized_view.name", self.view_name)
                if await self.is_external_scheduler_available() and await self._external_job_active():
                    span.set_attribute("materialized_view.skipped", True)
                    logger.debug("pg_cron job %s is active, skipping application-level refresh", self.cron_job_name)
                    return

                logger.info("pg_cron job %s not active, using application-level refresh", self.cron_job_name)
                outcome = await self._refresh(RefreshKind.FALLBACK)
                if outcome.success:
                    logger.info("fallback refresh of %s succeeded in %d ms", self.view_name, outcome.duration_ms)
                else:
                    logger.error("fallback refresh of %s failed: %s", self.view_name, outcome.error)
        except Exception:  # pragma: no cover - scheduled task must not crash the host
            logger.exception("unexpected error during scheduled refresh of %s", self.view_name)

    async def force_refresh(self) -> RefreshOutcome:
        logger.info("force refreshing materialized view %s", self.view_name)
        return await self._refresh(RefreshKind.MANUAL)

    async def get_refresh_statistics(self, window: timedelta | None = None) -> StatisticsResult:
        since = datetime.now(timezone.utc) - (window or self.statistics_window)
        try:
            row = await self.datastore.get_refresh_statistics(
                self.view_name,
                since=since,
                timeout=self.probe_timeout_seconds,
            )
        except RepositoryError as exc:
            logger.error("failed to get refresh statistics for %s: %s", self.view_name, exc)
            return StatisticsResult(error=str(exc) or type(exc).__name__)

        average = row.get("average_duration_ms")
        return StatisticsResult(
            statistics=RefreshStatistics(
                refresh_count=int(row.get("refresh_count") or 0),
                last_refresh=row.get("last_refresh"),
                average_duration_ms=float(average) if average is not None else 0.0,
                error_count=int(row.get("error_count") or 0),
            )
        )

    async def is_external_scheduler_available(self) -> bool:
        try:
            return await self.datastore.is_extension_installed(PG_CRON_EXTENSION, timeout=self.probe_timeout_seconds)
        except RepositoryError as exc:
            logger.debug("cannot check pg_cron availability: %s", exc)
            return False

    async def get_external_job_status(self, pg_cron_available: bool | None = None) -> ExternalJobStatus:
        """Report the pg_cron job; pass an availability already probed to avoid probing again."""
        if pg_cron_available is None:
            pg_cron_available = await self.is_external_scheduler_available()
        if not pg_cron_available:
            return self._job_status(JobStatus.UNSUPPORTED, "pg_cron extension is not installed")

        try:
            job = await self.datastore.get_cron_job(self.cron_job_name, timeout=self.probe_timeout_seconds)
        except RepositoryError as exc:
            logger.debug("cannot read pg_cron job %s: %s", self.cron_job_name, exc)
            return self._job_status(JobStatus.UNSUPPORTED, f"pg_cron job registry is not readable: {exc}")

        if job is None:
            return self._job_status(JobStatus.NOT_CONFIGURED, f"pg_cron job {self.cron_job_name} is not configured")

        return ExternalJobStatus(
            job_name=job.job_name,
            job_exists=True,
            active=job.active,
            status=JobStatus.ACTIVE if job.active else JobStatus.INACTIVE,
            message=f"pg_cron job {job.job_name} is {'active' if job.active else 'inactive'}",
            schedule=job.schedule,
            command=job.command,
            job_id=job.job_id,
        )

    async def initialize_external_scheduler(self) -> SchedulerManagementResult:
        available = await self.is_external_scheduler_available()
        logger.info("initialize scheduler requested; pg_cron available=%s", available)
        prefix = (
            "pg_cron is available, but automatic job management is not implemented"
            if available
            else "pg_cron extension is not installed; automatic job management is not active"
        )
        return SchedulerManagementResult(
            supported=False,
            pg_cron_available=available,
            message=(
                f"{prefix}. Register job {self.cron_job_name} with the SQL from "
                f"scripts/render_cron_job_sql.py. The application-level refresh "
                f"({self.schedule_description}) remains in effect."
            ),
        )

    async def disable_external_scheduler(self) -> SchedulerManagementResult:
        available = await self.is_external_scheduler_available()
        logger.info("disable scheduler requested; pg_cron available=%s", available)
        prefix = (
            "pg_cron is available, but automatic job management is not implemented"
            if available
            else "pg_cron extension is not installed; there is no database job to disable"
        )
        return SchedulerManagementResult(
            supported=False,
            pg_cron_available=available,
            message=(
                f"{prefix}. Remove job {self.cron_job_name} with the SQL from "
                f"scripts/render_cron_job_sql.py --unschedule. The application-level refresh "
                f"({self.schedule_description}) remains in effect."
            ),
        )

    async def get_health(self) -> RefreshHealth:
        available = await self.is_external_scheduler_available()
        job_status = await self.get_external_job_status(available)
        job_active = job_status.job_exists and job_status.active
        statistics = await self.get_refresh_statistics()
        overall = derive_overall_status(available, job_active)
        return RefreshHealth(
            pg_cron_available=available,
            daily_job_active=job_active,
            daily_job_details=job_status,
            refresh_statistics=statistics,
            overall_status=overall,
            status_description=STATUS_DESCRIPTIONS[overall],
            refresh_schedule=self.schedule_description,
        )

    async def _external_job_active(self) -> bool:
        try:
            job = await self.datastore.get_cron_job(self.cron_job_name, timeout=self.probe_timeout_seconds)
        except RepositoryError as exc:
            logger.debug("cannot check pg_cron job %s: %s", self.cron_job_name, exc)
            return False
        return job is not None and job.active

    async def _refresh(self, kind: RefreshKind) -> RefreshOutcome:
        async with self._refresh_lock:
            with tracer.start_as_current_span("materialized_view.refresh") as span:
                span.set_attribute("materialized_view.name", self.view_name)
                span.set_attribute("materialized_view.refresh_kind", kind.value)
                triggered_at = datetime.now(timezone.utc)
                started_at = time.perf_counter()
                result = await self._run_strategies()
                duration_ms = max(0, int((time.perf_counter() - started_at) * 1000))
                span.set_attribute("materialized_view.success", result.ok)

                await self._record(
                    RefreshRecord(
                        view_name=self.view_name,
                        refresh_kind=kind,
                        triggered_at=triggered_at,
                        duration_ms=duration_ms,
                        success=result.ok,
                        error_message=result.error,
                    )
                )

        if result.ok:
            message = f"Successfully refreshed materialized view in {duration_ms} ms"
            logger.info("%s (strategy=%s, kind=%s)", message, result.strategy, kind.value)
            return RefreshOutcome(success=True, message=message, duration_ms=duration_ms, strategy=result.strategy)

        message = f"Unable to refresh materialized view {self.view_name}: {result.error}"
        return RefreshOutcome(
            success=False,
            message=message,
            duration_ms=duration_ms,
            error=result.error,
            strategy=result.strategy,
        )

    async def _run_strategies(self) -> StrategyResult:
        result = StrategyResult(strategy="none", ok=False, error="no refresh strategy configured")
        for name, strategy in self.strategies:
            try:
                await strategy()
            except RepositoryError as exc:
                result = StrategyResult(strategy=name, ok=False, error=str(exc) or type(exc).__name__)
                logger.warning("refresh strategy %s failed for %s: %s", name, self.view_name, result.error)
                continue
            except Exception as exc:
                result = StrategyResult(strategy=name, ok=False, error=str(exc) or type(exc).__name__)
                logger.exception("refresh strategy %s raised unexpectedly for %s", name, self.view_name)
                continue
            return StrategyResult(strategy=name, ok=True)
        return result

    async def _refresh_via_function(self) -> None:
        await self.datastore.call_refresh_function(self.refresh_function_name, timeout=self.refresh_timeout_seconds)

    async def _refresh_view_directly(self) -> None:
        await self.datastore.refresh_materialized_view(
            self.view_name,
            concurrently=True,
            timeout=self.refresh_timeout_seconds,
        )

    async def _record(self, record: RefreshRecord) -> None:
        try:
            await self.datastore.insert_refresh_record(record, timeout=self.probe_timeout_seconds)
        except RepositoryError as exc:
            logger.error("failed to append refresh record for %s: %s", self.view_name, exc)
        except Exception:
            logger.exception("unexpected error appending refresh record for %s", self.view_name)

    def _job_status(self, status: JobStatus, message: str) -> ExternalJobStatus:
        return ExternalJobStatus(
            job_name=self.cron_job_name,
            job_exists=False,
            active=False,
            status=status,
            message=message,
        )


def build_refresh_coordinator(datastore: RefreshDatastore, settings: Settings) -> RefreshCoordinator:
    return RefreshCoordinator(
        datastore,
        view_name=settings.materialized_view_name,
        refresh_function_name=settings.refresh_function_name,
        cron_job_name=settings.cron_job_name,
        schedule_description=describe_cron_schedule(settings.fallback_refresh_cron, settings.scheduler_timezone),
        probe_timeout_seconds=settings.probe_timeout_seconds,
        refresh_timeout_seconds=settings.refresh_timeout_seconds,
        statistics_window=timedelta(hours=max(1, settings.statistics_window_hours)),
    )


@lru_cache
def get_refresh_coordinator() -> RefreshCoordinator:
    return build_refresh_coordinator(get_repository(), get_settings())
