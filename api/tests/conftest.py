from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

import pytest

from app.services.refresh import RefreshCoordinator
from app.services.repository import CronJobRecord, RefreshRecord, RepositoryQueryError

VIEW_NAME = "active_users_stats_mv"
CRON_JOB_NAME = "daily-active-users-mv-refresh-job"


class FakeRefreshDatastore:
    def __init__(self, *, pg_cron_installed: bool = False, cron_job: CronJobRecord | None = None) -> None:
        self.pg_cron_installed = pg_cron_installed
        self.cron_job = cron_job
        self.extension_error: Exception | None = None
        self.cron_job_error: Exception | None = None
        self.function_error: Exception | None = None
        self.direct_refresh_error: Exception | None = None
        self.statistics_error: Exception | None = None
        self.insert_error: Exception | None = None
        self.refresh_delay_seconds = 0.0
        self.records: list[RefreshRecord] = []
        self.refresh_calls: list[str] = []
        self.timeouts: dict[str, float | None] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.extension_checks = 0

    async def is_extension_installed(self, extension_name: str, *, timeout: float | None = None) -> bool:
        self.timeouts["probe"] = timeout
        self.extension_checks += 1
        if self.extension_error is not None:
            raise self.extension_error
        return self.pg_cron_installed and extension_name == "pg_cron"

    async def get_cron_job(self, job_name: str, *, timeout: float | None = None) -> CronJobRecord | None:
        if self.cron_job_error is not None:
            raise self.cron_job_error
        if not self.pg_cron_installed:
            raise RepositoryQueryError('relation "cron.job" does not exist')
        if self.cron_job is None or self.cron_job.job_name != job_name:
            return None
        return self.cron_job

    async def call_refresh_function(self, function_name: str, *, timeout: float | None = None) -> None:
        self.timeouts["refresh"] = timeout
        await self._refresh("function", self.function_error)

    async def refresh_materialized_view(
        self,
        view_name: str,
        *,
        concurrently: bool = True,
        timeout: float | None = None,
    ) -> None:
        await self._refresh("concurrent" if concurrently else "blocking", self.direct_refresh_error)

    async def insert_refresh_record(self, record: RefreshRecord, *, timeout: float | None = None) -> None:
        if self.insert_error is not None:
            raise self.insert_error
        self.records.append(record)

    async def get_refresh_statistics(
        self,
        view_name: str,
        *,
        since: datetime,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        if self.statistics_error is not None:
            raise self.statistics_error
        rows = [record for record in self.records if record.view_name == view_name and record.triggered_at >= since]
        if not rows:
            return {"refresh_count": 0, "last_refresh": None, "average_duration_ms": None, "error_count": 0}
        return {
            "refresh_count": len(rows),
            "last_refresh": max(record.triggered_at for record in rows),
            "average_duration_ms": sum(record.duration_ms for record in rows) / len(rows),
            "error_count": sum(1 for record in rows if not record.success),
        }

    async def _refresh(self, name: str, error: Exception | None) -> None:
        self.refresh_calls.append(name)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.refresh_delay_seconds:
                await asyncio.sleep(self.refresh_delay_seconds)
            if error is not None:
                raise error
        finally:
            self.in_flight -= 1


def _make_cron_job(*, active: bool = True) -> CronJobRecord:
    return CronJobRecord(
        job_id=7,
        job_name=CRON_JOB_NAME,
        schedule="0 0 * * *",
        command="select scheduled_refresh_active_users_mv()",
        active=active,
    )


def _make_coordinator(datastore: FakeRefreshDatastore) -> RefreshCoordinator:
    return RefreshCoordinator(
        datastore,
        view_name=VIEW_NAME,
        refresh_function_name="refresh_active_users_mv",
        cron_job_name=CRON_JOB_NAME,
        schedule_description="Daily at 00:00 UTC",
        probe_timeout_seconds=2.0,
        refresh_timeout_seconds=30.0,
    )


@pytest.fixture
def datastore() -> FakeRefreshDatastore:
    return FakeRefreshDatastore()


@pytest.fixture
def coordinator(datastore: FakeRefreshDatastore) -> RefreshCoordinator:
    return _make_coordinator(datastore)


@pytest.fixture
def cron_job_factory():
    return _make_cron_job
