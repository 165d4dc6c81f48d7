from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

OverallStatus = Literal["OPTIMAL", "AVAILABLE", "FALLBACK"]
JobStatus = Literal["unsupported", "not_configured", "active", "inactive"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorOut(CamelModel):
    success: bool = False
    error: str
    timestamp: int


class RefreshOut(CamelModel):
    success: bool
    message: str
    error: str | None = None
    timestamp: int


class RefreshStatisticsOut(CamelModel):
    refresh_count: int
    last_refresh: datetime | None = None
    average_duration_ms: float
    error_count: int


class RefreshStatisticsErrorOut(CamelModel):
    error: str


class StatisticsOut(CamelModel):
    success: bool = True
    statistics: RefreshStatisticsOut
    timestamp: int


class SchedulerManagementOut(CamelModel):
    success: bool = True
    supported: bool
    pg_cron_available: bool
    message: str
    timestamp: int


class InitializeSchedulerOut(SchedulerManagementOut):
    schedule_info: str


class DisableSchedulerOut(SchedulerManagementOut):
    fallback_info: str


class DailyJobInfoOut(CamelModel):
    job_name: str
    job_exists: bool
    active: bool
    status: JobStatus
    message: str
    schedule: str | None = None
    command: str | None = None
    job_id: int | None = None


class CronStatusOut(CamelModel):
    success: bool = True
    pg_cron_available: bool
    daily_job_info: DailyJobInfoOut
    schedule_description: str
    timestamp: int


class HealthDetailsOut(CamelModel):
    pg_cron_available: bool
    daily_job_active: bool
    daily_job_details: DailyJobInfoOut
    refresh_statistics: RefreshStatisticsOut | RefreshStatisticsErrorOut
    overall_status: OverallStatus
    status_description: str
    refresh_schedule: str


class HealthOut(CamelModel):
    success: bool = True
    health: HealthDetailsOut
    timestamp: int
