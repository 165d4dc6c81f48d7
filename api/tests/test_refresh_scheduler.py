from __future__ import annotations

import pytest

from app.core.config import Settings
from app.services.scheduler import (
    FALLBACK_REFRESH_JOB_ID,
    build_refresh_scheduler,
    start_refresh_scheduler,
    stop_refresh_scheduler,
)


def test_scheduler_registers_daily_fallback_job(coordinator) -> None:
    scheduler = build_refresh_scheduler(coordinator, Settings(fallback_refresh_cron="0 0 * * *"))

    job = scheduler.get_job(FALLBACK_REFRESH_JOB_ID)
    assert job is not None
    assert job.func == coordinator.evaluate_and_refresh
    assert job.max_instances == 1
    assert job.coalesce is True
    assert job.misfire_grace_time == 300

    fields = {field.name: str(field) for field in job.trigger.fields}
    assert fields["hour"] == "0"
    assert fields["minute"] == "0"
    assert fields["day"] == "*"


def test_scheduler_rejects_invalid_cron(coordinator) -> None:
    with pytest.raises(ValueError, match="fallback_refresh_cron"):
        build_refresh_scheduler(coordinator, Settings(fallback_refresh_cron="every day"))


def test_disabled_scheduler_is_not_started(coordinator) -> None:
    assert start_refresh_scheduler(coordinator, Settings(scheduler_enabled=False)) is None
    stop_refresh_scheduler(None)
