#!/usr/bin/env python3
"""Emit deterministic SQL that registers or removes the pg_cron refresh job."""

from __future__ import annotations

import argparse

DEFAULT_JOB_NAME = "daily-active-users-mv-refresh-job"
DEFAULT_SCHEDULE = "0 0 * * *"
DEFAULT_COMMAND = "select scheduled_refresh_active_users_mv()"


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_schedule_sql(*, job_name: str, schedule: str, command: str) -> str:
    name_value = _quote_sql(job_name)
    return f"""-- pg_cron materialized view refresh job
-- Run this in a privileged session of the database that has pg_cron installed.

create extension if not exists pg_cron;

select cron.unschedule(jobid) from cron.job where jobname = {name_value};

select cron.schedule({name_value}, {_quote_sql(schedule)}, {_quote_sql(command)});
"""


def render_unschedule_sql(*, job_name: str) -> str:
    return f"""-- Remove the pg_cron materialized view refresh job
-- The application-level daily fallback refresh takes over on its next tick.

select cron.unschedule(jobid) from cron.job where jobname = {_quote_sql(job_name)};
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to manage the pg_cron materialized view refresh job.")
    parser.add_argument("--job-name", default=DEFAULT_JOB_NAME, help="cron.job jobname")
    parser.add_argument("--schedule", default=DEFAULT_SCHEDULE, help="Cron expression evaluated by pg_cron (GMT)")
    parser.add_argument("--command", default=DEFAULT_COMMAND, help="SQL command run by the job")
    parser.add_argument("--unschedule", action="store_true", help="Emit SQL that removes the job instead")
    args = parser.parse_args()

    if args.unschedule:
        print(render_unschedule_sql(job_name=args.job_name))
        return

    print(render_schedule_sql(job_name=args.job_name, schedule=args.schedule, command=args.command))


if __name__ == "__main__":
    main()
