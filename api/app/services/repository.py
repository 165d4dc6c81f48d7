from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]

from app.core.config import get_settings


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryQueryError(RepositoryError):
    """Raised when PostgreSQL or the driver rejects a statement."""


class RepositoryTimeoutError(RepositoryError):
    """Raised when a statement does not finish within its time bound."""


class RepositoryValidationError(RepositoryError):
    """Raised when arguments are rejected before reaching the database."""


class RefreshKind(str, Enum):
    SCHEDULED = "SCHEDULED"
    MANUAL = "MANUAL"
    FALLBACK = "FALLBACK"


@dataclass(slots=True)
class RefreshRecord:
    view_name: str
    refresh_kind: RefreshKind
    triggered_at: datetime
    duration_ms: int
    success: bool
    error_message: str | None = None


@dataclass(slots=True)
class CronJobRecord:
    job_id: int
    job_name: str
    schedule: str
    command: str
    active: bool


IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")
DEFAULT_COMMAND_TIMEOUT_SECONDS = 15.0
DEFAULT_CONNECT_TIMEOUT_SECONDS = 10.0


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ping(self, *, timeout: float | None = 5.0) -> None:
        await self._fetchval("select 1", timeout=timeout)

    async def is_extension_installed(self, extension_name: str, *, timeout: float | None = None) -> bool:
        installed = await self._fetchval(
            "select exists(select 1 from pg_extension where extname = $1)",
            extension_name,
            timeout=timeout,
        )
        return bool(installed)

    async def get_cron_job(self, job_name: str, *, timeout: float | None = None) -> CronJobRecord | None:
        # cron.job only exists once pg_cron is installed; callers treat the error as absence.
        row = await self._fetchrow(
            """
            select jobid, jobname, schedule, command, active
            from cron.job
            where jobname = $1
            order by jobid
            limit 1
            """,
            job_name,
            timeout=timeout,
        )
        if row is None:
            return None
        return CronJobRecord(
            job_id=int(row["jobid"]),
            job_name=row["jobname"],
            schedule=row["schedule"],
            command=row["command"],
            active=bool(row["active"]),
        )

    async def call_refresh_function(self, function_name: str, *, timeout: float | None = None) -> None:
        await self._fetchval(f"select {self._identifier(function_name)}()", timeout=timeout)

    async def refresh_materialized_view(
        self,
        view_name: str,
        *,
        concurrently: bool = True,
        timeout: float | None = None,
    ) -> None:
        mode = " concurrently" if concurrently else ""
        await self._execute(f"refresh materialized view{mode} {self._identifier(view_name)}", timeout=timeout)

    async def insert_refresh_record(self, record: RefreshRecord, *, timeout: float | None = None) -> None:
        await self._execute(
            """
            insert into materialized_view_refresh_log (
              view_name,
              refresh_type,
              triggered_at,
              duration_ms,
              success,
              error_message
            )
            values ($1, $2, $3, $4, $5, $6)
            """,
            record.view_name,
            record.refresh_kind.value,
            record.triggered_at,
            record.duration_ms,
            record.success,
            record.error_message,
            timeout=timeout,
        )

    async def get_refresh_statistics(
        self,
        view_name: str,
        *,
        since: datetime,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        row = await self._fetchrow(
            """
            select
              count(*) as refresh_count,
              max(triggered_at) as last_refresh,
              avg(duration_ms) as average_duration_ms,
              count(*) filter (where success = false) as error_count
            from materialized_view_refresh_log
            where view_name = $1
              and triggered_at >= $2
            """,
            view_name,
            since,
            timeout=timeout,
        )
        if row is None:
            return {"refresh_count": 0, "last_refresh": None, "average_duration_ms": None, "error_count": 0}
        return {
            "refresh_count": int(row["refresh_count"]),
            "last_refresh": row["last_refresh"],
            "average_duration_ms": float(row["average_duration_ms"]) if row["average_duration_ms"] is not None else None,
            "error_count": int(row["error_count"]),
        }

    async def list_active_user_statistics(
        self,
        view_name: str,
        *,
        limit: int,
        offset: int,
    ) -> list[dict[str, Any]]:
        rows = await self._fetch(
            f"""
            select
              username,
              display_name,
              posts_count,
              comments_count,
              likes_received,
              total_views,
              activity_score
            from {self._identifier(view_name)}
            order by activity_score desc, username
            limit $1 offset $2
            """,
            limit,
            offset,
        )
        return [
            {
                "username": row["username"],
                "display_name": row["display_name"],
                "posts_count": int(row["posts_count"] or 0),
                "comments_count": int(row["comments_count"] or 0),
                "likes_received": int(row["likes_received"] or 0),
                "total_views": int(row["total_views"] or 0),
                "activity_score": float(row["activity_score"] or 0.0),
            }
            for row in rows
        ]

    async def _fetchval(self, query: str, *args: Any, timeout: float | None = None) -> Any:
        return await self._run("fetchval", query, *args, timeout=timeout)

    async def _fetchrow(self, query: str, *args: Any, timeout: float | None = None) -> asyncpg.Record | None:
        return await self._run("fetchrow", query, *args, timeout=timeout)

    async def _fetch(self, query: str, *args: Any, timeout: float | None = None) -> list[asyncpg.Record]:
        return await self._run("fetch", query, *args, timeout=timeout)

    async def _execute(self, query: str, *args: Any, timeout: float | None = None) -> str:
        return await self._run("execute", query, *args, timeout=timeout)

    async def _run(self, method: str, query: str, *args: Any, timeout: float | None) -> Any:
        # The bound covers pool creation and connection acquisition, not only the statement.
        try:
            return await asyncio.wait_for(self._run_on_connection(method, query, *args), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise RepositoryTimeoutError(f"database call timed out after {timeout}s") from exc

    async def _run_on_connection(self, method: str, query: str, *args: Any) -> Any:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as connection:
                return await getattr(connection, method)(query, *args)
        except asyncio.TimeoutError as exc:
            raise RepositoryTimeoutError(f"statement exceeded {DEFAULT_COMMAND_TIMEOUT_SECONDS}s command timeout") from exc
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            raise RepositoryQueryError(str(exc)) from exc

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("BLOG_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=DEFAULT_COMMAND_TIMEOUT_SECONDS,
                timeout=DEFAULT_CONNECT_TIMEOUT_SECONDS,
            )
            return self._pool
        except asyncio.TimeoutError as exc:
            raise RepositoryTimeoutError(f"database connect timed out after {DEFAULT_CONNECT_TIMEOUT_SECONDS}s") from exc
        except Exception as exc:
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _identifier(value: str) -> str:
        if not IDENTIFIER_RE.match(value):
            raise RepositoryValidationError(f"invalid SQL identifier: {value!r}")
        return value


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
