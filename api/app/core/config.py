from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "blog-api"
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    materialized_view_name: str = "active_users_stats_mv"
    refresh_function_name: str = "refresh_active_users_mv"
    cron_job_name: str = "daily-active-users-mv-refresh-job"
    fallback_refresh_cron: str = "0 0 * * *"
    scheduler_timezone: str = "UTC"
    scheduler_enabled: bool = True
    probe_timeout_seconds: float = 5.0
    refresh_timeout_seconds: float = 60.0
    statistics_window_hours: int = 24
    otel_enabled: bool = True
    otel_service_name: str = "blog-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="BLOG_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
