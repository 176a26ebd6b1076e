from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "jobsync-api"
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    sync_window_size: int = 5
    sync_time_budget_seconds: float = 25.0
    sync_concurrency: int = 5
    max_jobs_per_company: int = 20
    batch_max_size: int = 50
    batch_max_wait_seconds: float = 2.0
    discovery_window_size: int = 5
    prune_stale_days: int = 30
    prune_row_limit: int = 500
    prune_delete_batch_size: int = 50
    run_log_flush_interval_seconds: float = 2.0
    stuck_run_after_minutes: int = 60
    http_timeout_seconds: float = 15.0
    http_max_retries: int = 3
    http_retry_base_seconds: float = 1.0
    greenhouse_companies: list[str] = []
    lever_companies: list[str] = []
    workable_companies: list[str] = []
    jobicy_tag: str | None = None
    otel_enabled: bool = True
    otel_service_name: str = "jobsync"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="JOBSYNC_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
