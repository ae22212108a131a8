"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///queue.db"
    database_pool_size: int = 10
    database_max_overflow: int = 20
    database_busy_timeout_seconds: float = 30.0

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3000

    # Worker Configuration
    worker_id: str | None = None
    worker_poll_interval_seconds: float = 1.0
    worker_batch_size: int = 10
    worker_pid_file: str = ".worker-pids"

    # Reaper Configuration (opt-in, operator-run)
    reaper_interval_seconds: int = 60
    reaper_lease_ttl_seconds: int = 3600
    # Slack added to a job's own timeout before its lease counts as stale
    reaper_timeout_grace_seconds: int = 60

    # Observability
    otel_exporter_otlp_endpoint: str | None = None
    otel_service_name: str = "queuectl"
    log_level: str = "INFO"
    log_format: str = "console"  # json or console


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
