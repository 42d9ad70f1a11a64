"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from sqslite.constants import (
    DEFAULT_CACHE_SIZE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_RETRY_DELAY_SECONDS,
    FailurePolicy,
)


class Settings(BaseSettings):
    """Settings loaded from ``SQSLITE_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SQSLITE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Store
    database_url: str = "sqlite+aiosqlite:///queue.db"
    cache_size: int = DEFAULT_CACHE_SIZE
    busy_timeout_seconds: float = 30.0

    # Queue defaults
    queue_name: str = "default"
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    heartbeat_interval_seconds: float | None = None
    failure_policy: FailurePolicy = FailurePolicy.STOP

    # Observability
    otel_exporter_otlp_endpoint: str | None = None
    otel_service_name: str = "sqslite"
    log_level: str = "INFO"
    log_format: str = "json"  # json or console


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
