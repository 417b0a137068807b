"""Configuration management for the CDC engine."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerConfig(BaseSettings):
    """Task scheduler configuration."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    tick_interval_seconds: float = 1.0
    default_interval_seconds: float = 60.0
    concurrent_execution: bool = False
    max_workers: int = 4
    action_timeout_seconds: Optional[float] = None
    run_history_limit: int = 1000


class RetryConfig(BaseSettings):
    """Retry policy for failed task runs."""

    model_config = SettingsConfigDict(env_prefix="RETRY_")

    strategy: str = "fixed"
    multiplier: float = 2.0
    max_delay_seconds: float = 3600.0


class StreamConfig(BaseSettings):
    """Stream cursor configuration."""

    model_config = SettingsConfigDict(env_prefix="STREAM_")

    batch_size: int = 100
    lag_threshold_seconds: int = 300


class ObservabilityConfig(BaseSettings):
    """Observability configuration."""

    model_config = SettingsConfigDict(env_prefix="", populate_by_name=True)

    metrics_port: int = Field(default=8000, alias="METRICS_PORT")
    health_check_port: int = Field(default=8001, alias="HEALTH_CHECK_PORT")
    metrics_enabled: bool = Field(default=False, alias="METRICS_ENABLED")


class ApplicationConfig(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    log_level: str = "INFO"
    log_format: str = "json"


class Settings(BaseSettings):
    """Main settings container."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    app: ApplicationConfig = Field(default_factory=ApplicationConfig)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
