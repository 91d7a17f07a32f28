"""Configuration module using Pydantic Settings."""

import logging
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Settings(BaseSettings):
    """Gateway settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Rate window (5 calls per minute on the provider's free tier)
    quota: int = Field(default=5, gt=0)
    window_seconds: float = Field(default=60.0, gt=0)

    # Cache
    default_ttl_seconds: float = Field(default=900.0, gt=0)  # 15 minutes
    cache_max_size: int | None = None
    sweep_interval_seconds: float = Field(default=60.0, gt=0)

    # Queue
    queue_capacity: int = Field(default=1000, gt=0)
    tick_interval_seconds: float = Field(default=1.0, gt=0)
    max_rate_limit_retries: int = Field(default=3, ge=0)
    backoff_base_seconds: float = Field(default=1.0, ge=0)
    backoff_max_seconds: float = Field(default=60.0, ge=0)

    # Upstream HTTP call
    upstream_base_url: str = ""
    upstream_url_template: str = "{key}"
    upstream_method: str = "GET"
    upstream_api_key: str | None = None
    upstream_auth_header: str | None = "x-api-key"
    upstream_auth_scheme: str | None = None  # e.g. "Bearer"
    upstream_auth_query_param: str | None = None  # e.g. "apiKey"
    call_timeout_seconds: float = Field(default=30.0, gt=0)

    # Logging
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: str | None = None) -> None:
    """
    Configure root logging for processes embedding the gateway.

    Args:
        level: Log level name, defaults to the configured ``log_level``
    """
    level_name = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
    )
