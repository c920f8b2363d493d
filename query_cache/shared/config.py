"""
Shared configuration management for the query cache.

Process-wide defaults are read from the environment (prefix ``QUERY_CACHE_``)
or a local ``.env`` file. Per-cache and per-query options are layered on top
of these by :mod:`query_cache.config`.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class QueryCacheSettings(BaseSettings):
    """Process-wide query cache defaults."""

    model_config = SettingsConfigDict(
        env_prefix="QUERY_CACHE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Logging
    log_level: str = Field(default="info")

    # Freshness and retention, in seconds
    stale_time: float = Field(default=0.0, ge=0)
    cache_time: float = Field(default=300.0, ge=0)

    # Retry behaviour
    retry: int = Field(default=3, ge=0)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=30.0, ge=0)
    retry_backoff: str = Field(default="exponential")
    retry_jitter: bool = Field(default=False)

    # Refetch triggers
    refetch_on_mount: bool = Field(default=True)
    refetch_interval_in_background: bool = Field(default=False)


def get_settings(**overrides) -> QueryCacheSettings:
    """Load settings from the environment, applying explicit overrides."""
    return QueryCacheSettings(**overrides)
