"""
Configuration management for the Transit Proxy.
"""

from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="PROXY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # CORS
    cors_allow_origins: List[str] = Field(default_factory=lambda: ["*"])


class ProxyConfig(BaseConfig):
    """Settings for the caching proxy service."""

    service_name: str = "proxy"
    host: str = "0.0.0.0"
    port: int = Field(default=3000, validation_alias=AliasChoices("PROXY_PORT", "PORT"))

    # Upstream
    upstream_base_url: str = "https://v6.db.transport.rest"
    upstream_timeout_seconds: float = 10.0

    # Cache lifetimes per route family
    locations_ttl_seconds: int = 30
    departures_ttl_seconds: int = 8
    feed_ttl_seconds: int = 300
    # Unset: 502/504 envelopes live as long as the route TTL
    failure_ttl_seconds: Optional[int] = None

    # 0 disables the capacity bound
    cache_max_entries: int = 10_000


def get_config(**overrides) -> ProxyConfig:
    """Get configuration for the proxy service."""
    return ProxyConfig(**overrides)
