"""
Shared configuration management for the module access layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/access")
    auth_service_url: str = Field(default="http://localhost:8010")

    # Module access decisions
    module_access_cache_backend: str = Field(default="memory")
    module_access_cache_ttl_seconds: float = Field(default=30.0, gt=0)
    module_access_cache_max_entries: int = Field(default=1500, ge=1)
    module_access_cache_stripes: int = Field(default=16, ge=1)
    membership_fallback_limit: int = Field(default=20, ge=1)

    # Persistence
    auto_migrate: bool = Field(default=False)
    postgres_pool_min_size: int = Field(default=2)
    postgres_pool_max_size: int = Field(default=10)

    # CORS origin for non-local environments
    allow_origin: Optional[str] = Field(default=None)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
