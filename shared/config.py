"""
Shared configuration management for the Roster Access Layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ROSTER_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: Optional[str] = Field(default="redis://localhost:6379/0")
    roster_api_url: str = Field(default="http://localhost:8787")
    roster_api_timeout: float = Field(default=10.0)

    # Cache-aside store
    cache_default_ttl: int = Field(default=300)

    # Calendar range cache
    shift_cache_ttl_seconds: float = Field(default=300.0)
    range_buffer_days: int = Field(default=3)
    debounce_seconds: float = Field(default=0.3)
    max_calendar_sessions: int = Field(default=500)

    # CORS
    allowed_origins: str = Field(default="http://localhost:3000")


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)

    @property
    def origins(self) -> list:
        """Allowed CORS origins as a list."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port)
