"""
Shared configuration management for the Splitledger Console.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="CONSOLE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Expense backend
    backend_url: str = Field(default="http://localhost:3000/api")
    backend_token: Optional[str] = Field(default=None)
    request_timeout_seconds: float = Field(default=10.0)

    # Resilience
    retry_max_attempts: int = Field(default=3)
    retry_base_delay: float = Field(default=0.5)
    circuit_failure_threshold: int = Field(default=5)
    circuit_recovery_timeout: float = Field(default=30.0)

    # Keyed caches (one capacity shared by every domain cache)
    cache_capacity: int = Field(default=50)

    @field_validator("cache_capacity")
    @classmethod
    def validate_capacity(cls, v: int) -> int:
        if v < 1:
            raise ValueError("cache_capacity must be at least 1")
        return v

    @field_validator("retry_max_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        return max(1, v)


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
