"""
Shared configuration management for the cargo billing rules service.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="RULES_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Rule store
    postgres_dsn: str = Field(default="postgres://localhost:5432/cargo_billing")
    postgres_min_pool: int = Field(default=2)
    postgres_max_pool: int = Field(default=10)
    command_timeout: float = Field(default=30.0)
    record_page_size: int = Field(default=1000)

    # Priority rewriting
    priority_stage_offset: int = Field(default=1000)
    priority_start: int = Field(default=1)

    # Assignment execution
    assignment_batch_size: int = Field(default=50)
    rate_amount_precision: int = Field(default=2)
    default_currency: str = Field(default="EUR")

    # Observability
    metrics_port: Optional[int] = Field(default=None)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str

    def __init__(self, service_name: str, **kwargs):
        super().__init__(service_name=service_name, **kwargs)


def get_config(service_name: str = "rules") -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name)
