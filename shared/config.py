"""
Shared configuration management for the Fact Access Layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings.

    Every field can be overridden with a ``FACTS_``-prefixed environment
    variable, e.g. ``FACTS_REDIS_URL`` or ``FACTS_FALLBACK_ENABLED=true``.
    """

    model_config = SettingsConfigDict(
        env_prefix="FACTS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Cache and counter backend
    redis_url: str = Field(default="redis://localhost:6379/0")
    cache_namespace: str = Field(default="facts")
    redis_socket_timeout: float = Field(default=2.0)

    # External collaborators
    fact_store_url: str = Field(default="http://localhost:8021")
    identity_store_url: str = Field(default="http://localhost:8022")
    store_timeout_seconds: float = Field(default=5.0)

    # Generative fallback
    generator_url: str = Field(default="https://models.github.ai/inference")
    generator_api_key: Optional[str] = Field(default=None)
    generator_model: str = Field(default="xai/grok-3")
    generator_timeout_seconds: float = Field(default=8.0)
    fallback_enabled: bool = Field(default=False)
    moderation_enabled: bool = Field(default=False)

    # Cache TTLs; stored facts rotate faster than generated ones
    store_fact_ttl_seconds: int = Field(default=300)
    generated_fact_ttl_seconds: int = Field(default=3600)

    # Rate limiting
    rate_window_seconds: int = Field(default=900)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port)
