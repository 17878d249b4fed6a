"""
Shared configuration management for the PNCP Access proxy.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ACCESS_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    version: str = Field(default="1.0.0")

    # Upstream registry
    upstream_base_url: str = Field(default="https://pncp.gov.br/api/consulta")
    upstream_user_agent: str = Field(default="pncp-access-proxy/1.0")

    # Per-route upstream timeouts (seconds)
    generic_timeout_seconds: float = Field(default=30.0)
    procurements_timeout_seconds: float = Field(default=15.0)
    vehicles_timeout_seconds: float = Field(default=30.0)
    documents_timeout_seconds: float = Field(default=30.0)

    # Orchestrator retry policy; 1 means a single attempt
    upstream_retry_attempts: int = Field(default=1, ge=1, le=5)
    upstream_retry_base_delay: float = Field(default=0.5, ge=0.0)

    # Response cache
    cache_ttl_seconds: float = Field(default=300.0, gt=0)
    cache_max_entries: Optional[int] = Field(default=None, ge=1)

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])


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
