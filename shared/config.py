"""
Shared configuration management for the document store access layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_API_URL = "https://api.communibase.nl/0.1/"


class ConnectorConfig(BaseSettings):
    """Connector configuration, read from ``DOCSTORE_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DOCSTORE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Credentials (either one is enough)
    api_key: Optional[str] = Field(default=None)
    token: Optional[str] = Field(default=None)

    # Remote endpoint
    api_url: str = Field(default=DEFAULT_API_URL)
    api_host: Optional[str] = Field(default=None)
    request_timeout: float = Field(default=30.0, gt=0)

    # Dispatch
    concurrency: int = Field(default=8, ge=1)

    # Read cache
    cache_capacity: int = Field(default=1000, ge=1)
    invalidation_backend: str = Field(default="socketio", pattern="^(socketio|redis)$")
    invalidation_reconnect_delay: float = Field(default=1.0, gt=0)
    invalidation_reconnect_max_delay: float = Field(default=30.0, gt=0)

    # get_by_ids behaviour when some ids fail: "drop" or "raise"
    partial_policy: str = Field(default="drop", pattern="^(drop|raise)$")


def get_config(**overrides) -> ConnectorConfig:
    """Get connector configuration, applying explicit overrides over the environment."""
    return ConnectorConfig(**overrides)
