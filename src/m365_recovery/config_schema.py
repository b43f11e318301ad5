"""Pydantic configuration schema for the M365 bulk recovery client.

This module defines the configuration schema that mirrors config.yaml
structure. Secrets never live in the file: it names the environment
variables that hold them.

Usage:
    from m365_recovery.config_schema import AppConfig

    config = AppConfig(**yaml_data)
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1


class RscConfig(BaseModel):
    """Platform endpoint and service account configuration."""

    base_url: str = Field(description="Platform base URL, e.g. https://example.my.rubrik.com")
    client_id: str | None = Field(
        default=None,
        description="Service account client id (not needed when a static token is used)",
    )
    client_secret_env: str = Field(
        default="RSC_CLIENT_SECRET",
        description="Environment variable holding the service account client secret",
    )
    access_token_env: str = Field(
        default="RSC_ACCESS_TOKEN",
        description="Environment variable holding an externally managed bearer token",
    )
    request_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        le=600,
        description="Timeout for a single GraphQL request",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries for transient errors (5xx, 429, timeouts)",
    )
    requests_per_second: float = Field(
        default=5.0,
        gt=0,
        le=100,
        description="Proactive client-side rate limit",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an https URL and strip any trailing slash."""
        v = v.strip()
        if not v.startswith("https://"):
            raise ValueError("base_url must start with https://")
        return v.rstrip("/")


class PollingConfig(BaseModel):
    """Defaults for wait-recovery."""

    interval_seconds: float = Field(
        default=30.0,
        ge=1,
        le=3600,
        description="Seconds between progress polls",
    )
    timeout_minutes: int = Field(
        default=720,
        ge=1,
        le=10080,
        description="Give up waiting after this many minutes (the recovery keeps running)",
    )


class LoggingConfig(BaseModel):
    """Log output configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level",
    )
    json_output: bool = Field(
        default=False,
        description="Emit JSON log lines (for unattended runs)",
    )


class AppConfig(BaseModel):
    """Root configuration schema for the M365 bulk recovery client."""

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version for migration tracking",
    )
    rsc: RscConfig
    polling: PollingConfig = Field(default_factory=PollingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
