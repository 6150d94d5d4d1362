# ABOUTME: Configuration management for the Scylla Cloud client using Pydantic settings
# ABOUTME: Loads endpoint, token, retry and safety settings from environment variables

"""
Configuration for the Scylla Cloud client.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

All runtime settings live here as Pydantic models. Values come from
environment variables (and optionally an env file), are validated once at
startup, and are then handed to the client, transport and reconciler as
plain objects.

=============================================================================
ENVIRONMENT VARIABLES
=============================================================================

    SCYLLA_CLOUD_ENDPOINT          API base URL (default https://cloud.scylladb.com/api/v0)
    SCYLLA_CLOUD_TOKEN             API token (required)
    SCYLLA_CLOUD_ACCOUNT_ID        account id; discovered from the API when unset
    SCYLLA_CLOUD_INSECURE          skip TLS verification
    SCYLLA_CLOUD_TIMEOUT           per-request timeout in seconds (60)
    SCYLLA_CLOUD_POLL_INTERVAL     seconds between cluster request polls (10)
    SCYLLA_CLOUD_LOG_LEVEL         DEBUG, INFO, WARNING, ERROR or CRITICAL
    SCYLLA_CLOUD_JSON_LOGS         emit JSON log lines

    SCYLLA_CLOUD_RETRY_MAX_ATTEMPTS, _INITIAL_BACKOFF, _MULTIPLIER, _MAX_BACKOFF
    SCYLLA_CLOUD_SECURITY_READ_ONLY, _DISABLE_DESTRUCTIVE, _MASK_SECRETS, _AUDIT_LOG

Set SCYLLA_CLOUD_ENV_FILE to read additional values from a dotenv file.

=============================================================================
SECRETSTR
=============================================================================

The token is a ``SecretStr``: printing the settings shows ``**********``.
Only the transport calls ``get_secret_value()`` when building headers.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from scylla_cloud import __version__

DEFAULT_ENDPOINT = "https://cloud.scylladb.com/api/v0"
DEFAULT_USER_AGENT = f"scylla-cloud-client/{__version__}"


# =============================================================================
# CLOUD INSTANCE
# =============================================================================


class CloudInstance(BaseModel):
    """
    Connection details for one Scylla Cloud API endpoint.

    Example:
        instance = CloudInstance(token=SecretStr("my-api-token"), account_id=12)
    """

    model_config = {"extra": "ignore"}

    url: str = Field(default=DEFAULT_ENDPOINT, description="API base URL")
    token: SecretStr = Field(description="API token")
    account_id: int | None = Field(default=None, description="Account id; discovered when unset")
    name: str = Field(default="default", description="Instance identifier")
    insecure: bool = Field(default=False, description="Skip TLS verification")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Add https:// when no scheme is given and strip trailing slashes."""
        if not v.startswith(("http://", "https://")):
            v = f"https://{v}"
        return v.rstrip("/")


# =============================================================================
# RETRY SETTINGS
# =============================================================================


class RetrySettings(BaseSettings):
    """Backoff settings for retryable failures."""

    model_config = SettingsConfigDict(env_prefix="SCYLLA_CLOUD_RETRY_")

    max_attempts: int = Field(default=3, ge=1, description="Attempts per call, first one included")
    initial_backoff: float = Field(default=1.0, ge=0, description="Seconds before the first retry")
    multiplier: float = Field(default=2.0, ge=1, description="Backoff growth factor")
    max_backoff: float = Field(default=30.0, ge=0, description="Upper bound on a single wait")


# =============================================================================
# SECURITY SETTINGS
# =============================================================================


class SecuritySettings(BaseSettings):
    """
    Guard rails for mutating operations.

    ``read_only`` blocks every create, resize and delete. ``disable_destructive``
    only blocks deletes. Both default to off since this is a provisioning
    client; hosts that only inspect clusters should turn ``read_only`` on.
    """

    model_config = SettingsConfigDict(env_prefix="SCYLLA_CLOUD_SECURITY_")

    read_only: bool = Field(default=False, description="Block all mutating operations")
    disable_destructive: bool = Field(default=False, description="Block delete operations")
    mask_secrets: bool = Field(default=True, description="Mask sensitive values in logged bodies")
    audit_log: Path | None = Field(default=None, description="Path to audit log file")


# =============================================================================
# CLIENT SETTINGS
# =============================================================================


class ClientSettings(BaseSettings):
    """
    Top-level client settings.

    Example:
        settings = load_settings()
        async with ScyllaCloudClient(settings.instance, timeout=settings.timeout) as client:
            ...
    """

    model_config = SettingsConfigDict(
        env_prefix="SCYLLA_CLOUD_",
        env_nested_delimiter="__",
        extra="ignore",
        populate_by_name=True,
    )

    endpoint: str = Field(default=DEFAULT_ENDPOINT, description="API base URL")
    token: SecretStr = Field(default=SecretStr(""), description="API token")
    account_id: int | None = Field(default=None, description="Account id")
    insecure: bool = Field(default=False, description="Skip TLS verification")
    timeout: float = Field(default=60.0, gt=0, description="Per-request timeout in seconds")
    poll_interval: float = Field(default=10.0, ge=0, description="Seconds between polls")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent header")
    log_level: Annotated[str, Field(pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")] = Field(
        default="INFO",
        description="Logging level",
    )
    json_logs: bool = Field(default=False, description="Emit JSON log lines")

    retry: RetrySettings = Field(default_factory=RetrySettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v

    @property
    def instance(self) -> CloudInstance | None:
        """The configured endpoint, or None when no token is set."""
        if not self.token.get_secret_value():
            return None
        return CloudInstance(
            url=self.endpoint,
            token=self.token,
            account_id=self.account_id,
            name="primary",
            insecure=self.insecure,
        )


def load_settings() -> ClientSettings:
    """
    Load settings from the environment.

    When SCYLLA_CLOUD_ENV_FILE names a file, it is read as a dotenv file;
    real environment variables take precedence over it.

    Raises:
        pydantic.ValidationError: If configuration is invalid.
    """
    return ClientSettings(
        _env_file=os.environ.get("SCYLLA_CLOUD_ENV_FILE"),
    )
