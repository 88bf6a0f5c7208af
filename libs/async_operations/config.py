"""Async operation engine configuration settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AsyncOperationSettings(BaseSettings):
    """Configuration for operation polling, deadlines and retention."""

    model_config = SettingsConfigDict(
        env_prefix="ASYNC_OPS_",
        case_sensitive=False,
        extra="ignore",
    )

    # Polling
    poll_interval_seconds: float = Field(
        default=1.0, gt=0, description="Interval between status polls"
    )
    default_timeout_seconds: float = Field(
        default=300.0, gt=0, description="Operation deadline measured from creation"
    )
    max_consecutive_failures: int | None = Field(
        default=None,
        ge=1,
        description="Fail an operation after this many status fetch errors in a row",
    )

    # Cleanup
    retention_seconds: float = Field(
        default=3600.0, ge=0, description="Minimum age before evicting a finished operation"
    )
    cleanup_interval_seconds: float | None = Field(
        default=None, gt=0, description="Periodic cleanup interval, disabled when unset"
    )

    # Status endpoint
    server_url: str = Field(
        default="http://localhost:8010/api/v1", description="OLAP server REST base URL"
    )
    request_timeout_seconds: float = Field(
        default=30.0, gt=0, description="HTTP request timeout"
    )
    verify_ssl: bool = Field(default=True, description="Verify TLS certificates")


def get_async_operation_settings() -> AsyncOperationSettings:
    """Get async operation settings instance."""
    return AsyncOperationSettings()
