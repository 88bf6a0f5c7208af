"""Configuration for observability components."""

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MetricsConfig(BaseModel):
    """Configuration for metrics collection."""

    enabled: bool = True
    prefix: str = "async_operations"


class LoggingConfig(BaseModel):
    """Configuration for structured logging."""

    level: str = "INFO"
    format: str = "json"  # json or console
    enable_correlation: bool = True
    enable_tracing_integration: bool = True
    processors: list[str] = Field(
        default_factory=lambda: [
            "structlog.contextvars.merge_contextvars",
            "structlog.processors.TimeStamper",
            "structlog.processors.add_log_level",
            "structlog.processors.StackInfoRenderer",
        ]
    )


class ObservabilityConfig(BaseSettings):
    """Main observability configuration."""

    model_config = SettingsConfigDict(
        env_prefix="OBSERVABILITY_", env_nested_delimiter="__"
    )

    service_name: str = "async-operations"
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

