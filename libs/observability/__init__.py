"""Observability stack for async operation tracking."""

from .config import LoggingConfig, MetricsConfig, ObservabilityConfig
from .logging import (
    configure_structured_logging,
    get_correlation_id,
    operation_log_context,
    set_correlation_id,
)
from .metrics import OperationMetrics, create_operation_metrics

__all__ = [
    "ObservabilityConfig",
    "LoggingConfig",
    "MetricsConfig",
    "OperationMetrics",
    "create_operation_metrics",
    "configure_structured_logging",
    "operation_log_context",
    "set_correlation_id",
    "get_correlation_id",
]
