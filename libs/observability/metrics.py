"""Prometheus metrics for async operation tracking."""

import structlog
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

from .config import MetricsConfig

logger = structlog.get_logger(__name__)


class OperationMetrics:
    """Operation lifecycle metrics."""

    def __init__(
        self, prefix: str = "async_operations", registry: CollectorRegistry | None = None
    ):
        self.prefix = prefix
        self.registry = registry if registry is not None else CollectorRegistry()

        self.operations_created_total = Counter(
            f"{prefix}_created_total",
            "Total operations created",
            ["operation_type"],
            registry=self.registry,
        )

        self.operations_finished_total = Counter(
            f"{prefix}_finished_total",
            "Total operations that reached a terminal status",
            ["operation_type", "status"],
            registry=self.registry,
        )

        self.operation_duration = Histogram(
            f"{prefix}_duration_seconds",
            "Time from creation to terminal status in seconds",
            ["operation_type", "status"],
            buckets=[0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0],
            registry=self.registry,
        )

        self.status_fetch_errors_total = Counter(
            f"{prefix}_status_fetch_errors_total",
            "Status fetch failures",
            ["error_type"],
            registry=self.registry,
        )

        self.active_watchers = Gauge(
            f"{prefix}_active_watchers",
            "Number of operations currently being polled",
            registry=self.registry,
        )

        self.evicted_total = Counter(
            f"{prefix}_evicted_total",
            "Finished operations evicted by cleanup",
            registry=self.registry,
        )

    def record_created(self, operation_type: str) -> None:
        self.operations_created_total.labels(operation_type=operation_type).inc()

    def record_finished(
        self, operation_type: str, status: str, duration_seconds: float | None
    ) -> None:
        self.operations_finished_total.labels(
            operation_type=operation_type, status=status
        ).inc()
        if duration_seconds is not None:
            self.operation_duration.labels(
                operation_type=operation_type, status=status
            ).observe(duration_seconds)

    def record_fetch_error(self, error: BaseException) -> None:
        self.status_fetch_errors_total.labels(error_type=type(error).__name__).inc()

    def record_evicted(self, count: int) -> None:
        if count:
            self.evicted_total.inc(count)


def create_operation_metrics(
    config: MetricsConfig | None = None, registry: CollectorRegistry | None = None
) -> OperationMetrics | None:
    """Create operation metrics, or None when metrics are disabled."""
    config = config or MetricsConfig()
    if not config.enabled:
        logger.info("Operation metrics disabled")
        return None
    return OperationMetrics(prefix=config.prefix, registry=registry)
