"""Eviction of finished operations past their retention window."""

import asyncio
import contextlib
from collections.abc import Callable

import structlog

from libs.observability.metrics import OperationMetrics

from .registry import OperationRegistry

logger = structlog.get_logger(__name__)


class CleanupSweeper:
    """Evicts terminal operations on demand or on a fixed interval.

    Only terminal entries are touched, so sweeping never contends with the
    watchers of operations that are still running.
    """

    def __init__(
        self,
        registry: OperationRegistry,
        release: Callable[[str], None] | None = None,
        metrics: OperationMetrics | None = None,
    ):
        self.registry = registry
        self._release = release
        self.metrics = metrics
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self, max_age_seconds: float) -> list[str]:
        """Evict terminal operations that ended more than max_age_seconds ago."""
        evicted = self.registry.evict_terminal(max_age_seconds)
        for operation_id in evicted:
            if self._release:
                self._release(operation_id)

        if self.metrics:
            self.metrics.record_evicted(len(evicted))
        if evicted:
            logger.info(
                "Cleaned up finished operations",
                cleaned_count=len(evicted),
                remaining_count=len(self.registry),
                max_age_seconds=max_age_seconds,
            )
        return evicted

    def start(self, interval_seconds: float, max_age_seconds: float) -> None:
        """Start sweeping periodically in the background."""
        if self.running:
            return
        self._task = asyncio.create_task(
            self._sweep_periodically(interval_seconds, max_age_seconds),
            name="operation-cleanup-sweeper",
        )
        logger.info(
            "Periodic operation cleanup started",
            interval_seconds=interval_seconds,
            max_age_seconds=max_age_seconds,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Periodic operation cleanup stopped")

    async def _sweep_periodically(
        self, interval_seconds: float, max_age_seconds: float
    ) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.sweep(max_age_seconds)
            except Exception as error:
                logger.error("Operation cleanup failed", error=str(error))
