"""Public API for tracking async operations on the OLAP server."""

import asyncio
import inspect
from typing import Any

import httpx
import structlog

from libs.observability.config import ObservabilityConfig
from libs.observability.logging import configure_structured_logging
from libs.observability.metrics import OperationMetrics, create_operation_metrics

from .cleanup import CleanupSweeper
from .config import AsyncOperationSettings
from .exceptions import (
    InvalidOperationStateError,
    OperationCancelledError,
    OperationFailedError,
    OperationTimedOutError,
    OperationTimeoutError,
)
from .models import Operation, OperationDefinition, OperationStatus, PollingOptions
from .registry import OperationRegistry
from .resolver import HttpStatusResolver, StatusResolver, cancel_remote_quietly
from .watcher import OperationWatcher, ProgressCallback

logger = structlog.get_logger(__name__)


class AsyncOperationService:
    """Creates, watches, cancels and cleans up async operations.

    Waiting methods are coroutines bound to the event loop that runs them;
    the read-only methods may be called from any thread.
    """

    def __init__(
        self,
        resolver: StatusResolver,
        settings: AsyncOperationSettings | None = None,
        registry: OperationRegistry | None = None,
        metrics: OperationMetrics | None = None,
    ):
        self.settings = settings or AsyncOperationSettings()
        self.resolver = resolver
        self.registry = registry or OperationRegistry(
            default_timeout_seconds=self.settings.default_timeout_seconds
        )
        self.metrics = metrics
        self.sweeper = CleanupSweeper(
            self.registry, release=self._discard_watcher, metrics=metrics
        )
        self._watchers: dict[str, OperationWatcher] = {}
        self._owns_resolver = False

        logger.info(
            "Async operation service initialized",
            poll_interval=self.settings.poll_interval_seconds,
            default_timeout=self.settings.default_timeout_seconds,
            retention=self.settings.retention_seconds,
        )

    @classmethod
    def from_settings(
        cls,
        settings: AsyncOperationSettings | None = None,
        client: httpx.AsyncClient | None = None,
        metrics: OperationMetrics | None = None,
        observability: ObservabilityConfig | None = None,
    ) -> "AsyncOperationService":
        """Build a service polling the server's REST endpoint.

        When an observability config is given, structured logging is configured
        from it and, unless metrics are passed in, operation metrics are created
        from it as well.
        """
        settings = settings or AsyncOperationSettings()
        if observability is not None:
            configure_structured_logging(observability.logging)
            if metrics is None:
                metrics = create_operation_metrics(observability.metrics)

        resolver = HttpStatusResolver(
            settings.server_url,
            client=client,
            timeout=settings.request_timeout_seconds,
            verify_ssl=settings.verify_ssl,
        )
        service = cls(resolver, settings=settings, metrics=metrics)
        service._owns_resolver = True
        return service

    # Creation and lookup

    def create_operation(
        self, definition: OperationDefinition | dict[str, Any]
    ) -> str:
        """Start tracking an operation and return its id.

        Polling starts with the first wait, monitor or poll call. If that call
        comes after the deadline the server is still asked once before the
        operation is marked timed out.
        """
        operation = self.registry.create(definition)
        if self.metrics:
            self.metrics.record_created(operation.type.value)
        return operation.id

    def get_status(self, operation_id: str) -> OperationStatus:
        """Cached status of an operation. Never contacts the server."""
        return self.registry.get(operation_id).status

    def get_operation(self, operation_id: str) -> Operation | None:
        return self.registry.find(operation_id)

    def list_operations(self) -> list[Operation]:
        return self.registry.list_all()

    def list_active(self) -> list[Operation]:
        """Operations that have not reached a terminal status."""
        return self.registry.list_active()

    # Waiting

    async def wait_for_completion(
        self, operation_id: str, timeout: float | None = None
    ) -> Any:
        """Wait for the operation to finish and return its result.

        Args:
            operation_id: Operation to wait for
            timeout: Seconds this caller is willing to wait. Elapsing raises
                OperationTimeoutError but leaves the operation running.

        Raises:
            OperationFailedError: The server reported a failure
            OperationCancelledError: The operation was cancelled
            OperationTimedOutError: The operation exceeded its own deadline
            OperationTimeoutError: The caller's timeout elapsed first
        """
        operation = self.registry.get(operation_id)
        if operation.is_terminal:
            return self._outcome_value(operation)

        watcher = self._ensure_watcher(operation_id)
        final = await self._await_outcome(watcher, operation_id, timeout)
        return self._outcome_value(final)

    async def monitor(
        self,
        operation_id: str,
        on_progress: ProgressCallback | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Like wait_for_completion, calling on_progress on every poll tick.

        on_progress receives an Operation snapshot and may be a plain function
        or a coroutine function. Callbacks run on their own task, so a slow
        callback never delays polling, the deadline or other waiters.
        """
        operation = self.registry.get(operation_id)
        if operation.is_terminal:
            if on_progress:
                outcome = on_progress(operation)
                if inspect.isawaitable(outcome):
                    await outcome
            return self._outcome_value(operation)

        watcher = self._ensure_watcher(operation_id)
        if on_progress is None:
            final = await self._await_outcome(watcher, operation_id, timeout)
            return self._outcome_value(final)

        listener = watcher.add_progress_listener(on_progress)
        try:
            final = await self._await_outcome(watcher, operation_id, timeout)
            # Give the callback one poll interval to see the final operation
            if not await listener.drain(self.settings.poll_interval_seconds):
                logger.warning(
                    "Progress callback still running after completion",
                    operation_id=operation_id,
                )
        finally:
            watcher.remove_progress_listener(listener)
        return self._outcome_value(final)

    async def poll_until_terminal(
        self, operation_id: str, options: PollingOptions | None = None
    ) -> OperationStatus:
        """Wait for a terminal status without raising on failure or cancellation.

        The wait is bounded by max_attempts poll intervals, which defaults to
        the polling timeout divided by the interval.
        """
        options = options or PollingOptions()
        interval = options.interval_seconds or self.settings.poll_interval_seconds
        timeout = options.timeout_seconds or self.settings.default_timeout_seconds
        max_attempts = options.max_attempts or max(1, int(timeout // interval))

        operation = self.registry.get(operation_id)
        if operation.is_terminal:
            return operation.status

        watcher = self._ensure_watcher(operation_id)
        wait_seconds = max_attempts * interval
        try:
            final = await self._await_outcome(watcher, operation_id, wait_seconds)
        except OperationTimeoutError as error:
            raise OperationTimeoutError(
                f"Polling timed out after {max_attempts} attempts",
                operation_id,
                wait_seconds,
            ) from error
        return final.status

    # Mutation

    async def cancel(self, operation_id: str) -> Operation:
        """Cancel an operation and reject everyone waiting on it."""
        operation = self.registry.get(operation_id)
        if operation.is_terminal:
            raise InvalidOperationStateError(
                f"Operation {operation_id} is already in terminal state: "
                f"{operation.status.value}",
                operation_id,
                operation.status,
            )

        watcher = self._watchers.get(operation_id)
        if watcher is not None and not watcher.done:
            watcher.request_cancel()
            return await asyncio.shield(watcher.subscribe())

        await cancel_remote_quietly(
            self.resolver, operation_id, timeout=self.settings.poll_interval_seconds
        )
        final, committed = self.registry.commit_terminal(
            operation_id, OperationStatus.CANCELLED
        )
        if committed:
            self._record_finished(final)
        logger.info(
            "Operation cancelled", operation_id=operation_id, status=final.status.value
        )
        return final

    def update_status(
        self,
        operation_id: str,
        status: OperationStatus | str,
        result: Any = None,
        error: str | None = None,
    ) -> Operation:
        """Set an operation's status manually.

        A terminal status is committed the same way the watcher commits one
        and wakes any waiters. Changing an already terminal operation raises
        InvalidOperationStateError.
        """
        status = OperationStatus(status)
        current = self.registry.get(operation_id)
        if current.is_terminal:
            raise InvalidOperationStateError(
                f"Operation {operation_id} is already in terminal state: "
                f"{current.status.value}",
                operation_id,
                current.status,
            )

        if not status.is_terminal:
            return self.registry.update_progress(operation_id, status)

        final, committed = self.registry.commit_terminal(
            operation_id, status, result=result, error=error
        )
        if not committed:
            raise InvalidOperationStateError(
                f"Operation {operation_id} is already in terminal state: "
                f"{final.status.value}",
                operation_id,
                final.status,
            )

        self._record_finished(final)
        watcher = self._watchers.get(operation_id)
        if watcher is not None:
            watcher.settle(final)
        logger.info(
            "Operation status updated manually",
            operation_id=operation_id,
            status=final.status.value,
        )
        return final

    # Cleanup and lifecycle

    def cleanup(self, max_age_seconds: float | None = None) -> list[str]:
        """Evict finished operations older than max_age_seconds.

        Defaults to the configured retention window. Returns the evicted ids.
        """
        if max_age_seconds is None:
            max_age_seconds = self.settings.retention_seconds
        return self.sweeper.sweep(max_age_seconds)

    async def start(self) -> None:
        """Start periodic cleanup when a cleanup interval is configured."""
        if self.settings.cleanup_interval_seconds:
            self.sweeper.start(
                self.settings.cleanup_interval_seconds,
                self.settings.retention_seconds,
            )

    async def shutdown(self) -> None:
        """Stop every watcher and the sweeper. Operation status is left as-is."""
        await self.sweeper.stop()

        watchers = list(self._watchers.values())
        for watcher in watchers:
            await watcher.stop()
        self._watchers.clear()

        if self._owns_resolver and isinstance(self.resolver, HttpStatusResolver):
            await self.resolver.aclose()

        logger.info("Async operation service shutdown", stopped_watchers=len(watchers))

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()

    # Internals

    def _ensure_watcher(self, operation_id: str) -> OperationWatcher:
        watcher = self._watchers.get(operation_id)
        if watcher is None or watcher.done:
            watcher = OperationWatcher(
                operation_id,
                self.registry,
                self.resolver,
                poll_interval_seconds=self.settings.poll_interval_seconds,
                max_consecutive_failures=self.settings.max_consecutive_failures,
                metrics=self.metrics,
                on_finished=self._on_watcher_finished,
            )
            self._watchers[operation_id] = watcher
            watcher.start()
        return watcher

    def _on_watcher_finished(self, operation_id: str, watcher: OperationWatcher) -> None:
        if self._watchers.get(operation_id) is watcher:
            del self._watchers[operation_id]

    def _discard_watcher(self, operation_id: str) -> None:
        watcher = self._watchers.pop(operation_id, None)
        if watcher is not None:
            watcher.release()

    async def _await_outcome(
        self, watcher: OperationWatcher, operation_id: str, timeout: float | None
    ) -> Operation:
        outcome = asyncio.shield(watcher.subscribe())
        if timeout is None:
            return await outcome
        try:
            return await asyncio.wait_for(outcome, timeout)
        except TimeoutError:
            raise OperationTimeoutError(
                f"Timed out waiting for operation {operation_id} after {timeout}s",
                operation_id,
                timeout,
            ) from None

    def _outcome_value(self, operation: Operation) -> Any:
        if operation.status == OperationStatus.COMPLETED:
            return operation.result
        if operation.status == OperationStatus.FAILED:
            raise OperationFailedError(operation.id, operation.error)
        if operation.status == OperationStatus.CANCELLED:
            raise OperationCancelledError(operation.id)
        raise OperationTimedOutError(
            f"Operation timed out after {operation.timeout_seconds}s",
            operation.id,
            operation.timeout_seconds,
        )

    def _record_finished(self, operation: Operation) -> None:
        if self.metrics:
            self.metrics.record_finished(
                operation.type.value, operation.status.value, operation.duration_seconds
            )
