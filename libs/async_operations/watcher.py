"""Per-operation polling task driving status transitions."""

import asyncio
import contextlib
import inspect
from collections.abc import Callable
from typing import Any

import structlog

from libs.observability.logging import operation_log_context
from libs.observability.metrics import OperationMetrics

from .exceptions import OperationError, OperationNotFoundError
from .models import Operation, OperationStatus, RawStatus
from .registry import OperationRegistry
from .resolver import StatusResolver, cancel_remote_quietly
from .translator import normalize_progress, translate_status

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[Operation], Any]


class ProgressListener:
    """Delivers operation snapshots to one callback, in order, off the poll loop.

    A slow or failing callback only delays its own deliveries. The watcher
    never waits for it.
    """

    def __init__(self, callback: ProgressCallback, log: Any):
        self.callback = callback
        self.logger = log
        self._queue: asyncio.Queue[Operation | None] = asyncio.Queue()
        self._task = asyncio.create_task(self._deliver())

    @property
    def done(self) -> bool:
        return self._task.done()

    def push(self, operation: Operation) -> None:
        self._queue.put_nowait(operation)

    async def drain(self, timeout: float) -> bool:
        """Wait up to timeout for queued deliveries. Returns whether all ran."""
        try:
            await asyncio.wait_for(self._queue.join(), timeout)
            return True
        except TimeoutError:
            return False

    def close(self) -> None:
        """Stop after the deliveries already queued."""
        self._queue.put_nowait(None)

    def cancel(self) -> None:
        self._task.cancel()

    def add_done_callback(self, fn: Callable[[asyncio.Task], Any]) -> None:
        self._task.add_done_callback(fn)

    async def _deliver(self) -> None:
        while True:
            operation = await self._queue.get()
            try:
                if operation is None:
                    return
                outcome = self.callback(operation)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as error:
                self.logger.warning("Progress callback failed", error=str(error))
            finally:
                self._queue.task_done()


class OperationWatcher:
    """Polls the status of one operation until it reaches a terminal status.

    The watcher owns a single asyncio task. Every subscriber shares one
    outcome future which resolves with the committed terminal operation, so
    the server is polled once per interval no matter how many callers wait.
    """

    def __init__(
        self,
        operation_id: str,
        registry: OperationRegistry,
        resolver: StatusResolver,
        poll_interval_seconds: float = 1.0,
        max_consecutive_failures: int | None = None,
        metrics: OperationMetrics | None = None,
        on_finished: Callable[[str, "OperationWatcher"], None] | None = None,
    ):
        self.operation_id = operation_id
        self.registry = registry
        self.resolver = resolver
        self.poll_interval_seconds = poll_interval_seconds
        self.max_consecutive_failures = max_consecutive_failures
        self.metrics = metrics
        self._on_finished = on_finished

        self._outcome: asyncio.Future[Operation] = (
            asyncio.get_running_loop().create_future()
        )
        self._cancel_requested = asyncio.Event()
        self._listeners: list[ProgressListener] = []
        self._closing: set[ProgressListener] = set()
        self._task: asyncio.Task | None = None
        self._consecutive_failures = 0
        self.poll_count = 0

        self.logger = logger.bind(
            component="operation_watcher", operation_id=operation_id
        )

    @property
    def done(self) -> bool:
        """Whether the outcome has been delivered."""
        return self._outcome.done()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start polling. Calling start on a started watcher does nothing."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(
            self._run(), name=f"operation-watcher-{self.operation_id}"
        )
        self._task.add_done_callback(self._task_finished)
        if self.metrics:
            self.metrics.active_watchers.inc()
        self.logger.debug(
            "Operation watcher started", poll_interval=self.poll_interval_seconds
        )

    def subscribe(self) -> asyncio.Future[Operation]:
        """Get the shared outcome future.

        Callers should await it through asyncio.shield so that abandoning a
        wait never cancels the outcome for other subscribers.
        """
        return self._outcome

    def add_progress_listener(self, callback: ProgressCallback) -> ProgressListener:
        """Register a callback for every poll tick and the final operation."""
        listener = ProgressListener(callback, self.logger)
        self._listeners.append(listener)
        return listener

    def remove_progress_listener(self, listener: ProgressListener) -> None:
        """Unregister a listener, letting its queued deliveries finish."""
        with contextlib.suppress(ValueError):
            self._listeners.remove(listener)
        if listener.done:
            return
        listener.close()
        self._closing.add(listener)
        listener.add_done_callback(lambda _: self._closing.discard(listener))

    def request_cancel(self) -> None:
        """Ask the watcher to cancel the operation cooperatively."""
        self.logger.info("Cancellation requested")
        self._cancel_requested.set()

    def settle(self, operation: Operation) -> None:
        """Deliver an outcome committed outside the watcher and stop polling."""
        self._resolve(operation)
        self._notify(operation)
        self._cancel_task()

    def release(self) -> None:
        """Drop listeners and stop the task once the operation is finished."""
        self._cancel_listeners()
        self._cancel_task()

    async def stop(self) -> None:
        """Stop polling without changing the operation status."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._cancel_listeners()
        self._fail(
            OperationError("Operation tracking was stopped", self.operation_id)
        )

    def _cancel_task(self) -> None:
        if (
            self._task is not None
            and not self._task.done()
            and self._task is not asyncio.current_task()
        ):
            self._task.cancel()

    def _cancel_listeners(self) -> None:
        for listener in [*self._listeners, *self._closing]:
            listener.cancel()
        self._listeners.clear()
        self._closing.clear()

    async def _run(self) -> None:
        with operation_log_context(self.operation_id):
            await self._poll()

    async def _poll(self) -> None:
        try:
            deadline = self.registry.deadline(self.operation_id)
            while True:
                remaining = deadline - self.registry.now()
                if remaining <= 0:
                    if self.poll_count:
                        self._commit(OperationStatus.TIMED_OUT)
                        return
                    # Watching started late, ask the server once before expiring
                    remaining = self.poll_interval_seconds

                raw, fetched = await self._fetch_until(remaining)
                if self._cancel_requested.is_set():
                    await self._cancel()
                    return
                if not fetched:
                    # Deadline passed while the fetch was still pending
                    continue

                if await self._apply(raw):
                    return

                pause = min(self.poll_interval_seconds, deadline - self.registry.now())
                if pause > 0 and await self._wait_for_cancel(pause):
                    await self._cancel()
                    return
        except OperationNotFoundError as error:
            self.logger.warning("Operation removed while being watched")
            self._fail(error)
        except Exception as error:
            self.logger.error(
                "Operation watcher error", error=str(error), exc_info=True
            )
            self._fail(error)

    def _task_finished(self, task: asyncio.Task) -> None:
        # Runs even when the task was cancelled before its first step
        if self.metrics:
            self.metrics.active_watchers.dec()
        if self._on_finished:
            self._on_finished(self.operation_id, self)

    async def _fetch_until(self, timeout: float) -> tuple[RawStatus | None, bool]:
        """Fetch status, giving up at the timeout or on a cancel request.

        Returns the raw status (None on a fetch error) and whether the fetch
        finished at all.
        """
        fetch = asyncio.create_task(self._fetch())
        cancel_wait = asyncio.create_task(self._cancel_requested.wait())
        try:
            done, _ = await asyncio.wait(
                {fetch, cancel_wait},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for pending in (fetch, cancel_wait):
                if not pending.done():
                    pending.cancel()

        if fetch in done:
            return fetch.result(), True
        return None, False

    async def _fetch(self) -> RawStatus | None:
        self.poll_count += 1
        try:
            raw = await self.resolver.fetch_status(self.operation_id)
        except Exception as error:
            self._consecutive_failures += 1
            self.logger.warning(
                "Status fetch failed, keeping cached status",
                error=str(error),
                error_type=type(error).__name__,
                consecutive_failures=self._consecutive_failures,
            )
            if self.metrics:
                self.metrics.record_fetch_error(error)
            return None

        self._consecutive_failures = 0
        return raw

    async def _apply(self, raw: RawStatus | None) -> bool:
        """Apply one poll result. Returns True once the operation is terminal."""
        current = self.registry.get(self.operation_id)
        if current.is_terminal:
            self._resolve(current)
            return True

        if raw is None:
            if (
                self.max_consecutive_failures
                and self._consecutive_failures >= self.max_consecutive_failures
            ):
                self._commit(
                    OperationStatus.FAILED,
                    error=(
                        "Status unavailable after "
                        f"{self._consecutive_failures} consecutive fetch failures"
                    ),
                )
                return True
            status, progress = current.status, None
        else:
            status = translate_status(raw.status, current.status)
            progress = normalize_progress(raw.progress)

        if status.is_terminal:
            self._commit(status, result=raw.result, error=raw.error)
            return True

        snapshot = self.registry.update_progress(self.operation_id, status, progress)
        if snapshot.is_terminal:
            self._resolve(snapshot)
            return True

        if snapshot.status != current.status:
            self.logger.info(
                "Operation status changed",
                previous_status=current.status.value,
                status=snapshot.status.value,
            )
        self._notify(snapshot)
        return False

    async def _cancel(self) -> None:
        await cancel_remote_quietly(
            self.resolver, self.operation_id, timeout=self.poll_interval_seconds
        )
        self._commit(OperationStatus.CANCELLED)

    def _commit(
        self, status: OperationStatus, result: Any = None, error: str | None = None
    ) -> None:
        final, committed = self.registry.commit_terminal(
            self.operation_id, status, result=result, error=error
        )
        if committed and self.metrics:
            self.metrics.record_finished(
                final.type.value, final.status.value, final.duration_seconds
            )
        if status == OperationStatus.TIMED_OUT and committed:
            self.logger.warning(
                "Operation exceeded its deadline", timeout=final.timeout_seconds
            )
        self._resolve(final)
        self._notify(final)

    def _notify(self, operation: Operation) -> None:
        for listener in self._listeners:
            listener.push(operation)

    async def _wait_for_cancel(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._cancel_requested.wait(), timeout)
            return True
        except TimeoutError:
            return False

    def _resolve(self, operation: Operation) -> None:
        if not self._outcome.done():
            self._outcome.set_result(operation)

    def _fail(self, error: BaseException) -> None:
        if not self._outcome.done():
            self._outcome.set_exception(error)
            # Subscribers re-raise it themselves, so nothing is left unretrieved
            self._outcome.exception()
