"""Concurrency-safe store of tracked operations."""

import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import ValidationError

from .exceptions import OperationNotFoundError, OperationValidationError
from .models import (
    Operation,
    OperationDefinition,
    OperationStatus,
    generate_operation_id,
)

logger = structlog.get_logger(__name__)


class OperationRegistry:
    """Single source of truth for operation state.

    Every read returns a snapshot and every write happens under one lock. The
    lock only guards in-memory mutation and is never held across an await.
    """

    def __init__(
        self,
        default_timeout_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_timeout_seconds = default_timeout_seconds
        self._clock = clock
        self._operations: dict[str, Operation] = {}
        self._lock = threading.Lock()

    def now(self) -> float:
        """Current reading of the registry's monotonic clock."""
        return self._clock()

    def create(self, definition: OperationDefinition | dict[str, Any]) -> Operation:
        """Insert a new pending operation built from a definition."""
        definition = self._validate_definition(definition)

        with self._lock:
            operation_id = generate_operation_id()
            while operation_id in self._operations:
                operation_id = generate_operation_id()

            operation = Operation(
                id=operation_id,
                type=definition.type,
                name=definition.name,
                parameters=definition.parameters,
                metadata=definition.metadata,
                timeout_seconds=definition.timeout_seconds
                or self.default_timeout_seconds,
            )
            operation._started_at = self._clock()
            self._operations[operation_id] = operation
            snapshot = operation.snapshot()

        logger.info(
            "Operation created",
            operation_id=snapshot.id,
            operation_type=snapshot.type.value,
            operation_name=snapshot.name,
            timeout_seconds=snapshot.timeout_seconds,
        )
        return snapshot

    def get(self, operation_id: str) -> Operation:
        """Get a snapshot of an operation, raising if unknown."""
        with self._lock:
            operation = self._operations.get(operation_id)
            if operation is None:
                raise OperationNotFoundError(operation_id)
            return operation.snapshot()

    def find(self, operation_id: str) -> Operation | None:
        """Get a snapshot of an operation or None."""
        with self._lock:
            operation = self._operations.get(operation_id)
            return operation.snapshot() if operation else None

    def mutate(self, operation_id: str, fn: Callable[[Operation], None]) -> Operation:
        """Apply fn to the stored operation atomically and return a snapshot."""
        with self._lock:
            operation = self._operations.get(operation_id)
            if operation is None:
                raise OperationNotFoundError(operation_id)
            fn(operation)
            return operation.snapshot()

    def update_progress(
        self,
        operation_id: str,
        status: OperationStatus,
        progress: float | None = None,
    ) -> Operation:
        """Record a non-terminal status and progress, ignored once terminal."""
        if status.is_terminal:
            raise ValueError(f"Use commit_terminal for terminal status {status.value}")

        def apply(operation: Operation) -> None:
            if operation.is_terminal:
                return
            operation.status = status
            if progress is not None:
                operation.progress = progress

        return self.mutate(operation_id, apply)

    def commit_terminal(
        self,
        operation_id: str,
        status: OperationStatus,
        result: Any = None,
        error: str | None = None,
    ) -> tuple[Operation, bool]:
        """Move an operation into a terminal status exactly once.

        Returns the stored operation and whether this call performed the
        transition. An operation that is already terminal is left untouched.
        """
        if not status.is_terminal:
            raise ValueError(f"Status {status.value} is not terminal")

        with self._lock:
            operation = self._operations.get(operation_id)
            if operation is None:
                raise OperationNotFoundError(operation_id)
            if operation.is_terminal:
                return operation.snapshot(), False

            operation.status = status
            operation.end_time = datetime.now(UTC)
            operation._ended_at = self._clock()
            operation.result = result if status == OperationStatus.COMPLETED else None
            operation.error = (
                error or "Operation completed with errors"
                if status == OperationStatus.FAILED
                else None
            )
            if status == OperationStatus.COMPLETED:
                operation.progress = 100.0
            snapshot = operation.snapshot()

        logger.info(
            "Operation reached terminal status",
            operation_id=operation_id,
            status=status.value,
            duration=snapshot.duration_seconds,
            error=snapshot.error,
        )
        return snapshot, True

    def delete(self, operation_id: str) -> bool:
        """Remove an operation. Returns whether it existed."""
        with self._lock:
            return self._operations.pop(operation_id, None) is not None

    def list_all(self) -> list[Operation]:
        """Snapshots of every tracked operation."""
        with self._lock:
            return [operation.snapshot() for operation in self._operations.values()]

    def list_active(self) -> list[Operation]:
        """Snapshots of every non-terminal operation."""
        with self._lock:
            return [
                operation.snapshot()
                for operation in self._operations.values()
                if not operation.is_terminal
            ]

    def evict_terminal(self, max_age_seconds: float) -> list[str]:
        """Remove terminal operations that ended more than max_age_seconds ago."""
        now = self._clock()
        with self._lock:
            expired = [
                operation_id
                for operation_id, operation in self._operations.items()
                if operation.is_terminal
                and operation._ended_at is not None
                and now - operation._ended_at > max_age_seconds
            ]
            for operation_id in expired:
                del self._operations[operation_id]
        return expired

    def deadline(self, operation_id: str) -> float:
        """Monotonic time at which the operation's own timeout fires."""
        with self._lock:
            operation = self._operations.get(operation_id)
            if operation is None:
                raise OperationNotFoundError(operation_id)
            return operation._started_at + operation.timeout_seconds

    def __contains__(self, operation_id: object) -> bool:
        with self._lock:
            return operation_id in self._operations

    def __len__(self) -> int:
        with self._lock:
            return len(self._operations)

    @staticmethod
    def _validate_definition(
        definition: OperationDefinition | dict[str, Any],
    ) -> OperationDefinition:
        if not isinstance(definition, OperationDefinition):
            try:
                definition = OperationDefinition.model_validate(definition)
            except ValidationError as error:
                raise OperationValidationError(
                    f"Invalid operation definition: {error}"
                ) from error

        if not definition.name or not definition.name.strip():
            raise OperationValidationError("Operation name is required")
        return definition
