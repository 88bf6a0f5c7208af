"""Exceptions raised by the async operation tracking engine."""

from typing import Any


class OperationError(Exception):
    """Base exception for async operation errors."""

    def __init__(self, message: str, operation_id: str | None = None):
        super().__init__(message)
        self.operation_id = operation_id


class OperationNotFoundError(OperationError):
    """Raised when an operation id is not tracked."""

    def __init__(self, operation_id: str):
        super().__init__(f"Operation with ID {operation_id} not found", operation_id)


class InvalidOperationStateError(OperationError):
    """Raised when an operation is not in a state that allows the request."""

    def __init__(self, message: str, operation_id: str, status: Any):
        super().__init__(message, operation_id)
        self.status = status


class OperationValidationError(OperationError):
    """Raised when an operation definition is incomplete."""

    pass


class OperationTimeoutError(OperationError):
    """Raised when a caller's wait elapses before the operation terminates."""

    def __init__(
        self, message: str, operation_id: str | None = None, timeout: float = 0.0
    ):
        super().__init__(message, operation_id)
        self.timeout = timeout


class OperationTimedOutError(OperationTimeoutError):
    """Raised when the operation itself exceeded its deadline."""

    pass


class OperationCancelledError(OperationError):
    """Raised when the operation was cancelled."""

    def __init__(self, operation_id: str):
        super().__init__("Operation was cancelled", operation_id)


class OperationFailedError(OperationError):
    """Raised when the remote server reported the operation as failed."""

    def __init__(self, operation_id: str, error: str | None):
        super().__init__(f"Operation failed: {error}", operation_id)
        self.error = error
