"""Async Operation Tracking Library.

Tracks long-running work on a remote OLAP server (process executions, MDX
queries, view executions, bulk operations) by polling its status endpoint:
- Concurrency-safe operation registry with monotonic terminal states
- One polling task per operation with fan-out to every waiter
- Independent operation deadlines and caller wait timeouts
- Cooperative cancellation with best-effort remote cancel
- Retention-based cleanup of finished operations
"""

from .cleanup import CleanupSweeper
from .config import AsyncOperationSettings, get_async_operation_settings
from .exceptions import (
    InvalidOperationStateError,
    OperationCancelledError,
    OperationError,
    OperationFailedError,
    OperationNotFoundError,
    OperationTimedOutError,
    OperationTimeoutError,
    OperationValidationError,
)
from .models import (
    TERMINAL_STATUSES,
    Operation,
    OperationDefinition,
    OperationStatus,
    OperationType,
    PollingOptions,
    RawStatus,
)
from .registry import OperationRegistry
from .resolver import HttpStatusResolver, StatusResolver, cancel_remote_quietly
from .service import AsyncOperationService
from .translator import SERVER_STATUS_MAP, normalize_progress, translate_status
from .watcher import OperationWatcher, ProgressCallback

__version__ = "1.0.0"
__all__ = [
    # Public API
    "AsyncOperationService",
    "AsyncOperationSettings",
    "get_async_operation_settings",
    # Data model
    "Operation",
    "OperationDefinition",
    "OperationStatus",
    "OperationType",
    "PollingOptions",
    "RawStatus",
    "TERMINAL_STATUSES",
    # Components
    "OperationRegistry",
    "OperationWatcher",
    "ProgressCallback",
    "CleanupSweeper",
    "StatusResolver",
    "HttpStatusResolver",
    "cancel_remote_quietly",
    "SERVER_STATUS_MAP",
    "translate_status",
    "normalize_progress",
    # Errors
    "OperationError",
    "OperationNotFoundError",
    "InvalidOperationStateError",
    "OperationValidationError",
    "OperationTimeoutError",
    "OperationTimedOutError",
    "OperationCancelledError",
    "OperationFailedError",
]
