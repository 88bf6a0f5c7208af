"""Data models for tracked async operations."""

import random
import string
import time
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, PrivateAttr


class OperationStatus(str, Enum):
    """Canonical operation status."""

    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    TIMED_OUT = "Timeout"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transitions are permitted from this status."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        OperationStatus.COMPLETED,
        OperationStatus.FAILED,
        OperationStatus.CANCELLED,
        OperationStatus.TIMED_OUT,
    }
)


class OperationType(str, Enum):
    """Kind of server-side work being tracked."""

    PROCESS_EXECUTION = "ProcessExecution"
    MDX_QUERY = "MdxQuery"
    VIEW_EXECUTION = "ViewExecution"
    BULK_OPERATION = "BulkOperation"
    CUSTOM = "Custom"


def generate_operation_id() -> str:
    """Generate a unique operation id."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"async-op-{int(time.time() * 1000)}-{suffix}"


class OperationDefinition(BaseModel):
    """Definition supplied by the caller when creating an operation."""

    type: OperationType = Field(description="Operation type")
    name: str = Field(description="Operation name")
    parameters: dict[str, Any] = Field(
        default_factory=dict, description="Operation parameters"
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict, description="Additional metadata"
    )
    timeout_seconds: float | None = Field(
        default=None, gt=0, description="Override for the operation deadline"
    )


class Operation(BaseModel):
    """Locally tracked representation of a remote long-running task."""

    id: str = Field(
        default_factory=generate_operation_id, frozen=True, description="Operation ID"
    )
    type: OperationType = Field(frozen=True, description="Operation type")
    name: str = Field(frozen=True, description="Operation name")
    status: OperationStatus = Field(
        default=OperationStatus.PENDING, description="Current status"
    )
    progress: float | None = Field(default=None, description="Progress hint, 0-100")
    start_time: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        frozen=True,
        description="Creation time",
    )
    end_time: datetime | None = Field(
        default=None, description="Time the operation reached a terminal status"
    )
    result: Any = Field(default=None, description="Result payload when completed")
    error: str | None = Field(default=None, description="Error message when failed")
    parameters: dict[str, Any] = Field(
        default_factory=dict, frozen=True, description="Operation parameters"
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict, frozen=True, description="Additional metadata"
    )
    timeout_seconds: float = Field(
        default=300.0, description="Deadline measured from creation"
    )

    # Monotonic clock readings, immune to wall-clock adjustments
    _started_at: float = PrivateAttr(default=0.0)
    _ended_at: float | None = PrivateAttr(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def duration_seconds(self) -> float | None:
        """Wall-clock duration once the operation has ended."""
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    def snapshot(self) -> "Operation":
        """Return a detached copy safe to hand to callers."""
        return self.model_copy(deep=True)


class RawStatus(BaseModel):
    """Vendor-specific status as returned by a status resolver."""

    status: str = Field(description="Raw status text")
    progress: float | None = Field(default=None, description="Progress hint")
    result: Any = Field(default=None, description="Result payload")
    error: str | None = Field(default=None, description="Error message")


class PollingOptions(BaseModel):
    """Bounds for polling an operation until it terminates."""

    interval_seconds: float | None = Field(
        default=None, gt=0, description="Poll interval"
    )
    timeout_seconds: float | None = Field(
        default=None, gt=0, description="Total time to poll"
    )
    max_attempts: int | None = Field(
        default=None, ge=1, description="Maximum number of poll intervals"
    )
