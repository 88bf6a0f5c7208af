"""Translation of raw server status strings to canonical statuses."""

import structlog

from .models import OperationStatus

logger = structlog.get_logger(__name__)

SERVER_STATUS_MAP: dict[str, OperationStatus] = {
    "Pending": OperationStatus.PENDING,
    "Running": OperationStatus.RUNNING,
    "CompletedSuccessfully": OperationStatus.COMPLETED,
    "CompletedWithErrors": OperationStatus.FAILED,
    "Cancelled": OperationStatus.CANCELLED,
    "Timeout": OperationStatus.TIMED_OUT,
}


def translate_status(
    raw_status: str | None, previous: OperationStatus
) -> OperationStatus:
    """Map a raw server status to an OperationStatus.

    A missing status (fetch error) or an unrecognized one keeps the previous
    cached status, so a transient or unknown read is never taken as an outcome.
    """
    if raw_status is None:
        return previous

    status = SERVER_STATUS_MAP.get(raw_status)
    if status is None:
        logger.warning(
            "Unrecognized server status, keeping cached status",
            raw_status=raw_status,
            cached_status=previous.value,
        )
        return previous
    return status


def normalize_progress(progress: float | None) -> float | None:
    """Clamp an advisory progress value into the 0-100 range."""
    if progress is None:
        return None
    return max(0.0, min(100.0, float(progress)))
