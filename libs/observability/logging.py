"""Structured logging with correlation and tracing integration."""

import contextvars
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from opentelemetry import trace

from .config import LoggingConfig

# Module-level ContextVar for correlation IDs
correlation_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)


def _resolve_processor(path: str) -> Any:
    """Resolve a dotted structlog processor path such as structlog.processors.X."""
    parts = path.split(".")
    if parts[0] == "structlog":
        parts = parts[1:]

    target: Any = structlog
    for part in parts:
        target = getattr(target, part, None)
        if target is None:
            return None

    # Processor classes need instantiating, plain functions are used as-is
    return target() if isinstance(target, type) else target


def configure_structured_logging(config: LoggingConfig | None = None) -> None:
    """Configure structured logging with OpenTelemetry integration."""
    config = config or LoggingConfig()
    level = getattr(logging, config.level.upper())

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    processors: list[Any] = []
    for processor_name in config.processors:
        processor = _resolve_processor(processor_name)
        if processor is not None:
            processors.append(processor)

    if config.enable_tracing_integration:
        processors.append(add_trace_context)

    if config.enable_correlation:
        processors.append(add_correlation_context)

    if config.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def add_trace_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add OpenTelemetry trace context to log entries."""
    span = trace.get_current_span()

    if span and span.is_recording():
        span_context = span.get_span_context()
        event_dict.update(
            {
                "trace_id": format(span_context.trace_id, "032x"),
                "span_id": format(span_context.span_id, "016x"),
            }
        )

    return event_dict


def add_correlation_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add correlation context to log entries."""
    if "correlation_id" not in event_dict:
        correlation_id = correlation_id_var.get()
        if correlation_id:
            event_dict["correlation_id"] = correlation_id

    return event_dict


def set_correlation_id(correlation_id: str | None) -> None:
    """Set the correlation ID for the current context."""
    correlation_id_var.set(correlation_id)


def get_correlation_id() -> str | None:
    """Get the current correlation ID."""
    return correlation_id_var.get()


@contextmanager
def operation_log_context(operation_id: str) -> Iterator[None]:
    """Bind an operation id to every log event emitted in this context.

    The operation id doubles as the correlation id unless the caller already
    set one.
    """
    tokens = structlog.contextvars.bind_contextvars(operation_id=operation_id)
    correlation_token = None
    if correlation_id_var.get() is None:
        correlation_token = correlation_id_var.set(operation_id)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
        if correlation_token is not None:
            correlation_id_var.reset(correlation_token)
