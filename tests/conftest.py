"""Pytest configuration and shared fixtures."""

import asyncio
from typing import Any

import pytest
from prometheus_client import CollectorRegistry

from libs.async_operations import (
    AsyncOperationService,
    AsyncOperationSettings,
    OperationDefinition,
    OperationType,
    RawStatus,
    StatusResolver,
)
from libs.observability.metrics import OperationMetrics


class ScriptedResolver(StatusResolver):
    """Resolver replaying a fixed script of responses.

    Each entry is a RawStatus, a raw status string, or an exception to raise.
    The last entry repeats once the script is exhausted.
    """

    def __init__(
        self,
        script: list[Any],
        delay: float = 0.0,
        cancel_error: Exception | None = None,
    ):
        self.script = list(script)
        self.delay = delay
        self.cancel_error = cancel_error
        self.fetch_calls: list[str] = []
        self.cancel_calls: list[str] = []

    async def fetch_status(self, operation_id: str) -> RawStatus:
        self.fetch_calls.append(operation_id)
        if self.delay:
            await asyncio.sleep(self.delay)

        entry = self.script[0] if len(self.script) == 1 else self.script.pop(0)
        if isinstance(entry, Exception):
            raise entry
        if isinstance(entry, str):
            return RawStatus(status=entry)
        return entry

    async def cancel_remote(self, operation_id: str) -> None:
        self.cancel_calls.append(operation_id)
        if self.cancel_error:
            raise self.cancel_error


@pytest.fixture
def fast_settings():
    """Settings with short intervals suitable for tests."""
    return AsyncOperationSettings(
        poll_interval_seconds=0.02,
        default_timeout_seconds=5.0,
        retention_seconds=3600.0,
    )


@pytest.fixture
def metrics():
    """Operation metrics on an isolated collector registry."""
    return OperationMetrics(registry=CollectorRegistry())


@pytest.fixture
def make_service(fast_settings, metrics):
    """Factory building a service around a scripted resolver."""

    def factory(script: list[Any], settings=None, **resolver_kwargs):
        resolver = ScriptedResolver(script, **resolver_kwargs)
        service = AsyncOperationService(
            resolver, settings=settings or fast_settings, metrics=metrics
        )
        return service, resolver

    return factory


@pytest.fixture
def process_definition():
    """Definition of a typical process execution."""
    return OperationDefinition(
        type=OperationType.PROCESS_EXECUTION,
        name="load.sales.actuals",
        parameters={"pYear": "2024"},
        metadata={"requested_by": "test_user"},
    )
