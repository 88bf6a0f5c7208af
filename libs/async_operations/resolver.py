"""Status resolvers supplying raw operation status from the OLAP server."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog

from .models import RawStatus

logger = structlog.get_logger(__name__)


class StatusResolver(ABC):
    """Collaborator that reports the raw server-side status of an operation."""

    @abstractmethod
    async def fetch_status(self, operation_id: str) -> RawStatus:
        """Fetch the current raw status for an operation.

        Any exception raised here is treated as a transient failure by the
        watcher and the cached status is kept.
        """
        pass

    async def cancel_remote(self, operation_id: str) -> None:
        """Ask the server to stop the operation.

        Best effort. Servers without cancellation support need not override.
        """
        return None


async def cancel_remote_quietly(
    resolver: StatusResolver, operation_id: str, timeout: float | None = None
) -> bool:
    """Request remote cancellation, ignoring any failure.

    Returns whether the server accepted the request.
    """
    try:
        await asyncio.wait_for(resolver.cancel_remote(operation_id), timeout)
        return True
    except TimeoutError:
        logger.warning(
            "Remote cancellation timed out, ignoring",
            operation_id=operation_id,
            timeout=timeout,
        )
    except Exception as error:
        logger.warning(
            "Remote cancellation failed, ignoring",
            operation_id=operation_id,
            error=str(error),
        )
    return False


class HttpStatusResolver(StatusResolver):
    """Resolver backed by the server's AsyncOperations REST endpoint."""

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        verify_ssl: bool = True,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout, verify=verify_ssl)

    def _operation_url(self, operation_id: str) -> str:
        quoted = operation_id.replace("'", "''")
        return f"{self.base_url}/AsyncOperations('{quoted}')"

    async def fetch_status(self, operation_id: str) -> RawStatus:
        response = await self.client.get(self._operation_url(operation_id))
        response.raise_for_status()
        data: dict[str, Any] = response.json()

        return RawStatus(
            status=str(data.get("Status", "")),
            progress=data.get("Progress"),
            result=data.get("Result"),
            error=data.get("Error"),
        )

    async def cancel_remote(self, operation_id: str) -> None:
        response = await self.client.post(
            f"{self._operation_url(operation_id)}/Cancel", json={}
        )
        response.raise_for_status()
        logger.info("Remote cancellation requested", operation_id=operation_id)

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this resolver created it."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
