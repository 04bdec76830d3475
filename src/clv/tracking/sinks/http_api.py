"""HTTP customer API client -- the optional second sink of the publisher.

Provides HttpCustomerApi with retry logic (tenacity, 3 attempts, exponential
backoff 1-10s) on transport errors and 5xx responses. Anything that still
fails after the last attempt, and any other non-2xx response, surfaces as
CustomerApiError so the publisher can report the sink as failed.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from src.clv.tracking.sinks.base import CustomerApi, CustomerApiError

logger = structlog.get_logger(__name__)

_RETRYABLE = (httpx.TransportError, httpx.HTTPStatusError)


class HttpCustomerApi(CustomerApi):
    """Customer API over HTTP.

    Args:
        base_url: Root URL of the service exposing ``/api/customers``.
        timeout: Per-request timeout in seconds.
        max_attempts: Attempts per request before giving up.
        transport: Optional httpx transport (tests pass a MockTransport).
        retry_wait: Optional tenacity wait strategy between attempts.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        max_attempts: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_wait: wait_base | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._transport = transport
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=10)

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client bound to the API root."""
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
            headers={"Content-Type": "application/json"},
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request, retrying transient failures.

        5xx responses are retried; 4xx responses are returned to the caller
        untouched.

        Raises:
            CustomerApiError: When every attempt failed.
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=self._retry_wait,
                retry=retry_if_exception_type(_RETRYABLE),
                reraise=True,
            ):
                with attempt:
                    async with self._client() as client:
                        response = await client.request(method, path, **kwargs)
                    if response.status_code >= 500:
                        response.raise_for_status()
                    return response
        except httpx.HTTPStatusError as exc:
            raise CustomerApiError(
                f"{method} {path} failed with {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.TransportError as exc:
            raise CustomerApiError(f"{method} {path} failed: {exc}") from exc
        raise CustomerApiError(f"{method} {path} made no attempt")

    @staticmethod
    def _expect_success(response: httpx.Response, action: str) -> dict[str, Any]:
        if not response.is_success:
            raise CustomerApiError(
                f"{action} failed with {response.status_code}",
                status_code=response.status_code,
            )
        return response.json()

    async def list_customers(self) -> list[dict[str, Any]]:
        response = await self._request("GET", "/api/customers")
        return self._expect_success(response, "list_customers").get("customers", [])

    async def get_customer(self, customer_id: str) -> dict[str, Any] | None:
        """Fetch one customer, or None on 404."""
        response = await self._request("GET", f"/api/customers/{customer_id}")
        if response.status_code == 404:
            return None
        return self._expect_success(response, "get_customer").get("customer")

    async def add_customer(self, record: dict[str, Any]) -> dict[str, Any]:
        response = await self._request("POST", "/api/customers", json=record)
        body = self._expect_success(response, "add_customer")
        logger.info("customer_api.customer_added", customer_id=record.get("id"))
        return body.get("customer", {})

    async def update_customer(self, record: dict[str, Any]) -> dict[str, Any]:
        response = await self._request("PUT", f"/api/customers/{record['id']}", json=record)
        body = self._expect_success(response, "update_customer")
        logger.info("customer_api.customer_updated", customer_id=record.get("id"))
        return body.get("customer", {})

    async def health_check(self) -> bool:
        """True when ``/api/health`` answers 2xx. Never raises."""
        try:
            async with self._client() as client:
                response = await client.get("/api/health")
            return response.is_success
        except httpx.HTTPError:
            logger.debug("customer_api.health_check_failed", exc_info=True)
            return False
