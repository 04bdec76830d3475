"""Sink interfaces -- the standard contracts both replication targets implement.

The DualSinkPublisher writes every customer value record to a DocumentStore
(always configured) and a CustomerApi (optional). Concrete backends live
beside this module:

- SqlDocumentStore: JSON documents in the application database
- HttpCustomerApi: the customer REST API over httpx
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

# ── Exceptions ──────────────────────────────────────────────────────────────


class TrackingError(Exception):
    """Base class for all tracking pipeline errors."""


class SinkError(TrackingError):
    """Transient failure writing to or reading from a sink."""


class DocumentStoreError(SinkError):
    """The document store rejected or failed a request."""


class CustomerApiError(SinkError):
    """The customer API returned a non-2xx response or was unreachable.

    Args:
        message: Human-readable description.
        status_code: HTTP status, or None for transport errors.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


# ── Interfaces ──────────────────────────────────────────────────────────────


class DocumentStore(ABC):
    """Keyed document collections with merge-upsert semantics."""

    @abstractmethod
    async def upsert(self, collection: str, key: str, fields: dict[str, Any]) -> None:
        """Merge ``fields`` into the document at ``key``, creating it if absent."""
        ...

    @abstractmethod
    async def read(self, collection: str, key: str) -> dict[str, Any] | None:
        """Fetch the document at ``key``, or None."""
        ...


class CustomerApi(ABC):
    """Remote customer store keyed by record id.

    Records cross this boundary as flat camelCase dicts (see
    ``CustomerValueRecord.to_wire``).

    Methods:
        list_customers: All customers visible to the caller.
        get_customer: One customer by id, or None when absent.
        add_customer: Create a customer; fails if the id already exists.
        update_customer: Replace a customer's fields by id.
        health_check: True when the API answers its health endpoint.
    """

    @abstractmethod
    async def list_customers(self) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def get_customer(self, customer_id: str) -> dict[str, Any] | None:
        ...

    @abstractmethod
    async def add_customer(self, record: dict[str, Any]) -> dict[str, Any]:
        ...

    @abstractmethod
    async def update_customer(self, record: dict[str, Any]) -> dict[str, Any]:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...
