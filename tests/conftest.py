"""Shared test fixtures.

Provides:
- An in-memory SQLite session factory with all tables created
- In-memory sink doubles (document store, customer API) with failure injection
- A signed-in identity provider and a pinned clock
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from src.clv.core.database import Base
from src.clv.tracking.schemas import Identity
from src.clv.tracking.signals import IdentityProvider
from src.clv.tracking.sinks.base import (
    CustomerApi,
    CustomerApiError,
    DocumentStore,
    DocumentStoreError,
)

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# ── In-Memory Test Doubles ───────────────────────────────────────────────────


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed document store. Set ``fail_next`` to inject errors."""

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, dict[str, Any]]] = {}
        self.history: list[tuple[str, dict[str, Any]]] = []
        self.upsert_calls = 0
        self.fail_next = 0

    async def upsert(self, collection: str, key: str, fields: dict[str, Any]) -> None:
        self.upsert_calls += 1
        if self.fail_next > 0:
            self.fail_next -= 1
            raise DocumentStoreError("document store unavailable")
        self.history.append((key, dict(fields)))
        doc = self.collections.setdefault(collection, {}).setdefault(key, {})
        doc.update(fields)

    async def read(self, collection: str, key: str) -> dict[str, Any] | None:
        doc = self.collections.get(collection, {}).get(key)
        return dict(doc) if doc is not None else None


class InMemoryCustomerApi(CustomerApi):
    """Dict-backed customer API. Set ``fail_next`` to inject network errors."""

    def __init__(self) -> None:
        self.customers: dict[str, dict[str, Any]] = {}
        self.calls: list[str] = []
        self.fail_next = 0

    def _maybe_fail(self, call: str) -> None:
        self.calls.append(call)
        if self.fail_next > 0:
            self.fail_next -= 1
            raise CustomerApiError("connection refused")

    async def list_customers(self) -> list[dict[str, Any]]:
        self._maybe_fail("list")
        return list(self.customers.values())

    async def get_customer(self, customer_id: str) -> dict[str, Any] | None:
        self._maybe_fail("get")
        found = self.customers.get(customer_id)
        return dict(found) if found is not None else None

    async def add_customer(self, record: dict[str, Any]) -> dict[str, Any]:
        self._maybe_fail("add")
        if record["id"] in self.customers:
            raise CustomerApiError("exists", status_code=409)
        self.customers[record["id"]] = dict(record)
        return dict(record)

    async def update_customer(self, record: dict[str, Any]) -> dict[str, Any]:
        self._maybe_fail("update")
        self.customers[record["id"]] = dict(record)
        return dict(record)

    async def health_check(self) -> bool:
        return True


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory():
    """Session factory bound to a fresh in-memory SQLite database."""
    from src.clv.customers import models  # noqa: F401

    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def _factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    yield _factory
    await engine.dispose()


@pytest.fixture
def document_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def customer_api() -> InMemoryCustomerApi:
    return InMemoryCustomerApi()


@pytest.fixture
def identity() -> Identity:
    return Identity(uid="user-1", email="ada@example.com", display_name="Ada", provider="email")


@pytest.fixture
def identity_provider(identity) -> IdentityProvider:
    """Provider with ``identity`` already signed in."""
    return IdentityProvider(identity)


class SteppingClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = FIXED_NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock()
