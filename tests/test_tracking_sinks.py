"""Tests for the sink adapters: HTTP customer API, SQL document store, local cache."""

from __future__ import annotations

import json

import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import OperationalError
from tenacity import wait_none
from unittest.mock import AsyncMock

from src.clv.customers.repository import DocumentRepository
from src.clv.tracking.sinks.base import CustomerApiError, DocumentStoreError
from src.clv.tracking.sinks.document import SqlDocumentStore
from src.clv.tracking.sinks.http_api import HttpCustomerApi
from src.clv.tracking.sinks.local_cache import RecentItemsCache


def _api(handler, max_attempts: int = 3) -> HttpCustomerApi:
    return HttpCustomerApi(
        "http://customers.test/",
        max_attempts=max_attempts,
        transport=httpx.MockTransport(handler),
        retry_wait=wait_none(),
    )


# ── HttpCustomerApi ──────────────────────────────────────────────────────────


class TestHttpCustomerApi:
    async def test_get_customer_unwraps_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/customers/user-1"
            return httpx.Response(200, json={"status": "success", "customer": {"id": "user-1"}})

        assert await _api(handler).get_customer("user-1") == {"id": "user-1"}

    async def test_get_customer_404_is_none(self):
        api = _api(lambda request: httpx.Response(404, json={"detail": "Customer not found"}))

        assert await api.get_customer("ghost") is None

    async def test_add_and_update_send_record(self):
        seen: list[tuple[str, str, dict]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            seen.append((request.method, request.url.path, body))
            return httpx.Response(201 if request.method == "POST" else 200, json={"customer": body})

        api = _api(handler)
        record = {"id": "user-1", "name": "Ada", "clv": 2400}

        assert await api.add_customer(record) == record
        await api.update_customer(record)

        assert seen[0][:2] == ("POST", "/api/customers")
        assert seen[1][:2] == ("PUT", "/api/customers/user-1")
        assert seen[1][2] == record

    async def test_list_customers(self):
        api = _api(lambda request: httpx.Response(200, json={"customers": [{"id": "a"}, {"id": "b"}]}))

        assert [c["id"] for c in await api.list_customers()] == ["a", "b"]

    async def test_server_errors_retried_then_succeed(self):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"customer": {"id": "user-1"}})

        assert await _api(handler).get_customer("user-1") == {"id": "user-1"}
        assert calls["n"] == 3

    async def test_network_error_exhausts_attempts(self):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(CustomerApiError, match="connection refused"):
            await _api(handler, max_attempts=2).get_customer("user-1")
        assert calls["n"] == 2

    async def test_persistent_5xx_carries_status(self):
        with pytest.raises(CustomerApiError) as exc_info:
            await _api(lambda request: httpx.Response(500)).get_customer("user-1")

        assert exc_info.value.status_code == 500

    async def test_client_error_not_retried(self):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(409, json={"detail": "exists"})

        with pytest.raises(CustomerApiError) as exc_info:
            await _api(handler).add_customer({"id": "user-1"})

        assert exc_info.value.status_code == 409
        assert calls["n"] == 1

    async def test_health_check(self):
        assert await _api(lambda request: httpx.Response(200, json={"status": "ok"})).health_check()
        assert not await _api(lambda request: httpx.Response(503)).health_check()

        def down(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        assert not await _api(down).health_check()


# ── SqlDocumentStore ─────────────────────────────────────────────────────────


class TestSqlDocumentStore:
    async def test_round_trip(self, session_factory):
        store = SqlDocumentStore(DocumentRepository(session_factory=session_factory))

        await store.upsert("customerValues", "user-1", {"clv": 2400})

        assert await store.read("customerValues", "user-1") == {"clv": 2400}
        assert await store.read("customerValues", "missing") is None

    async def test_database_errors_wrapped(self):
        repo = AsyncMock()
        repo.upsert.side_effect = OperationalError("INSERT", {}, Exception("disk full"))
        store = SqlDocumentStore(repo)

        with pytest.raises(DocumentStoreError, match="customerValues/user-1"):
            await store.upsert("customerValues", "user-1", {"clv": 1})


# ── RecentItemsCache ─────────────────────────────────────────────────────────


class FakeRedisList:
    """Just enough of redis.asyncio.Redis for list-backed caches."""

    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = {}
        self.down = False

    def _check(self) -> None:
        if self.down:
            raise RedisConnectionError("redis unavailable")

    async def rpush(self, key: str, value: str) -> int:
        self._check()
        self.lists.setdefault(key, []).append(value)
        return len(self.lists[key])

    async def ltrim(self, key: str, start: int, end: int) -> bool:
        self._check()
        items = self.lists.get(key, [])
        stop = None if end == -1 else end + 1
        self.lists[key] = items[start:stop]
        return True

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        self._check()
        items = self.lists.get(key, [])
        stop = None if end == -1 else end + 1
        return items[start:stop]

    async def delete(self, key: str) -> int:
        self._check()
        return 1 if self.lists.pop(key, None) is not None else 0


class TestRecentItemsCache:
    async def test_keeps_newest_items_up_to_limit(self):
        cache = RecentItemsCache(FakeRedisList(), "clv:test", limit=3)

        for i in range(5):
            assert await cache.append({"n": i})

        assert [item["n"] for item in await cache.items()] == [2, 3, 4]

    async def test_redis_errors_swallowed(self):
        redis = FakeRedisList()
        redis.down = True
        cache = RecentItemsCache(redis, "clv:test")

        assert await cache.append({"n": 1}) is False
        assert await cache.items() == []
