"""Tests for request logging: request id propagation and context binding."""

from __future__ import annotations

from unittest.mock import patch

import pytest
import pytest_asyncio
import structlog
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from src.clv.api.middleware.logging import LoggingMiddleware


@pytest_asyncio.fixture
async def client():
    app = FastAPI()
    app.add_middleware(LoggingMiddleware)

    @app.get("/context")
    async def context():
        return structlog.contextvars.get_contextvars()

    @app.get("/boom")
    async def boom():
        raise RuntimeError("boom")

    transport = ASGITransport(app=app, raise_app_exceptions=True)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestRequestId:
    async def test_supplied_id_echoed(self, client):
        response = await client.get("/context", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"

    async def test_generated_when_missing(self, client):
        first = await client.get("/context")
        second = await client.get("/context")

        assert first.headers["X-Request-ID"]
        assert first.headers["X-Request-ID"] != second.headers["X-Request-ID"]


class TestContextBinding:
    async def test_handlers_see_request_context(self, client):
        response = await client.get("/context", headers={"X-Request-ID": "req-7"})

        assert response.json() == {"request_id": "req-7", "method": "GET", "path": "/context"}

    async def test_context_cleared_after_request(self, client):
        await client.get("/context", headers={"X-Request-ID": "req-8"})

        assert structlog.contextvars.get_contextvars() == {}

    async def test_failure_propagates_and_is_logged(self, client):
        with patch("src.clv.api.middleware.logging.logger") as log:
            with pytest.raises(RuntimeError):
                await client.get("/boom", headers={"X-Request-ID": "req-9"})

        assert log.exception.call_args.args == ("http.request_failed",)
        log.info.assert_not_called()
