"""API tests for the tracking endpoints and the application factory."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from src.clv.api.v1.tracking import router as tracking_router
from src.clv.main import create_app
from src.clv.tracking.auth_logger import AuthEventLogger
from src.clv.tracking.capture import EventCapture
from src.clv.tracking.publisher import CUSTOMER_VALUES_COLLECTION, DualSinkPublisher
from src.clv.tracking.schemas import ActivityType
from src.clv.tracking.scheduler import SyncScheduler
from src.clv.tracking.signals import ConnectivityMonitor, IdentityProvider


@pytest_asyncio.fixture
async def pipeline(document_store, customer_api, clock):
    capture = EventCapture(session_id="s-api", clock=clock)
    identity_provider = IdentityProvider()
    capture.follow_identity(identity_provider)
    connectivity = ConnectivityMonitor()
    scheduler = SyncScheduler(
        capture=capture,
        identity_provider=identity_provider,
        publisher=DualSinkPublisher(document_store, customer_api),
        connectivity=connectivity,
        clock=clock,
    )
    auth_cache = AsyncMock()
    auth_cache.items.return_value = [{"userId": "user-9", "eventType": "login"}]
    auth_logger = AuthEventLogger(
        identity_provider=identity_provider,
        capture=capture,
        api_base_url="",
        local_cache=auth_cache,
    )
    yield {
        "capture": capture,
        "identity_provider": identity_provider,
        "connectivity": connectivity,
        "scheduler": scheduler,
        "auth_logger": auth_logger,
    }
    await scheduler.stop()
    scheduler.pause()


@pytest_asyncio.fixture
async def app(pipeline) -> FastAPI:
    app = FastAPI()
    app.include_router(tracking_router, prefix="/api")
    app.state.event_capture = pipeline["capture"]
    app.state.identity_provider = pipeline["identity_provider"]
    app.state.connectivity = pipeline["connectivity"]
    app.state.sync_scheduler = pipeline["scheduler"]
    app.state.auth_logger = pipeline["auth_logger"]
    return app


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


class TestTrackingEndpoints:
    async def test_track_event_queues(self, client, pipeline):
        resp = await client.post(
            "/api/tracking/events",
            json={"type": "click", "payload": {"element": "buy"}, "url": "/cart"},
        )

        assert resp.status_code == 202
        assert resp.json()["queuedEvents"] == 1
        assert resp.json()["event"]["url"] == "/cart"
        assert len(pipeline["capture"]) == 1

    async def test_unknown_type_kept_as_custom_event(self, client, pipeline):
        resp = await client.post(
            "/api/tracking/events",
            json={"type": "video_played", "payload": {"seconds": 12}},
        )

        assert resp.status_code == 202
        assert resp.json()["event"]["type"] == "video_played"
        assert pipeline["capture"].swap().events[0].payload == {"seconds": 12}

    async def test_known_type_stored_as_activity_type(self, client, pipeline):
        await client.post("/api/tracking/events", json={"type": "click"})

        assert pipeline["capture"].swap().events[0].type is ActivityType.CLICK

    async def test_empty_queue_sync_is_skipped(self, client, document_store):
        await client.post("/api/tracking/identity", json={"uid": "user-9", "email": "l@example.com"})

        resp = await client.post("/api/tracking/sync")

        assert resp.json()["status"] == "skipped"
        assert document_store.upsert_calls == 0

    async def test_sign_in_starts_new_session(self, client):
        await client.post("/api/tracking/identity", json={"uid": "user-9", "email": "l@example.com"})

        data = (await client.get("/api/tracking/status")).json()

        assert data["session"]["session_id"] != "s-api"
        assert data["session"]["session_id"].startswith("session_")

    async def test_sync_skipped_when_signed_out(self, client):
        resp = await client.post("/api/tracking/sync")

        assert resp.json()["status"] == "skipped"
        assert resp.json()["sync"]["is_authenticated"] is False

    async def test_sign_in_track_and_sync(self, client, document_store):
        await client.post(
            "/api/tracking/identity",
            json={"uid": "user-9", "email": "lin@example.com", "displayName": "Lin"},
        )
        for _ in range(3):
            await client.post("/api/tracking/events", json={"type": "click"})
        await client.post("/api/tracking/events", json={"type": "form_submit"})

        resp = await client.post("/api/tracking/sync")

        assert resp.json()["status"] == "success"
        stored = await document_store.read(CUSTOMER_VALUES_COLLECTION, "user-9")
        # 150 * (1 + 0.30 * 0.5) = 172.5 -> 172, plus the form bonus
        assert stored["averagePurchaseValue"] == 222
        assert stored["name"] == "Lin"

    async def test_partial_failure_reported(self, client, customer_api):
        customer_api.fail_next = 1
        await client.post("/api/tracking/identity", json={"uid": "user-9", "email": "l@example.com"})
        await client.post("/api/tracking/events", json={"type": "page_view"})

        resp = await client.post("/api/tracking/sync")

        data = resp.json()
        assert data["status"] == "partial_failure"
        assert data["result"]["outcomes"]["customer_api"]["status"] == "failed"
        assert data["result"]["outcomes"]["document_store"]["status"] == "written"
        assert data["sync"]["retry_attempts"] == 1
        assert data["sync"]["retry_pending"] is True

    async def test_offline_suppresses_sync(self, client):
        await client.post("/api/tracking/identity", json={"uid": "user-9", "email": "l@example.com"})
        resp = await client.post("/api/tracking/connectivity", json={"online": False})
        assert resp.json()["online"] is False

        sync = await client.post("/api/tracking/sync")

        assert sync.json()["status"] == "skipped"
        assert sync.json()["sync"]["is_online"] is False

    async def test_sign_out(self, client, pipeline):
        await client.post("/api/tracking/identity", json={"uid": "user-9", "email": "l@example.com"})

        resp = await client.delete("/api/tracking/identity")

        assert resp.status_code == 200
        assert pipeline["identity_provider"].current_identity() is None

    async def test_status(self, client):
        await client.post("/api/tracking/events", json={"type": "page_view"})

        data = (await client.get("/api/tracking/status")).json()

        assert data["sync"]["queued_events"] == 1
        assert data["session"]["session_id"] == "s-api"
        assert data["sync"]["customer_api_configured"] is True
        assert data["recentAuthEvents"] == [{"userId": "user-9", "eventType": "login"}]

    async def test_503_when_pipeline_missing(self, app, client):
        app.state.sync_scheduler = None

        resp = await client.post("/api/tracking/sync")

        assert resp.status_code == 503
        assert "not initialized" in resp.json()["detail"]


class TestAppFactory:
    async def test_health_and_metrics_routes(self):
        app = create_app()
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            health = await ac.get("/api/health")
            metrics = await ac.get("/metrics")

        assert health.status_code == 200
        assert health.json()["status"] == "ok"
        assert metrics.status_code == 200
        assert "clv_sync_cycles_total" in metrics.text
