"""Tracking endpoints -- the HTTP surface of the sync pipeline.

Provides:
- POST   /tracking/events        record one activity event
- POST   /tracking/identity      sign an identity in
- DELETE /tracking/identity      sign out
- POST   /tracking/connectivity  report online/offline
- POST   /tracking/sync          run a sync cycle now
- GET    /tracking/status        sync state and session stats
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.clv.api.deps import (
    get_auth_logger,
    get_capture,
    get_connectivity,
    get_identity_provider,
    get_scheduler,
)
from src.clv.tracking.auth_logger import AuthEventLogger
from src.clv.tracking.capture import EventCapture
from src.clv.tracking.scheduler import SyncScheduler
from src.clv.tracking.schemas import ActivityType, Identity
from src.clv.tracking.signals import ConnectivityMonitor, IdentityProvider

router = APIRouter(prefix="/tracking", tags=["tracking"])


# ── Request Schemas ──────────────────────────────────────────────────────────


class _CamelRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TrackEventRequest(_CamelRequest):
    type: str = Field(min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    url: str | None = None


class SignInRequest(_CamelRequest):
    uid: str
    email: str | None = None
    display_name: str | None = None
    provider: str = "unknown"
    is_new_user: bool = False


class ConnectivityRequest(_CamelRequest):
    online: bool


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("/events", status_code=status.HTTP_202_ACCEPTED)
async def track_event(
    body: TrackEventRequest,
    capture: EventCapture = Depends(get_capture),
):
    """Queue an activity event for the next sync cycle.

    Known types are stored as ActivityType; anything else is a custom event
    kept under its own name.
    """
    try:
        activity = ActivityType(body.type)
    except ValueError:
        event = capture.track_custom_event(body.type, body.payload, url=body.url)
    else:
        event = capture.record(activity, body.payload, url=body.url)
    return {
        "status": "accepted",
        "event": event.model_dump(mode="json"),
        "queuedEvents": len(capture),
    }


@router.post("/identity")
async def sign_in(
    body: SignInRequest,
    identity_provider: IdentityProvider = Depends(get_identity_provider),
):
    identity = Identity(
        uid=body.uid,
        email=body.email,
        display_name=body.display_name,
        provider=body.provider,
    )
    await identity_provider.sign_in(identity, is_new_user=body.is_new_user)
    return {"status": "success", "identity": identity.model_dump(mode="json")}


@router.delete("/identity")
async def sign_out(identity_provider: IdentityProvider = Depends(get_identity_provider)):
    await identity_provider.sign_out()
    return {"status": "success"}


@router.post("/connectivity")
async def set_connectivity(
    body: ConnectivityRequest,
    connectivity: ConnectivityMonitor = Depends(get_connectivity),
):
    await connectivity.set_online(body.online)
    return {"status": "success", "online": connectivity.online}


@router.post("/sync")
async def force_sync(scheduler: SyncScheduler = Depends(get_scheduler)):
    """Run a cycle and wait for its result.

    ``skipped`` means no record was published: not signed in, offline, a
    cycle already in flight, or the cycle failed before publishing.
    """
    result = await scheduler.force_sync()
    if result is None:
        return {"status": "skipped", "sync": scheduler.get_status()}
    return {
        "status": "success" if result.ok else "partial_failure",
        "result": result.model_dump(mode="json"),
        "sync": scheduler.get_status(),
    }


@router.get("/status")
async def tracking_status(
    scheduler: SyncScheduler = Depends(get_scheduler),
    capture: EventCapture = Depends(get_capture),
    auth_logger: AuthEventLogger = Depends(get_auth_logger),
):
    """Sync state, current session and the locally cached auth events."""
    return {
        "status": "success",
        "sync": scheduler.get_status(),
        "session": capture.session_stats(),
        "recentAuthEvents": await auth_logger.recent_events(),
    }
