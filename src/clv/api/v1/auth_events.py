"""Authentication event endpoints.

Clients report logins and signups to /log-auth; /auth-stats, /auth-logs
and /auth-export read the log back as statistics, recent entries and CSV.
"""

from __future__ import annotations

import csv
import io
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response

from src.clv.api.deps import get_auth_event_repository
from src.clv.customers.repository import AuthEventRepository
from src.clv.customers.schemas import AuthEventCreate, AuthEventRead

router = APIRouter(tags=["auth-events"])

CSV_COLUMNS = (
    ("UserId", "user_id"),
    ("Email", "email"),
    ("DisplayName", "display_name"),
    ("EventType", "event_type"),
    ("Provider", "provider"),
    ("Timestamp", "timestamp"),
    ("SessionId", "session_id"),
    ("UserAgent", "user_agent"),
    ("Platform", "platform"),
    ("DeviceType", "device_type"),
    ("BrowserName", "browser_name"),
    ("IPAddress", "ip_address"),
    ("CurrentUrl", "current_url"),
    ("IsNewUser", "is_new_user"),
)


def render_csv(events: list[AuthEventRead]) -> str:
    """Render auth events as CSV with a header row."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow([header for header, _ in CSV_COLUMNS])
    for event in events:
        row = []
        for _, field in CSV_COLUMNS:
            value = getattr(event, field)
            if isinstance(value, bool):
                value = "true" if value else "false"
            elif isinstance(value, datetime):
                value = value.isoformat()
            row.append("" if value is None else value)
        writer.writerow(row)
    return buffer.getvalue()


@router.post("/log-auth")
async def log_auth(
    body: AuthEventCreate,
    request: Request,
    repo: AuthEventRepository = Depends(get_auth_event_repository),
):
    """Store one login or signup event."""
    if body.ip_address is None and request.client is not None:
        body = body.model_copy(update={"ip_address": request.client.host})
    if body.user_agent is None:
        body = body.model_copy(update={"user_agent": request.headers.get("user-agent")})
    event = await repo.log(body)
    return {
        "status": "success",
        "message": "Authentication event logged successfully",
        "event": event.model_dump(mode="json", by_alias=True),
    }


@router.get("/auth-stats")
async def auth_stats(repo: AuthEventRepository = Depends(get_auth_event_repository)):
    stats = await repo.statistics()
    return {"status": "success", "authStatistics": stats.model_dump(mode="json", by_alias=True)}


@router.get("/auth-logs")
async def auth_logs(
    limit: int = Query(default=10, ge=1, le=100),
    repo: AuthEventRepository = Depends(get_auth_event_repository),
):
    """Most recent auth events first."""
    events = await repo.recent(limit)
    return {
        "status": "success",
        "authLogs": [e.model_dump(mode="json", by_alias=True) for e in events],
        "totalEvents": len(events),
    }


@router.get("/auth-export")
async def auth_export(repo: AuthEventRepository = Depends(get_auth_event_repository)):
    """Every auth event as a CSV download."""
    events = await repo.list_all()
    filename = f"auth_export_{int(datetime.now(timezone.utc).timestamp())}.csv"
    return Response(
        content=render_csv(events),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
