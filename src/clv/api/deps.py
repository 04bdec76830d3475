"""FastAPI dependencies that fetch lifespan-built services from app.state.

Every service is created once in the application lifespan. An endpoint
whose service is missing (startup failed, or a test app without it)
answers 503 instead of crashing.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from src.clv.customers.repository import AuthEventRepository, CustomerRepository
from src.clv.tracking.auth_logger import AuthEventLogger
from src.clv.tracking.capture import EventCapture
from src.clv.tracking.scheduler import SyncScheduler
from src.clv.tracking.signals import ConnectivityMonitor, IdentityProvider


def _get_service(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


def get_customer_repository(request: Request) -> CustomerRepository:
    """Retrieve CustomerRepository from app.state, 503 if not available."""
    return _get_service(request, "customer_repository", "Customer repository")


def get_auth_event_repository(request: Request) -> AuthEventRepository:
    """Retrieve AuthEventRepository from app.state, 503 if not available."""
    return _get_service(request, "auth_event_repository", "Auth event repository")


def get_capture(request: Request) -> EventCapture:
    return _get_service(request, "event_capture", "Event capture")


def get_identity_provider(request: Request) -> IdentityProvider:
    return _get_service(request, "identity_provider", "Identity provider")


def get_connectivity(request: Request) -> ConnectivityMonitor:
    return _get_service(request, "connectivity", "Connectivity monitor")


def get_scheduler(request: Request) -> SyncScheduler:
    return _get_service(request, "sync_scheduler", "Sync scheduler")


def get_auth_logger(request: Request) -> AuthEventLogger:
    return _get_service(request, "auth_logger", "Auth event logger")
