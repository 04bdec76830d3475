"""V1 API router -- aggregates all endpoint routers under /api."""

from __future__ import annotations

from fastapi import APIRouter

from src.clv.api.v1 import auth_events, customers, health, tracking

router = APIRouter()

router.include_router(health.router)
router.include_router(customers.router)
router.include_router(auth_events.router)
router.include_router(tracking.router)
