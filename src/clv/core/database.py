"""Async SQLAlchemy engine and session management.

Provides:
- Base: Declarative base for all application tables
- get_engine(): Lazy engine singleton built from settings.DATABASE_URL
- get_session(): Async generator yielding an AsyncSession
- init_db() / close_db(): Lifespan hooks for table creation and disposal

SQLite (aiosqlite) is the development default; PostgreSQL via asyncpg is
supported by pointing DATABASE_URL at it.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.clv.config import get_settings

# ── Module-level engine (lazy init) ────────────────────────────────────────

_engine: AsyncEngine | None = None


def _engine_options(url: str) -> dict[str, Any]:
    """Pool options for the given database URL.

    SQLite uses a single-file (or in-memory) database that does not accept
    pool sizing arguments.
    """
    if url.startswith("sqlite"):
        return {"echo": False}
    return {"pool_size": 20, "max_overflow": 10, "echo": False}


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.DATABASE_URL,
            **_engine_options(settings.DATABASE_URL),
        )
    return _engine


# ── Declarative Base ────────────────────────────────────────────────────────


class Base(DeclarativeBase):
    """Base class for all application models."""


# ── Session Factory ─────────────────────────────────────────────────────────


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession bound to the application engine."""
    engine = get_engine()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db() -> None:
    """Create all tables if they don't exist."""
    # Import models so their tables are registered on Base.metadata
    from src.clv.customers import models  # noqa: F401

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
