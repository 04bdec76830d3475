"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, lifespan
events for database initialization and the tracking pipeline, and the v1
API router mounted under /api.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.clv.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.clv.api.v1.router import router as v1_router
from src.clv.config import Settings, get_settings
from src.clv.core.database import close_db, get_session, init_db
from src.clv.core.monitoring import MetricsMiddleware, get_metrics_response
from src.clv.core.redis import close_redis, get_redis_pool
from src.clv.customers.repository import (
    AuthEventRepository,
    CustomerRepository,
    DocumentRepository,
)
from src.clv.tracking.auth_logger import AuthEventLogger
from src.clv.tracking.capture import EventCapture
from src.clv.tracking.publisher import DualSinkPublisher
from src.clv.tracking.scheduler import SyncScheduler
from src.clv.tracking.signals import ConnectivityMonitor, IdentityProvider
from src.clv.tracking.sinks.document import SqlDocumentStore
from src.clv.tracking.sinks.http_api import HttpCustomerApi
from src.clv.tracking.sinks.local_cache import RecentItemsCache
from src.clv.tracking.synthesizer import get_baseline

RECENT_RECORDS_KEY = "clv:recent_records"
RECENT_AUTH_EVENTS_KEY = "clv:auth_events"


def build_tracking(app: FastAPI, settings: Settings, document_repository: DocumentRepository) -> None:
    """Construct the tracking pipeline and store its parts on app.state."""
    capture = EventCapture(high_water_mark=settings.ACTIVITY_QUEUE_HIGH_WATER_MARK)
    identity_provider = IdentityProvider()
    # Subscribed before the auth logger and scheduler so a sign-in opens the
    # new session before anything stamps or syncs its events
    capture.follow_identity(identity_provider)
    connectivity = ConnectivityMonitor()

    customer_api = None
    if settings.CUSTOMER_API_BASE_URL:
        customer_api = HttpCustomerApi(
            settings.CUSTOMER_API_BASE_URL,
            timeout=settings.CUSTOMER_API_TIMEOUT,
        )

    redis = get_redis_pool()
    record_cache = RecentItemsCache(redis, RECENT_RECORDS_KEY, limit=settings.LOCAL_CACHE_LIMIT)
    auth_cache = RecentItemsCache(redis, RECENT_AUTH_EVENTS_KEY, limit=settings.LOCAL_CACHE_LIMIT)

    publisher = DualSinkPublisher(
        document_store=SqlDocumentStore(document_repository),
        customer_api=customer_api,
    )
    scheduler = SyncScheduler(
        capture=capture,
        identity_provider=identity_provider,
        publisher=publisher,
        connectivity=connectivity,
        local_cache=record_cache,
        baseline=get_baseline(settings.VALUE_FORMULA),
        sync_interval=settings.SYNC_INTERVAL_SECONDS,
        flush_interval=settings.ACTIVITY_FLUSH_INTERVAL_SECONDS,
        initial_delay=settings.SYNC_INITIAL_DELAY_SECONDS,
        max_retries=settings.SYNC_MAX_RETRIES,
        retry_base_delay=settings.SYNC_RETRY_BASE_DELAY_SECONDS,
    )
    auth_logger = AuthEventLogger(
        identity_provider=identity_provider,
        capture=capture,
        api_base_url=settings.CUSTOMER_API_BASE_URL,
        local_cache=auth_cache,
        max_retries=settings.AUTH_LOG_MAX_RETRIES,
        retry_delay=settings.AUTH_LOG_RETRY_DELAY_SECONDS,
        timeout=settings.CUSTOMER_API_TIMEOUT,
    )

    app.state.event_capture = capture
    app.state.identity_provider = identity_provider
    app.state.connectivity = connectivity
    app.state.customer_api = customer_api
    app.state.publisher = publisher
    app.state.sync_scheduler = scheduler
    app.state.auth_logger = auth_logger


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB and the sync pipeline, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()

    configure_structlog()
    await init_db()

    customer_repository = CustomerRepository(session_factory=get_session)
    document_repository = DocumentRepository(session_factory=get_session)
    app.state.customer_repository = customer_repository
    app.state.auth_event_repository = AuthEventRepository(session_factory=get_session)
    app.state.document_repository = document_repository

    # ── Tracking Pipeline ────────────────────────────────────────────────
    # Failure-tolerant: the customer API keeps serving if the pipeline
    # cannot be built; tracking endpoints answer 503.
    try:
        build_tracking(app, settings, document_repository)
        if settings.SYNC_ENABLED:
            # Auth logger first, so a sign-in queues its login event before
            # the scheduler's identity-triggered cycle swaps the queue
            app.state.auth_logger.start()
            app.state.sync_scheduler.start()
            customer_api = app.state.customer_api
            if customer_api is not None:
                app.state.connectivity.start(
                    customer_api.health_check,
                    settings.CONNECTIVITY_CHECK_INTERVAL_SECONDS,
                )
        log.info(
            "tracking.pipeline_initialized",
            sync_enabled=settings.SYNC_ENABLED,
            value_formula=settings.VALUE_FORMULA,
        )
    except Exception:
        log.warning("tracking.pipeline_init_failed", exc_info=True)
        app.state.sync_scheduler = None
        app.state.event_capture = None
        app.state.identity_provider = None
        app.state.connectivity = None
        app.state.auth_logger = None

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    scheduler = getattr(app.state, "sync_scheduler", None)
    if scheduler is not None:
        await scheduler.stop()

    auth_logger = getattr(app.state, "auth_logger", None)
    if auth_logger is not None:
        await auth_logger.stop()

    connectivity = getattr(app.state, "connectivity", None)
    if connectivity is not None:
        await connectivity.stop()

    capture = getattr(app.state, "event_capture", None)
    identity_provider = getattr(app.state, "identity_provider", None)
    if capture is not None and identity_provider is not None:
        capture.unfollow_identity(identity_provider)

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="CLV Tracker API",
        version="0.1.0",
        description="Customer lifetime value tracking with dual-sink activity sync",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router, prefix="/api")

    # Prometheus metrics endpoint (infrastructure route, outside the API router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
