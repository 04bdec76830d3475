"""Authentication event logging.

AuthEventLogger listens to the identity provider. On every sign-in it:
1. records a ``login`` or ``signup`` activity event in the capture queue
2. appends the auth event to the bounded local cache
3. posts it to ``/api/log-auth`` in the background, retrying with a linear
   backoff (2s, 4s, ...) up to ``max_retries`` attempts

Delivery failures are logged and never raised into the sign-in path.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)
from tenacity.wait import wait_base

from src.clv.tracking.capture import EventCapture
from src.clv.tracking.schemas import ActivityType, Identity, utcnow
from src.clv.tracking.signals import IdentityChange, IdentityProvider
from src.clv.tracking.sinks.local_cache import RecentItemsCache

logger = structlog.get_logger(__name__)

AUTH_EVENT_SOURCE = "clv_tracker"


class AuthEventLogger:
    """Turns sign-ins into logged auth events.

    Args:
        identity_provider: Provider whose sign-ins are logged.
        capture: Queue that receives the matching login/signup activity.
        api_base_url: Root URL of the service exposing ``/api/log-auth``.
            Empty disables delivery; events are still recorded and cached.
        local_cache: Optional bounded cache of recent auth events.
        max_retries: Delivery attempts per event.
        retry_delay: Attempt N waits ``retry_delay * N`` seconds before N+1.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests pass a MockTransport).
        retry_wait: Optional tenacity wait strategy overriding ``retry_delay``.
    """

    def __init__(
        self,
        identity_provider: IdentityProvider,
        capture: EventCapture,
        api_base_url: str | None,
        local_cache: RecentItemsCache | None = None,
        max_retries: int = 3,
        retry_delay: float = 2,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_wait: wait_base | None = None,
    ) -> None:
        self._identity = identity_provider
        self._capture = capture
        self._base_url = (api_base_url or "").rstrip("/")
        self._local_cache = local_cache
        self._max_retries = max_retries
        self._timeout = timeout
        self._transport = transport
        self._retry_wait = retry_wait or wait_incrementing(start=retry_delay, increment=retry_delay)
        self._pending: set[asyncio.Task] = set()

    @property
    def delivery_enabled(self) -> bool:
        return bool(self._base_url)

    def start(self) -> None:
        if not self.delivery_enabled:
            logger.info("auth_logger.delivery_disabled", reason="no api base url")
        self._identity.subscribe(self._on_identity_change)

    async def stop(self) -> None:
        """Unsubscribe and wait for in-flight deliveries."""
        self._identity.unsubscribe(self._on_identity_change)
        await self.wait_idle()

    async def wait_idle(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _on_identity_change(self, change: IdentityChange) -> None:
        if change.current is None or not change.signed_in:
            return
        event = self.build_event(change.current, change.is_new_user)
        task = asyncio.create_task(self.log_auth_event(event), name="auth_event_delivery")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def build_event(self, identity: Identity, is_new_user: bool) -> dict[str, Any]:
        """Auth event payload in the wire shape ``/api/log-auth`` accepts."""
        return {
            "userId": identity.uid,
            "email": identity.email,
            "displayName": identity.display_name,
            "eventType": "signup" if is_new_user else "login",
            "provider": identity.provider,
            "sessionId": self._capture.session_id,
            "currentUrl": self._capture.current_url or None,
            "isNewUser": is_new_user,
            "timestamp": utcnow().isoformat(),
            "source": AUTH_EVENT_SOURCE,
        }

    async def log_auth_event(self, event: dict[str, Any]) -> bool:
        """Record, cache and deliver one auth event.

        Returns:
            True if the server accepted the event.
        """
        activity = ActivityType.SIGNUP if event["eventType"] == "signup" else ActivityType.LOGIN
        self._capture.record(
            activity,
            {"provider": event.get("provider"), "email": event.get("email")},
        )
        if self._local_cache is not None:
            await self._local_cache.append(event)

        if not self.delivery_enabled:
            return False

        try:
            await self._post(event)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning(
                "auth_logger.delivery_failed",
                user_id=event.get("userId"),
                event_type=event.get("eventType"),
                attempts=self._max_retries,
                error=str(exc),
            )
            return False

        logger.info(
            "auth_logger.event_logged",
            user_id=event.get("userId"),
            event_type=event.get("eventType"),
        )
        return True

    async def _post(self, event: dict[str, Any]) -> None:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_retries),
            wait=self._retry_wait,
            retry=retry_if_exception_type(httpx.HTTPError),
            reraise=True,
        ):
            with attempt:
                async with httpx.AsyncClient(
                    base_url=self._base_url,
                    timeout=self._timeout,
                    transport=self._transport,
                ) as client:
                    response = await client.post("/api/log-auth", json=event)
                    response.raise_for_status()

    async def recent_events(self) -> list[dict[str, Any]]:
        """Locally cached auth events, oldest first."""
        if self._local_cache is None:
            return []
        return await self._local_cache.items()
