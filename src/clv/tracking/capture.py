"""Activity event capture -- the in-memory queue feeding the sync pipeline.

EventCapture stamps every interaction with time, session and URL and appends
it to a single queue. It never validates: payloads are opaque. When the queue
reaches its high-water mark, registered backpressure listeners are told so
they can request an early sync.

All methods are synchronous, so on a single event loop ``record`` and
``swap`` can never interleave: a swapped batch is never missing an event and
never shares one with the next batch.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog

from src.clv.core.monitoring import activity_events_total
from src.clv.tracking.schemas import ActivityBatch, ActivityEvent, ActivityType, utcnow
from src.clv.tracking.signals import IdentityChange, IdentityProvider

logger = structlog.get_logger(__name__)

BackpressureListener = Callable[[int], None]


def new_session_id() -> str:
    return f"session_{uuid.uuid4().hex}"


class EventCapture:
    """Collects activity events for the current session.

    Args:
        session_id: Session identifier; generated when omitted.
        high_water_mark: Queue length at which listeners are notified.
        clock: Callable returning the current UTC time (tests pin it).
    """

    def __init__(
        self,
        session_id: str | None = None,
        high_water_mark: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._clock = clock
        self._session_id = session_id or new_session_id()
        self._session_start = clock()
        self._high_water_mark = high_water_mark
        self._queue: list[ActivityEvent] = []
        self._listeners: list[BackpressureListener] = []
        self._total_recorded = 0
        self.current_url = ""

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def session_start(self) -> datetime:
        return self._session_start

    def __len__(self) -> int:
        return len(self._queue)

    # ── Listeners ───────────────────────────────────────────────────────────

    def add_backpressure_listener(self, listener: BackpressureListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_backpressure_listener(self, listener: BackpressureListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ── Recording ───────────────────────────────────────────────────────────

    def record(
        self,
        type: ActivityType | str,
        payload: dict[str, Any] | None = None,
        url: str | None = None,
    ) -> ActivityEvent:
        """Append an event stamped with now, the session id and the URL.

        Args:
            type: Known ActivityType or any other string.
            payload: Opaque key/value data carried with the event.
            url: Page the event happened on; defaults to ``current_url``.

        Returns:
            The recorded event.
        """
        event = ActivityEvent(
            type=type,
            timestamp=self._clock(),
            session_id=self._session_id,
            url=url if url is not None else self.current_url,
            payload=payload or {},
        )
        self._queue.append(event)
        self._total_recorded += 1
        activity_events_total.labels(type=event.type_name).inc()

        if len(self._queue) >= self._high_water_mark:
            self._notify_backpressure()
        return event

    def _notify_backpressure(self) -> None:
        depth = len(self._queue)
        logger.debug("capture.high_water_mark", queue_depth=depth)
        for listener in list(self._listeners):
            try:
                listener(depth)
            except Exception:
                logger.warning("capture.listener_failed", exc_info=True)

    # ── Hand-off ────────────────────────────────────────────────────────────

    def swap(self) -> ActivityBatch:
        """Replace the queue with an empty one and return the old contents."""
        taken, self._queue = self._queue, []
        return ActivityBatch(events=tuple(taken))

    def requeue(self, batch: ActivityBatch) -> None:
        """Put an unconsumed batch back in front of any newer events."""
        if batch.is_empty:
            return
        self._queue = list(batch.events) + self._queue
        logger.info("capture.batch_requeued", events=len(batch), queue_depth=len(self._queue))

    def new_session(self) -> None:
        """Start a fresh session. Queued events are kept."""
        self._session_id = new_session_id()
        self._session_start = self._clock()
        logger.info("capture.session_started", session_id=self._session_id)

    def follow_identity(self, identity_provider: IdentityProvider) -> None:
        """Start a new session on every sign-in.

        Subscribe before anything that stamps sign-in events with the
        session id, so those events already belong to the new session.
        """
        identity_provider.subscribe(self._on_identity_change)

    def unfollow_identity(self, identity_provider: IdentityProvider) -> None:
        identity_provider.unsubscribe(self._on_identity_change)

    def _on_identity_change(self, change: IdentityChange) -> None:
        if change.signed_in:
            self.new_session()

    # ── Convenience Trackers ────────────────────────────────────────────────

    def track_page_view(self, url: str, title: str | None = None) -> ActivityEvent:
        self.current_url = url
        return self.record(ActivityType.PAGE_VIEW, {"title": title}, url=url)

    def track_click(self, element: str, text: str | None = None) -> ActivityEvent:
        return self.record(ActivityType.CLICK, {"element": element, "text": text})

    def track_form_submission(
        self, form_id: str, fields: dict[str, Any] | None = None
    ) -> ActivityEvent:
        return self.record(ActivityType.FORM_SUBMIT, {"form_id": form_id, **(fields or {})})

    def track_custom_event(
        self, name: str, data: dict[str, Any] | None = None, url: str | None = None
    ) -> ActivityEvent:
        return self.record(name, data, url=url)

    def track_session_end(self) -> ActivityEvent:
        return self.record(
            ActivityType.SESSION_END,
            {"duration_ms": self.session_duration_ms()},
        )

    # ── Stats ───────────────────────────────────────────────────────────────

    def session_duration_ms(self) -> int:
        elapsed = self._clock() - self._session_start
        return max(0, int(elapsed.total_seconds() * 1000))

    def session_stats(self) -> dict[str, Any]:
        return {
            "session_id": self._session_id,
            "session_start": self._session_start.isoformat(),
            "session_duration_ms": self.session_duration_ms(),
            "queued_events": len(self._queue),
            "total_recorded": self._total_recorded,
        }
