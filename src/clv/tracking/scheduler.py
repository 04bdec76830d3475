"""Sync scheduler -- decides when the activity-to-record pipeline runs.

A cycle swaps the capture queue, aggregates the batch, synthesizes a
customer value record for the signed-in identity and publishes it to both
sinks. Cycles are started by:
- the periodic general sync (default every 5 minutes, first after 2s)
- the periodic activity flush (default every 30s, only with queued events)
- an unauthenticated to authenticated identity transition
- connectivity coming back online
- the capture queue reaching its high-water mark

State machine: idle -> running -> (succeeded | failed) -> idle. While
offline, timers are paused and every trigger is suppressed; events keep
accumulating in the queue. A trigger that arrives while a cycle is in flight
is dropped, leaving its events queued for the next cycle.

Failures (a pipeline exception, or any sink reporting ``failed``) schedule a
one-shot retry after ``retry_base_delay * attempt`` seconds while the
failure count stays below ``max_retries``; reaching it resets the counter
and the scheduler waits for the next trigger. Everything runs on one event
loop as plain asyncio tasks.

A cycle with nothing queued is skipped and publishes nothing.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog

from src.clv.core.monitoring import sync_cycles_total, sync_retry_attempts
from src.clv.tracking.capture import EventCapture
from src.clv.tracking.insights import aggregate
from src.clv.tracking.publisher import DualSinkPublisher
from src.clv.tracking.schemas import (
    CustomerValueRecord,
    PublishResult,
    SyncPhase,
    SyncState,
    utcnow,
)
from src.clv.tracking.signals import ConnectivityMonitor, IdentityChange, IdentityProvider
from src.clv.tracking.sinks.local_cache import RecentItemsCache
from src.clv.tracking.synthesizer import (
    ACTIVITY_TRACKING,
    InvalidIdentityError,
    ValueBaseline,
    synthesize,
)

logger = structlog.get_logger(__name__)


class SyncScheduler:
    """Owns the sync state and every timer that drives the pipeline.

    Args:
        capture: Event queue the cycles drain.
        identity_provider: Source of the signed-in identity.
        publisher: Dual-sink publisher records are handed to.
        connectivity: Optional online/offline monitor; always online without one.
        local_cache: Optional bounded cache every synthesized record is appended to.
        baseline: CLV formula parameters.
        sync_interval: Seconds between general syncs.
        flush_interval: Seconds between activity flushes.
        initial_delay: Seconds before the first general sync after start.
        max_retries: Consecutive failures that exhaust retrying; a
            ceiling of 3 allows two retries.
        retry_base_delay: Retry N waits ``retry_base_delay * N`` seconds.
        clock: Callable returning the current UTC time.
    """

    def __init__(
        self,
        capture: EventCapture,
        identity_provider: IdentityProvider,
        publisher: DualSinkPublisher,
        connectivity: ConnectivityMonitor | None = None,
        local_cache: RecentItemsCache | None = None,
        baseline: ValueBaseline = ACTIVITY_TRACKING,
        sync_interval: float = 300,
        flush_interval: float = 30,
        initial_delay: float = 2,
        max_retries: int = 3,
        retry_base_delay: float = 30,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._capture = capture
        self._identity = identity_provider
        self._publisher = publisher
        self._connectivity = connectivity
        self._local_cache = local_cache
        self._baseline = baseline
        self._sync_interval = sync_interval
        self._flush_interval = flush_interval
        self._initial_delay = initial_delay
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._clock = clock

        self._state = SyncState(is_online=connectivity.online if connectivity else True)
        self._started = False
        self._paused = False
        self._timer_tasks: list[asyncio.Task] = []
        self._cycle_task: asyncio.Task | None = None
        self._retry_task: asyncio.Task | None = None

        # Record whose delivery partly failed, kept for sink-only re-delivery
        self._pending_record: CustomerValueRecord | None = None
        self._pending_sinks: list[str] = []

    # ── Observation ─────────────────────────────────────────────────────────

    @property
    def state(self) -> SyncState:
        """Read-only snapshot of the sync state."""
        return self._state.model_copy(deep=True)

    @property
    def baseline(self) -> ValueBaseline:
        return self._baseline

    def get_status(self) -> dict[str, Any]:
        """Sync state plus queue and timer details, JSON-ready."""
        return {
            **self._state.model_dump(mode="json"),
            "queued_events": len(self._capture),
            "is_authenticated": self._identity.is_authenticated(),
            "timers_active": self._timers_active(),
            "retry_pending": self._retry_task is not None and not self._retry_task.done(),
            "value_formula": self._baseline.name,
            "customer_api_configured": self._publisher.has_customer_api(),
        }

    def _timers_active(self) -> bool:
        return any(not task.done() for task in self._timer_tasks)

    # ── Lifecycle ───────────────────────────────────────────────────────────

    def start(self) -> None:
        """Subscribe to every trigger source and start the periodic timers."""
        if self._started:
            return
        self._started = True
        self._paused = False
        self._identity.subscribe(self._on_identity_change)
        self._capture.add_backpressure_listener(self._on_backpressure)
        if self._connectivity is not None:
            self._connectivity.subscribe(self._on_connectivity_change)
            self._state.is_online = self._connectivity.online

        if self._state.is_online:
            self._start_timers(self._initial_delay)
        logger.info(
            "sync.scheduler_started",
            sync_interval=self._sync_interval,
            flush_interval=self._flush_interval,
            online=self._state.is_online,
        )

    def pause(self) -> None:
        """Cancel the periodic timers and any pending retry."""
        self._paused = True
        self._cancel_timers()
        self._cancel_retry()
        logger.info("sync.scheduler_paused")

    def resume(self) -> None:
        """Restart the periodic timers if online."""
        if not self._started:
            return
        self._paused = False
        if self._state.is_online and not self._timers_active():
            self._start_timers(self._sync_interval)
        logger.info("sync.scheduler_resumed", online=self._state.is_online)

    async def stop(self) -> None:
        """Unsubscribe, cancel timers and retries, and wait for an in-flight cycle."""
        if not self._started:
            return
        self._started = False
        self._identity.unsubscribe(self._on_identity_change)
        self._capture.remove_backpressure_listener(self._on_backpressure)
        if self._connectivity is not None:
            self._connectivity.unsubscribe(self._on_connectivity_change)

        pending = [*self._timer_tasks]
        if self._retry_task is not None:
            pending.append(self._retry_task)
        self._cancel_timers()
        self._cancel_retry()
        await asyncio.gather(*pending, return_exceptions=True)

        if self._cycle_task is not None and not self._cycle_task.done():
            await asyncio.gather(self._cycle_task, return_exceptions=True)
        logger.info("sync.scheduler_stopped")

    # ── Timers ──────────────────────────────────────────────────────────────

    def _start_timers(self, first_sync_delay: float) -> None:
        self._cancel_timers()
        self._timer_tasks = [
            asyncio.create_task(
                self._periodic("general", self._sync_interval, first_sync_delay, self._general_tick),
                name="sync_general",
            ),
            asyncio.create_task(
                self._periodic("flush", self._flush_interval, self._flush_interval, self._flush_tick),
                name="sync_activity_flush",
            ),
        ]

    def _cancel_timers(self) -> None:
        for task in self._timer_tasks:
            task.cancel()
        self._timer_tasks = []

    async def _periodic(
        self,
        name: str,
        interval: float,
        first_delay: float,
        tick: Callable[[], None],
    ) -> None:
        """Background loop that fires ``tick`` every ``interval`` seconds."""
        delay = first_delay
        while True:
            try:
                await asyncio.sleep(delay)
                delay = interval
                tick()
            except asyncio.CancelledError:
                logger.debug("sync.timer_cancelled", timer=name)
                break
            except Exception:
                logger.warning("sync.timer_error", timer=name, exc_info=True)

    def _general_tick(self) -> None:
        self.trigger("periodic")

    def _flush_tick(self) -> None:
        if len(self._capture) == 0:
            return
        self.trigger("activity_flush")

    # ── Trigger Sources ─────────────────────────────────────────────────────

    def _on_identity_change(self, change: IdentityChange) -> None:
        if change.signed_in:
            self.trigger("identity")

    def _on_backpressure(self, depth: int) -> None:
        self.trigger("backpressure")

    def _on_connectivity_change(self, online: bool) -> None:
        self._state.is_online = online
        if not online:
            self._cancel_timers()
            self._cancel_retry()
            logger.info("sync.offline_timers_paused", queued_events=len(self._capture))
            return

        if self._started and not self._paused:
            self._start_timers(self._sync_interval)
        self.trigger("online")

    # ── Triggering ──────────────────────────────────────────────────────────

    def _cycle_in_flight(self) -> bool:
        return self._state.is_running or (
            self._cycle_task is not None and not self._cycle_task.done()
        )

    def trigger(self, reason: str) -> bool:
        """Request a cycle in the background.

        Returns:
            True if a cycle was started; False if it was suppressed (offline)
            or dropped (a cycle is already in flight).
        """
        if not self._state.is_online:
            logger.debug("sync.trigger_suppressed_offline", reason=reason)
            sync_cycles_total.labels(outcome="suppressed").inc()
            return False
        if self._cycle_in_flight():
            logger.debug("sync.trigger_dropped", reason=reason)
            sync_cycles_total.labels(outcome="dropped").inc()
            return False
        self._cycle_task = asyncio.create_task(self.run_cycle(reason), name=f"sync_cycle_{reason}")
        return True

    async def force_sync(self) -> PublishResult | None:
        """Run a cycle now and wait for it.

        Returns:
            The PublishResult, or None if the cycle was skipped, dropped or
            failed before publishing.
        """
        if self._cycle_task is not None and not self._cycle_task.done():
            logger.info("sync.force_sync_dropped")
            return None
        return await self.run_cycle("manual")

    # ── Cycle ───────────────────────────────────────────────────────────────

    async def run_cycle(self, reason: str) -> PublishResult | None:
        """Run one full pipeline cycle.

        Returns:
            The PublishResult, or None when nothing was published.
        """
        if self._state.is_running:
            logger.debug("sync.cycle_dropped", reason=reason)
            sync_cycles_total.labels(outcome="dropped").inc()
            return None
        if not self._state.is_online:
            logger.debug("sync.cycle_suppressed_offline", reason=reason)
            sync_cycles_total.labels(outcome="suppressed").inc()
            return None

        identity = self._identity.current_identity()
        if identity is None:
            logger.debug("sync.cycle_skipped_unauthenticated", reason=reason)
            sync_cycles_total.labels(outcome="skipped").inc()
            return None

        if len(self._capture) == 0:
            logger.debug("sync.cycle_skipped_empty", reason=reason)
            sync_cycles_total.labels(outcome="skipped").inc()
            return None

        self._state.is_running = True
        self._state.phase = SyncPhase.RUNNING
        batch = self._capture.swap()
        logger.info("sync.cycle_started", reason=reason, events=len(batch), uid=identity.uid)

        try:
            now = self._clock()
            insight = aggregate(batch, self._capture.session_start, now=now)
            record = synthesize(identity, insight, self._baseline, now=now)
        except InvalidIdentityError as exc:
            logger.error("sync.identity_invalid", reason=reason, uid=identity.uid, error=str(exc))
            sync_cycles_total.labels(outcome="abandoned").inc()
            self._abandon()
            self._finish()
            return None
        except Exception:
            logger.error("sync.cycle_error", reason=reason, exc_info=True)
            self._capture.requeue(batch)
            self._state.phase = SyncPhase.FAILED
            self._handle_failure(None, [])
            self._finish()
            return None

        try:
            result = await self._publisher.publish(record)
            if self._local_cache is not None:
                await self._local_cache.append(record.to_wire())
        except Exception:
            # Publisher reports per-sink errors itself; this is a pipeline fault
            logger.error("sync.cycle_error", reason=reason, exc_info=True)
            self._capture.requeue(batch)
            self._state.phase = SyncPhase.FAILED
            self._handle_failure(None, [])
            self._finish()
            return None

        self._complete(record, result, reason)
        self._finish()
        return result

    async def _redeliver(self) -> PublishResult | None:
        """Re-send the pending record to the sinks that failed it."""
        record, sinks = self._pending_record, list(self._pending_sinks)
        if record is None:
            return None

        self._state.is_running = True
        self._state.phase = SyncPhase.RUNNING
        logger.info("sync.redelivery_started", record_id=record.id, sinks=sinks)
        try:
            result = await self._publisher.publish(record, sinks=sinks)
        except Exception:
            logger.error("sync.redelivery_error", record_id=record.id, exc_info=True)
            self._state.phase = SyncPhase.FAILED
            self._handle_failure(record, sinks)
            self._finish()
            return None

        self._complete(record, result, "retry")
        self._finish()
        return result

    def _complete(self, record: CustomerValueRecord, result: PublishResult, reason: str) -> None:
        self._state.last_result = result
        if result.ok:
            self._state.phase = SyncPhase.SUCCEEDED
            self._state.retry_attempts = 0
            self._state.last_sync_time = self._clock()
            self._pending_record = None
            self._pending_sinks = []
            self._cancel_retry()
            sync_retry_attempts.set(0)
            sync_cycles_total.labels(outcome="succeeded").inc()
            logger.info("sync.cycle_completed", reason=reason, record_id=record.id, clv=record.clv)
        else:
            self._state.phase = SyncPhase.FAILED
            logger.warning(
                "sync.cycle_partial_failure",
                reason=reason,
                record_id=record.id,
                failed_sinks=result.failed_sinks,
            )
            self._handle_failure(record, result.failed_sinks)

    def _finish(self) -> None:
        self._state.is_running = False
        self._state.phase = SyncPhase.IDLE

    # ── Retry ───────────────────────────────────────────────────────────────

    def _handle_failure(self, record: CustomerValueRecord | None, failed_sinks: list[str]) -> None:
        sync_cycles_total.labels(outcome="failed").inc()
        self._pending_record = record
        self._pending_sinks = list(failed_sinks)
        self._state.retry_attempts += 1
        attempt = self._state.retry_attempts

        if attempt >= self._max_retries:
            logger.error("sync.retries_exhausted", attempts=self._max_retries)
            self._abandon()
            return

        sync_retry_attempts.set(attempt)
        delay = self._retry_base_delay * attempt
        logger.info("sync.retry_scheduled", attempt=attempt, delay_seconds=delay)
        self._schedule_retry(delay)

    def _abandon(self) -> None:
        self._state.retry_attempts = 0
        self._pending_record = None
        self._pending_sinks = []
        self._cancel_retry()
        sync_retry_attempts.set(0)

    def _schedule_retry(self, delay: float) -> None:
        self._cancel_retry()
        self._retry_task = asyncio.create_task(self._retry_after(delay), name="sync_retry")

    def _cancel_retry(self) -> None:
        if self._retry_task is not None and not self._retry_task.done():
            self._retry_task.cancel()
        self._retry_task = None

    async def _retry_after(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logger.debug("sync.retry_cancelled")
            return
        self._retry_task = None

        if not self._state.is_online or self._cycle_in_flight():
            logger.info("sync.retry_skipped", online=self._state.is_online)
            return

        # Sink-only re-delivery is valid only while no newer events exist
        if self._pending_record is not None and len(self._capture) == 0:
            self._cycle_task = asyncio.create_task(self._redeliver(), name="sync_redelivery")
        else:
            self._cycle_task = asyncio.create_task(self.run_cycle("retry"), name="sync_cycle_retry")
