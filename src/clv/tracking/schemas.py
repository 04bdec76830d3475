"""Pydantic schemas for the activity-to-record sync pipeline.

Defines all structured types that flow through the pipeline:
- Events: ActivityType, ActivityEvent, ActivityBatch
- Derived views: EngagementInsight, Identity, CustomerValueRecord
- Publishing: SinkStatus, SinkOutcome, PublishResult
- Scheduling: SyncPhase, SyncState

Records exchanged with sinks are flat camelCase objects with ISO-8601
timestamps; ``CustomerValueRecord.to_wire()`` produces that shape.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# ── Enums ───────────────────────────────────────────────────────────────────


class ActivityType(str, Enum):
    """Known activity kinds. Any other string is accepted as-is."""

    PAGE_VIEW = "page_view"
    CLICK = "click"
    FORM_SUBMIT = "form_submit"
    LOGIN = "login"
    SIGNUP = "signup"
    SESSION_END = "session_end"
    CUSTOM = "custom"


class SinkStatus(str, Enum):
    """Per-sink outcome of a publish attempt."""

    WRITTEN = "written"
    SKIPPED = "skipped"
    FAILED = "failed"


class SyncPhase(str, Enum):
    """Scheduler state machine phases."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# ── Events ──────────────────────────────────────────────────────────────────


class ActivityEvent(BaseModel):
    """One observed interaction.

    ``payload`` is an opaque, unvalidated key/value map: whatever the caller
    attached to the event is carried through untouched.
    """

    model_config = ConfigDict(frozen=True)

    type: ActivityType | str
    timestamp: datetime = Field(default_factory=utcnow)
    session_id: str
    url: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def type_name(self) -> str:
        """The event type as a plain string, known or not."""
        return self.type.value if isinstance(self.type, ActivityType) else str(self.type)


class ActivityBatch(BaseModel):
    """Events collected between two sync points, oldest first."""

    model_config = ConfigDict(frozen=True)

    events: tuple[ActivityEvent, ...] = ()

    def __len__(self) -> int:
        return len(self.events)

    def __iter__(self):  # type: ignore[override]
        return iter(self.events)

    @property
    def is_empty(self) -> bool:
        return not self.events


# ── Derived Views ───────────────────────────────────────────────────────────


class EngagementInsight(BaseModel):
    """Aggregated view of one batch. Recomputed fresh on every cycle."""

    model_config = ConfigDict(frozen=True)

    total_activities: int = 0
    page_views: int = 0
    clicks: int = 0
    form_submissions: int = 0
    login_count: int = 0
    activity_types: dict[str, int] = Field(default_factory=dict)
    session_duration_ms: int = 0
    engagement_score: int = Field(default=0, ge=0, le=100)
    last_activity: datetime | None = None


class Identity(BaseModel):
    """The authenticated principal a record is synthesized for."""

    model_config = ConfigDict(frozen=True)

    uid: str
    email: str | None = None
    display_name: str | None = None
    provider: str = "unknown"


class CustomerValueRecord(BaseModel):
    """Denormalized customer value record replicated to both sinks.

    ``clv`` is a computed field: it is always the product of the three
    factors and cannot be set independently of them.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: str
    name: str
    email: str | None = None
    average_purchase_value: float = Field(ge=0)
    purchase_frequency: float = Field(ge=0)
    customer_lifespan: float = Field(ge=0)
    engagement_score: int = Field(default=0, ge=0, le=100)
    total_activities: int = 0
    session_duration_ms: int = 0
    last_updated: datetime = Field(default_factory=utcnow)
    source: str = "activity_tracking"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def clv(self) -> float:
        return self.average_purchase_value * self.purchase_frequency * self.customer_lifespan

    def to_wire(self) -> dict[str, Any]:
        """Flat camelCase dict with ISO-8601 timestamps."""
        return self.model_dump(mode="json", by_alias=True)


# ── Publishing ──────────────────────────────────────────────────────────────


class SinkOutcome(BaseModel):
    """What happened to a record at one sink."""

    status: SinkStatus
    reason: str | None = None


class PublishResult(BaseModel):
    """Per-sink outcomes of publishing one record."""

    record_id: str
    outcomes: dict[str, SinkOutcome] = Field(default_factory=dict)

    @property
    def failed_sinks(self) -> list[str]:
        return [
            name for name, outcome in self.outcomes.items()
            if outcome.status == SinkStatus.FAILED
        ]

    @property
    def ok(self) -> bool:
        return not self.failed_sinks


# ── Scheduling ──────────────────────────────────────────────────────────────


class SyncState(BaseModel):
    """Scheduling and retry bookkeeping, exposed read-only to observers."""

    is_running: bool = False
    phase: SyncPhase = SyncPhase.IDLE
    last_sync_time: datetime | None = None
    retry_attempts: int = 0
    is_online: bool = True
    last_result: PublishResult | None = None
