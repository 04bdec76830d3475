"""Record synthesis -- turn an identity and an engagement insight into a CLV record.

Each factor starts from a baseline, is scaled by the engagement score, rounded,
and then receives flat bonuses for strong signals::

    factor = round(base * (1 + score / 100 * weight)) + bonus

Two baselines are provided:
- ACTIVITY_TRACKING (default): 150 / 8 / 2, all factors floored,
  +50 value on any form submission, +1 lifespan for sessions over 5 minutes
- DATA_SYNC: 200 / 10 / 2.5, lifespan kept to one decimal,
  +100 value for more than 2 form submissions, +0.5 lifespan for more than
  5 logins

The result is deterministic for fixed inputs and a pinned ``now``. It is a
heuristic, not a financial model.
"""

from __future__ import annotations

import math
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

import structlog
from pydantic import BaseModel, ConfigDict

from src.clv.tracking.schemas import (
    CustomerValueRecord,
    EngagementInsight,
    Identity,
    utcnow,
)
from src.clv.tracking.sinks.base import TrackingError

logger = structlog.get_logger(__name__)


class InvalidIdentityError(TrackingError):
    """The identity cannot produce a record. Retrying will not help."""


class Rounding(str, Enum):
    FLOOR = "floor"
    ONE_DECIMAL = "one_decimal"

    def apply(self, value: float) -> float:
        if self is Rounding.FLOOR:
            return float(math.floor(value))
        return float(Decimal(repr(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


class ValueBaseline(BaseModel):
    """Baseline factors, engagement weights, rounding and bonus rules."""

    model_config = ConfigDict(frozen=True)

    name: str
    base_value: float
    base_frequency: float
    base_lifespan: float
    value_weight: float
    frequency_weight: float
    lifespan_weight: float
    value_rounding: Rounding = Rounding.FLOOR
    frequency_rounding: Rounding = Rounding.FLOOR
    lifespan_rounding: Rounding = Rounding.FLOOR

    # Bonuses apply when the insight is strictly above the threshold
    form_bonus_threshold: int = 0
    form_bonus_value: float = 0.0
    session_bonus_threshold_ms: int | None = None
    session_bonus_lifespan: float = 0.0
    login_bonus_threshold: int | None = None
    login_bonus_lifespan: float = 0.0


ACTIVITY_TRACKING = ValueBaseline(
    name="activity_tracking",
    base_value=150,
    base_frequency=8,
    base_lifespan=2,
    value_weight=0.5,
    frequency_weight=0.3,
    lifespan_weight=0.2,
    form_bonus_threshold=0,
    form_bonus_value=50,
    session_bonus_threshold_ms=300_000,
    session_bonus_lifespan=1,
)

DATA_SYNC = ValueBaseline(
    name="data_sync",
    base_value=200,
    base_frequency=10,
    base_lifespan=2.5,
    value_weight=0.4,
    frequency_weight=0.3,
    lifespan_weight=0.2,
    lifespan_rounding=Rounding.ONE_DECIMAL,
    form_bonus_threshold=2,
    form_bonus_value=100,
    login_bonus_threshold=5,
    login_bonus_lifespan=0.5,
)

BASELINES: dict[str, ValueBaseline] = {
    ACTIVITY_TRACKING.name: ACTIVITY_TRACKING,
    DATA_SYNC.name: DATA_SYNC,
}


def get_baseline(name: str) -> ValueBaseline:
    """Look up a baseline by name.

    Raises:
        ValueError: If no baseline has that name.
    """
    try:
        return BASELINES[name]
    except KeyError:
        raise ValueError(
            f"Unknown value formula '{name}'. Expected one of: {', '.join(BASELINES)}"
        ) from None


def _display_name(identity: Identity) -> str:
    if identity.display_name:
        return identity.display_name
    if identity.email:
        return identity.email.split("@", 1)[0]
    raise InvalidIdentityError(
        f"Identity {identity.uid!r} has neither a display name nor an email"
    )


def synthesize(
    identity: Identity,
    insight: EngagementInsight,
    baseline: ValueBaseline = ACTIVITY_TRACKING,
    now: datetime | None = None,
    source: str | None = None,
) -> CustomerValueRecord:
    """Build the customer value record for one identity.

    Args:
        identity: Authenticated principal; ``uid`` becomes the record id.
        insight: Engagement snapshot of the current batch.
        baseline: Formula parameters.
        now: Timestamp for ``last_updated``; defaults to now.
        source: Provenance tag; defaults to the baseline name.

    Returns:
        CustomerValueRecord whose ``clv`` is the product of its factors.

    Raises:
        InvalidIdentityError: If ``uid`` is empty, or both name and email are.
    """
    if not identity.uid:
        raise InvalidIdentityError("Identity has no uid")
    name = _display_name(identity)

    multiplier = insight.engagement_score / 100
    value = baseline.value_rounding.apply(
        baseline.base_value * (1 + multiplier * baseline.value_weight)
    )
    frequency = baseline.frequency_rounding.apply(
        baseline.base_frequency * (1 + multiplier * baseline.frequency_weight)
    )
    lifespan = baseline.lifespan_rounding.apply(
        baseline.base_lifespan * (1 + multiplier * baseline.lifespan_weight)
    )

    if insight.form_submissions > baseline.form_bonus_threshold:
        value += baseline.form_bonus_value
    if (
        baseline.session_bonus_threshold_ms is not None
        and insight.session_duration_ms > baseline.session_bonus_threshold_ms
    ):
        lifespan += baseline.session_bonus_lifespan
    if (
        baseline.login_bonus_threshold is not None
        and insight.login_count > baseline.login_bonus_threshold
    ):
        lifespan += baseline.login_bonus_lifespan

    record = CustomerValueRecord(
        id=identity.uid,
        name=name,
        email=identity.email,
        average_purchase_value=value,
        purchase_frequency=frequency,
        customer_lifespan=lifespan,
        engagement_score=insight.engagement_score,
        total_activities=insight.total_activities,
        session_duration_ms=insight.session_duration_ms,
        last_updated=now or utcnow(),
        source=source or baseline.name,
    )
    logger.debug(
        "synthesizer.record_built",
        record_id=record.id,
        clv=record.clv,
        baseline=baseline.name,
    )
    return record
