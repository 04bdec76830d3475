"""Insight aggregation -- reduce an activity batch to an engagement snapshot.

Pure function with no I/O. Scoring weights:
- click: 5 points
- form submission: 15 points
- page view: 3 points
- each whole minute of session time: 1 point

The total is capped at 100.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime

from src.clv.tracking.schemas import (
    ActivityBatch,
    ActivityType,
    EngagementInsight,
    utcnow,
)

CLICK_POINTS = 5
FORM_SUBMIT_POINTS = 15
PAGE_VIEW_POINTS = 3
MAX_ENGAGEMENT_SCORE = 100

_LOGIN_TYPES = {ActivityType.LOGIN.value, ActivityType.SIGNUP.value}


def engagement_score(
    clicks: int,
    form_submissions: int,
    page_views: int,
    session_duration_ms: int,
) -> int:
    """Weighted engagement score in [0, 100]."""
    raw = (
        clicks * CLICK_POINTS
        + form_submissions * FORM_SUBMIT_POINTS
        + page_views * PAGE_VIEW_POINTS
        + max(0, session_duration_ms) // 60_000
    )
    return max(0, min(MAX_ENGAGEMENT_SCORE, raw))


def aggregate(
    batch: ActivityBatch,
    session_start: datetime,
    now: datetime | None = None,
) -> EngagementInsight:
    """Summarize a batch.

    Args:
        batch: Events to summarize.
        session_start: When the current session began.
        now: Reference time for the session duration; defaults to now.

    Returns:
        EngagementInsight. An empty batch yields the all-zero insight.
    """
    if batch.is_empty:
        return EngagementInsight()

    now = now or utcnow()
    types = Counter(event.type_name for event in batch)
    page_views = types.get(ActivityType.PAGE_VIEW.value, 0)
    clicks = types.get(ActivityType.CLICK.value, 0)
    form_submissions = types.get(ActivityType.FORM_SUBMIT.value, 0)
    session_duration_ms = max(0, int((now - session_start).total_seconds() * 1000))

    return EngagementInsight(
        total_activities=len(batch),
        page_views=page_views,
        clicks=clicks,
        form_submissions=form_submissions,
        login_count=sum(types.get(t, 0) for t in _LOGIN_TYPES),
        activity_types=dict(types),
        session_duration_ms=session_duration_ms,
        engagement_score=engagement_score(
            clicks, form_submissions, page_views, session_duration_ms
        ),
        last_activity=max(event.timestamp for event in batch),
    )
