"""Pydantic schemas for the customer and auth-event HTTP API.

Defines:
- Customers: CustomerCreate, CustomerUpdate, CustomerRead, Pagination, CustomerPage
- Analytics: CLVAggregates, RecentCustomer, CustomerAnalytics, UserAnalytics
- Auth events: AuthEventCreate, AuthEventRead, AuthStatistics

All schemas serialize with camelCase aliases so the JSON shape matches the
records the tracking pipeline publishes; snake_case names are accepted on
input as well.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base schema with camelCase wire names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ── Customers ───────────────────────────────────────────────────────────────


class CustomerCreate(CamelModel):
    """Schema for creating a customer.

    Unknown keys (for example a client-computed ``clv``) are ignored; the
    stored value is always recomputed from the three factors.
    """

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    email: str | None = None
    average_purchase_value: float = Field(ge=0)
    purchase_frequency: float = Field(ge=0)
    customer_lifespan: float = Field(ge=0)
    user_id: str | None = None
    engagement_score: int | None = Field(default=None, ge=0, le=100)
    total_activities: int | None = None
    session_duration_ms: int | None = None
    last_updated: datetime | None = None
    source: str = "web_app"


class CustomerUpdate(CamelModel):
    """Partial update. Only fields that are set are applied."""

    name: str | None = None
    email: str | None = None
    average_purchase_value: float | None = Field(default=None, ge=0)
    purchase_frequency: float | None = Field(default=None, ge=0)
    customer_lifespan: float | None = Field(default=None, ge=0)
    user_id: str | None = None
    engagement_score: int | None = Field(default=None, ge=0, le=100)
    total_activities: int | None = None
    session_duration_ms: int | None = None
    last_updated: datetime | None = None
    source: str | None = None


class CustomerRead(CamelModel):
    """A persisted customer."""

    id: str
    name: str
    email: str | None = None
    average_purchase_value: float
    purchase_frequency: float
    customer_lifespan: float
    clv: float
    user_id: str | None = None
    engagement_score: int | None = None
    total_activities: int | None = None
    session_duration_ms: int | None = None
    source: str = "web_app"
    last_updated: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Pagination(CamelModel):
    total: int
    page: int
    limit: int
    pages: int


class CustomerPage(CamelModel):
    customers: list[CustomerRead] = Field(default_factory=list)
    pagination: Pagination


# ── Analytics ───────────────────────────────────────────────────────────────


class CLVAggregates(CamelModel):
    """Aggregate CLV figures. All zero when there are no customers."""

    average_clv: float = Field(default=0.0, alias="averageCLV")
    total_clv: float = Field(default=0.0, alias="totalCLV")
    max_clv: float = Field(default=0.0, alias="maxCLV")
    min_clv: float = Field(default=0.0, alias="minCLV")


class RecentCustomer(CamelModel):
    id: str
    name: str
    clv: float
    created_at: datetime | None = None


class CustomerAnalytics(CamelModel):
    total_customers: int = 0
    analytics: CLVAggregates = Field(default_factory=CLVAggregates)
    recent_customers: list[RecentCustomer] = Field(default_factory=list)


class UserAnalytics(CamelModel):
    total_customers: int = 0
    total_clv: float = Field(default=0.0, alias="totalCLV")
    average_clv: float = Field(default=0.0, alias="averageCLV")
    customers: list[CustomerRead] = Field(default_factory=list)


# ── Auth Events ─────────────────────────────────────────────────────────────


class AuthEventCreate(CamelModel):
    """A login or signup reported by a client."""

    user_id: str = Field(min_length=1)
    email: str | None = None
    display_name: str | None = None
    event_type: str = Field(pattern="^(login|signup)$")
    provider: str = "unknown"
    session_id: str | None = None
    user_agent: str | None = None
    platform: str | None = None
    device_type: str | None = None
    browser_name: str | None = None
    ip_address: str | None = None
    current_url: str | None = None
    is_new_user: bool = False
    timestamp: datetime | None = None
    source: str | None = None


class AuthEventRead(AuthEventCreate):
    id: int
    timestamp: datetime


class AuthStatistics(CamelModel):
    total_events: int = 0
    signups: int = 0
    logins: int = 0
    google_auth: int = 0
    email_auth: int = 0
    mobile_users: int = 0
    desktop_users: int = 0
    unique_users: int = 0
    last_updated: datetime
