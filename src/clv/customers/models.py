"""Customer persistence models -- tables behind the HTTP API and the document sink.

Three SQLAlchemy models on the shared declarative Base:
- CustomerModel: Customer records with their CLV factors
- DocumentModel: Keyed JSON documents grouped by collection (document sink)
- AuthEventModel: Append-only log of login/signup events

Column types are portable between SQLite (development) and PostgreSQL.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Integer,
    PrimaryKeyConstraint,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.clv.core.database import Base


class CustomerModel(Base):
    """A customer and the three factors its lifetime value is derived from.

    ``clv`` is stored denormalized for sorting and aggregation, and is
    recomputed by the repository on every write.
    """

    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    email: Mapped[str | None] = mapped_column(String(300), nullable=True)
    average_purchase_value: Mapped[float] = mapped_column(Float, nullable=False)
    purchase_frequency: Mapped[float] = mapped_column(Float, nullable=False)
    customer_lifespan: Mapped[float] = mapped_column(Float, nullable=False)
    clv: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    user_id: Mapped[str | None] = mapped_column(String(200), nullable=True, index=True)
    engagement_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_activities: Mapped[int | None] = mapped_column(Integer, nullable=True)
    session_duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    source: Mapped[str] = mapped_column(String(50), nullable=False, default="web_app")
    ip_address: Mapped[str | None] = mapped_column(String(100), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    last_updated: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class DocumentModel(Base):
    """A schemaless document addressed by (collection, key)."""

    __tablename__ = "documents"
    __table_args__ = (
        PrimaryKeyConstraint("collection", "key", name="pk_documents"),
    )

    collection: Mapped[str] = mapped_column(String(100), nullable=False)
    key: Mapped[str] = mapped_column(String(200), nullable=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class AuthEventModel(Base):
    """One login or signup, as reported by a client."""

    __tablename__ = "auth_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    email: Mapped[str | None] = mapped_column(String(300), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    event_type: Mapped[str] = mapped_column(String(20), nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False, default="unknown")
    session_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    platform: Mapped[str | None] = mapped_column(String(100), nullable=True)
    device_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    browser_name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(100), nullable=True)
    current_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    is_new_user: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
