"""Customer persistence repositories -- async CRUD for customers, documents and auth events.

Provides three repositories with the session_factory callable pattern:
- CustomerRepository: customer CRUD, pagination, CLV analytics, top-N ranking
- DocumentRepository: merge-upsert/read of keyed JSON documents
- AuthEventRepository: append-only auth event log with statistics and export

CLV is always recomputed from its three factors on write; callers can never
store a value that disagrees with them.
"""

from __future__ import annotations

import math
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.clv.customers.models import AuthEventModel, CustomerModel, DocumentModel
from src.clv.customers.schemas import (
    AuthEventCreate,
    AuthEventRead,
    AuthStatistics,
    CLVAggregates,
    CustomerAnalytics,
    CustomerCreate,
    CustomerPage,
    CustomerRead,
    CustomerUpdate,
    Pagination,
    RecentCustomer,
    UserAnalytics,
)

logger = structlog.get_logger(__name__)

SessionFactory = Callable[..., AsyncGenerator[AsyncSession, None]]


class CustomerExistsError(Exception):
    """A customer with the given id is already stored."""

    def __init__(self, customer_id: str) -> None:
        super().__init__(f"Customer with ID '{customer_id}' already exists")
        self.customer_id = customer_id


def compute_clv(
    average_purchase_value: float,
    purchase_frequency: float,
    customer_lifespan: float,
) -> float:
    return average_purchase_value * purchase_frequency * customer_lifespan


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_customer(model: CustomerModel) -> CustomerRead:
    """Convert CustomerModel to CustomerRead schema."""
    return CustomerRead.model_validate(model)


def _model_to_auth_event(model: AuthEventModel) -> AuthEventRead:
    """Convert AuthEventModel to AuthEventRead schema."""
    return AuthEventRead.model_validate(model)


# ── Customers ───────────────────────────────────────────────────────────────


class CustomerRepository:
    """Async CRUD and analytics for customers.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def create(
        self,
        data: CustomerCreate,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> CustomerRead:
        """Create a customer.

        Args:
            data: CustomerCreate schema.
            ip_address: Client address recorded as metadata.
            user_agent: Client user agent recorded as metadata.

        Returns:
            CustomerRead with the computed CLV.

        Raises:
            CustomerExistsError: If the id is already taken.
        """
        async for session in self._session_factory():
            existing = await session.get(CustomerModel, data.id)
            if existing is not None:
                raise CustomerExistsError(data.id)

            now = _utcnow()
            model = CustomerModel(
                id=data.id,
                name=data.name,
                email=data.email,
                average_purchase_value=data.average_purchase_value,
                purchase_frequency=data.purchase_frequency,
                customer_lifespan=data.customer_lifespan,
                clv=compute_clv(
                    data.average_purchase_value,
                    data.purchase_frequency,
                    data.customer_lifespan,
                ),
                user_id=data.user_id,
                engagement_score=data.engagement_score,
                total_activities=data.total_activities,
                session_duration_ms=data.session_duration_ms,
                source=data.source,
                ip_address=ip_address,
                user_agent=user_agent,
                last_updated=data.last_updated,
                created_at=now,
                updated_at=now,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            logger.info("customers.created", customer_id=model.id, clv=model.clv)
            return _model_to_customer(model)

    async def get(self, customer_id: str) -> CustomerRead | None:
        async for session in self._session_factory():
            model = await session.get(CustomerModel, customer_id)
            if model is None:
                return None
            return _model_to_customer(model)

    async def list_customers(
        self,
        user_id: str | None = None,
        limit: int = 50,
        page: int = 1,
    ) -> CustomerPage:
        """List customers newest first, optionally filtered by owning user.

        Args:
            user_id: Only return customers created by this user.
            limit: Page size.
            page: 1-based page number.

        Returns:
            CustomerPage with the requested slice and pagination totals.
        """
        async for session in self._session_factory():
            filters = []
            if user_id:
                filters.append(CustomerModel.user_id == user_id)

            total = await session.scalar(
                select(func.count()).select_from(CustomerModel).where(*filters)
            )
            stmt = (
                select(CustomerModel)
                .where(*filters)
                .order_by(CustomerModel.created_at.desc(), CustomerModel.id)
                .limit(limit)
                .offset((page - 1) * limit)
            )
            result = await session.execute(stmt)
            total = total or 0
            return CustomerPage(
                customers=[_model_to_customer(m) for m in result.scalars().all()],
                pagination=Pagination(
                    total=total,
                    page=page,
                    limit=limit,
                    pages=math.ceil(total / limit) if limit else 0,
                ),
            )

    async def update(self, customer_id: str, data: CustomerUpdate) -> CustomerRead | None:
        """Apply a partial update and recompute CLV.

        Returns:
            The updated CustomerRead, or None if the customer does not exist.
        """
        async for session in self._session_factory():
            model = await session.get(CustomerModel, customer_id)
            if model is None:
                return None

            for field, value in data.model_dump(exclude_unset=True).items():
                if value is None and field in (
                    "name",
                    "average_purchase_value",
                    "purchase_frequency",
                    "customer_lifespan",
                    "source",
                ):
                    continue
                setattr(model, field, value)

            model.clv = compute_clv(
                model.average_purchase_value,
                model.purchase_frequency,
                model.customer_lifespan,
            )
            model.updated_at = _utcnow()
            await session.commit()
            await session.refresh(model)
            logger.info("customers.updated", customer_id=customer_id, clv=model.clv)
            return _model_to_customer(model)

    async def delete(self, customer_id: str) -> bool:
        """Delete a customer. Returns False if it did not exist."""
        async for session in self._session_factory():
            result = await session.execute(
                delete(CustomerModel).where(CustomerModel.id == customer_id)
            )
            await session.commit()
            deleted = (result.rowcount or 0) > 0
            if deleted:
                logger.info("customers.deleted", customer_id=customer_id)
            return deleted

    async def analytics(self) -> CustomerAnalytics:
        """Aggregate CLV across all customers plus the 10 most recent."""
        async for session in self._session_factory():
            row = (
                await session.execute(
                    select(
                        func.count(CustomerModel.id),
                        func.avg(CustomerModel.clv),
                        func.sum(CustomerModel.clv),
                        func.max(CustomerModel.clv),
                        func.min(CustomerModel.clv),
                    )
                )
            ).one()
            total, avg_clv, sum_clv, max_clv, min_clv = row

            recent = await session.execute(
                select(CustomerModel)
                .order_by(CustomerModel.created_at.desc(), CustomerModel.id)
                .limit(10)
            )
            return CustomerAnalytics(
                total_customers=total or 0,
                analytics=CLVAggregates(
                    average_clv=float(avg_clv or 0),
                    total_clv=float(sum_clv or 0),
                    max_clv=float(max_clv or 0),
                    min_clv=float(min_clv or 0),
                ),
                recent_customers=[
                    RecentCustomer(id=m.id, name=m.name, clv=m.clv, created_at=m.created_at)
                    for m in recent.scalars().all()
                ],
            )

    async def user_analytics(self, user_id: str) -> UserAnalytics:
        """Totals and average CLV over the customers one user created."""
        async for session in self._session_factory():
            result = await session.execute(
                select(CustomerModel)
                .where(CustomerModel.user_id == user_id)
                .order_by(CustomerModel.created_at.desc(), CustomerModel.id)
            )
            customers = [_model_to_customer(m) for m in result.scalars().all()]
            total_clv = sum(c.clv for c in customers)
            return UserAnalytics(
                total_customers=len(customers),
                total_clv=total_clv,
                average_clv=total_clv / len(customers) if customers else 0.0,
                customers=customers,
            )

    async def top_by_clv(self, n: int = 5) -> list[CustomerRead]:
        """The ``n`` customers with the highest CLV, highest first."""
        async for session in self._session_factory():
            result = await session.execute(
                select(CustomerModel)
                .order_by(CustomerModel.clv.desc(), CustomerModel.id)
                .limit(n)
            )
            return [_model_to_customer(m) for m in result.scalars().all()]


# ── Documents ───────────────────────────────────────────────────────────────


class DocumentRepository:
    """Keyed JSON documents grouped into named collections.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def upsert(self, collection: str, key: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Merge ``fields`` into the stored document, creating it if absent.

        Keys not present in ``fields`` keep their stored values. Applying the
        same fields twice leaves the document unchanged.

        Returns:
            The merged document.
        """
        async for session in self._session_factory():
            model = await session.get(DocumentModel, (collection, key))
            if model is None:
                model = DocumentModel(collection=collection, key=key, data=dict(fields))
                session.add(model)
            else:
                # Reassign so the JSON column is flagged dirty
                model.data = {**(model.data or {}), **fields}
            await session.commit()
            return dict(model.data)

    async def read(self, collection: str, key: str) -> dict[str, Any] | None:
        async for session in self._session_factory():
            model = await session.get(DocumentModel, (collection, key))
            if model is None:
                return None
            return dict(model.data)


# ── Auth Events ─────────────────────────────────────────────────────────────


class AuthEventRepository:
    """Append-only authentication event log.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def log(self, data: AuthEventCreate) -> AuthEventRead:
        """Persist one auth event. A missing timestamp defaults to now."""
        async for session in self._session_factory():
            model = AuthEventModel(
                user_id=data.user_id,
                email=data.email,
                display_name=data.display_name,
                event_type=data.event_type,
                provider=data.provider,
                session_id=data.session_id,
                user_agent=data.user_agent,
                platform=data.platform,
                device_type=data.device_type,
                browser_name=data.browser_name,
                ip_address=data.ip_address,
                current_url=data.current_url,
                is_new_user=data.is_new_user,
                timestamp=data.timestamp or _utcnow(),
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            logger.info(
                "auth_events.logged",
                user_id=model.user_id,
                event_type=model.event_type,
                provider=model.provider,
            )
            return _model_to_auth_event(model)

    async def statistics(self) -> AuthStatistics:
        """Counts by event type, provider and device class."""
        async for session in self._session_factory():

            def _count_where(condition):
                return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

            row = (
                await session.execute(
                    select(
                        func.count(AuthEventModel.id),
                        _count_where(AuthEventModel.event_type == "signup"),
                        _count_where(AuthEventModel.event_type == "login"),
                        _count_where(AuthEventModel.provider == "google"),
                        _count_where(AuthEventModel.provider == "email"),
                        _count_where(AuthEventModel.device_type == "mobile"),
                        _count_where(AuthEventModel.device_type == "desktop"),
                        func.count(func.distinct(AuthEventModel.user_id)),
                    )
                )
            ).one()
            return AuthStatistics(
                total_events=row[0] or 0,
                signups=row[1],
                logins=row[2],
                google_auth=row[3],
                email_auth=row[4],
                mobile_users=row[5],
                desktop_users=row[6],
                unique_users=row[7] or 0,
                last_updated=_utcnow(),
            )

    async def recent(self, limit: int = 10) -> list[AuthEventRead]:
        """Most recent events first."""
        async for session in self._session_factory():
            result = await session.execute(
                select(AuthEventModel)
                .order_by(AuthEventModel.timestamp.desc(), AuthEventModel.id.desc())
                .limit(limit)
            )
            return [_model_to_auth_event(m) for m in result.scalars().all()]

    async def list_all(self) -> list[AuthEventRead]:
        """Every event in chronological order, for export."""
        async for session in self._session_factory():
            result = await session.execute(
                select(AuthEventModel).order_by(AuthEventModel.timestamp, AuthEventModel.id)
            )
            return [_model_to_auth_event(m) for m in result.scalars().all()]
