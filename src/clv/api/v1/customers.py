"""REST API endpoints for customers and CLV analytics.

Provides customer CRUD with pagination, a top-N ranking by CLV, the legacy
query-string create endpoint (/add-customer), and aggregate analytics.
Responses use camelCase keys and a ``status`` envelope; errors are raised
as HTTPException with a ``detail`` message.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import ValidationError

from src.clv.api.deps import get_customer_repository
from src.clv.customers.repository import CustomerExistsError, CustomerRepository
from src.clv.customers.schemas import CustomerCreate, CustomerRead, CustomerUpdate

router = APIRouter(tags=["customers"])

_REQUIRED_FIELDS = (
    "id",
    "name",
    "averagePurchaseValue",
    "purchaseFrequency",
    "customerLifespan",
)


def _dump(customer: CustomerRead) -> dict[str, Any]:
    return customer.model_dump(mode="json", by_alias=True)


def _client_metadata(request: Request) -> dict[str, str | None]:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


async def _create(
    repo: CustomerRepository, data: CustomerCreate, request: Request
) -> dict[str, Any]:
    try:
        customer = await repo.create(data, **_client_metadata(request))
    except CustomerExistsError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return {
        "status": "success",
        "message": f"Customer '{customer.name}' added successfully",
        "customer": _dump(customer),
    }


# ── Customers ────────────────────────────────────────────────────────────────


@router.get("/customers")
async def list_customers(
    user_id: str | None = Query(default=None, alias="userId"),
    limit: int = Query(default=50, ge=1, le=500),
    page: int = Query(default=1, ge=1),
    repo: CustomerRepository = Depends(get_customer_repository),
):
    """List customers newest first, optionally only those a user created."""
    result = await repo.list_customers(user_id=user_id, limit=limit, page=page)
    return {"status": "success", **result.model_dump(mode="json", by_alias=True)}


@router.get("/customers/top")
async def top_customers(
    n: int = Query(default=5, ge=1, le=100),
    repo: CustomerRepository = Depends(get_customer_repository),
):
    """The ``n`` customers with the highest CLV."""
    customers = await repo.top_by_clv(n)
    return {"status": "success", "customers": [_dump(c) for c in customers]}


@router.post("/customers", status_code=status.HTTP_201_CREATED)
async def create_customer(
    body: CustomerCreate,
    request: Request,
    repo: CustomerRepository = Depends(get_customer_repository),
):
    """Create a customer; 409 if the id is taken."""
    return await _create(repo, body, request)


@router.get("/customers/{customer_id}")
async def get_customer(
    customer_id: str,
    repo: CustomerRepository = Depends(get_customer_repository),
):
    customer = await repo.get(customer_id)
    if customer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
    return {"status": "success", "customer": _dump(customer)}


@router.put("/customers/{customer_id}")
async def update_customer(
    customer_id: str,
    body: CustomerUpdate,
    repo: CustomerRepository = Depends(get_customer_repository),
):
    """Partially update a customer; CLV is recomputed."""
    customer = await repo.update(customer_id, body)
    if customer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
    return {
        "status": "success",
        "message": "Customer updated successfully",
        "customer": _dump(customer),
    }


@router.delete("/customers/{customer_id}")
async def delete_customer(
    customer_id: str,
    repo: CustomerRepository = Depends(get_customer_repository),
):
    deleted = await repo.delete(customer_id)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
    return {"status": "success", "message": "Customer deleted successfully"}


@router.get("/add-customer")
async def add_customer_from_query(
    request: Request,
    repo: CustomerRepository = Depends(get_customer_repository),
):
    """Create a customer from query-string parameters.

    Kept for clients that cannot send a JSON body. Validation matches
    POST /customers.
    """
    params = dict(request.query_params)
    missing = [field for field in _REQUIRED_FIELDS if not params.get(field)]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Missing required fields: {', '.join(_REQUIRED_FIELDS)}",
        )

    try:
        data = CustomerCreate.model_validate(params)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid customer fields: {exc.error_count()} error(s)",
        ) from exc
    return await _create(repo, data, request)


# ── Analytics ────────────────────────────────────────────────────────────────


@router.get("/analytics")
async def analytics(repo: CustomerRepository = Depends(get_customer_repository)):
    """Aggregate CLV figures across all customers and the 10 most recent."""
    result = await repo.analytics()
    return {
        "status": "success",
        "analytics": result.model_dump(mode="json", by_alias=True),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/user-analytics")
async def user_analytics(
    user_id: str | None = Query(default=None, alias="userId"),
    repo: CustomerRepository = Depends(get_customer_repository),
):
    """CLV totals for the customers one user created; 400 without userId."""
    if not user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="userId is required")
    result = await repo.user_analytics(user_id)
    return {"status": "success", "analytics": result.model_dump(mode="json", by_alias=True)}
