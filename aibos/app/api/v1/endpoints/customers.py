from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from aibos.app.api.deps import TenantContext, require_permission
from aibos.app.core.database import get_db
from aibos.app.models.customer import Customer, PartyStatus
from aibos.app.schemas.parties import (
    CustomerCreate,
    CustomerDetailOut,
    CustomerOut,
    CustomerUpdate,
)
from aibos.app.services import parties as party_service

router = APIRouter()


@router.get("", response_model=list[CustomerOut])
def list_customers(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("customer:read")),
    status_filter: PartyStatus | None = Query(None, alias="status"),
    search: str | None = Query(None, max_length=200),
) -> list[Customer]:
    return party_service.list_customers(
        db, ctx.require_company().id, status=status_filter, search=search
    )


@router.post("", response_model=CustomerOut, status_code=status.HTTP_201_CREATED)
def create_customer(
    body: CustomerCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("customer:write")),
) -> Customer:
    customer = party_service.create_customer(
        db, ctx.actor, company=ctx.require_company(), data=body.model_dump()
    )
    db.commit()
    db.refresh(customer)
    return customer


@router.get("/{customer_id}", response_model=CustomerDetailOut)
def get_customer(
    customer_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("customer:read")),
) -> CustomerDetailOut:
    customer = party_service.get_customer(db, ctx.require_company().id, customer_id)
    return CustomerDetailOut(
        **CustomerOut.model_validate(customer).model_dump(),
        outstanding_balance=party_service.customer_outstanding(db, customer.id),
    )


@router.patch("/{customer_id}", response_model=CustomerOut)
def update_customer(
    customer_id: UUID,
    body: CustomerUpdate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("customer:write")),
) -> Customer:
    customer = party_service.update_customer(
        db,
        ctx.actor,
        company_id=ctx.require_company().id,
        customer_id=customer_id,
        data=body.model_dump(exclude_unset=True),
    )
    db.commit()
    db.refresh(customer)
    return customer
