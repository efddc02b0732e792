from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from aibos.app.api.deps import TenantContext, require_permission
from aibos.app.core.database import get_db
from aibos.app.models.customer import PartyStatus
from aibos.app.models.supplier import Supplier
from aibos.app.schemas.parties import SupplierCreate, SupplierOut, SupplierUpdate
from aibos.app.services import parties as party_service

router = APIRouter()


@router.get("", response_model=list[SupplierOut])
def list_suppliers(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("supplier:read")),
    status_filter: PartyStatus | None = Query(None, alias="status"),
    search: str | None = Query(None, max_length=200),
) -> list[Supplier]:
    return party_service.list_suppliers(
        db, ctx.require_company().id, status=status_filter, search=search
    )


@router.post("", response_model=SupplierOut, status_code=status.HTTP_201_CREATED)
def create_supplier(
    body: SupplierCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("supplier:write")),
) -> Supplier:
    supplier = party_service.create_supplier(
        db, ctx.actor, company=ctx.require_company(), data=body.model_dump()
    )
    db.commit()
    db.refresh(supplier)
    return supplier


@router.get("/{supplier_id}", response_model=SupplierOut)
def get_supplier(
    supplier_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("supplier:read")),
) -> Supplier:
    return party_service.get_supplier(db, ctx.require_company().id, supplier_id)


@router.patch("/{supplier_id}", response_model=SupplierOut)
def update_supplier(
    supplier_id: UUID,
    body: SupplierUpdate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("supplier:write")),
) -> Supplier:
    supplier = party_service.update_supplier(
        db,
        ctx.actor,
        company_id=ctx.require_company().id,
        supplier_id=supplier_id,
        data=body.model_dump(exclude_unset=True),
    )
    db.commit()
    db.refresh(supplier)
    return supplier
