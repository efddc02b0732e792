from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from aibos.app.api.deps import TenantContext, require_permission
from aibos.app.core.database import get_db
from aibos.app.models.bill import Bill, BillStatus
from aibos.app.schemas.bills import BillCreate, BillDetailOut, BillOut, BillPage
from aibos.app.schemas.common import page_meta
from aibos.app.schemas.invoices import VoidIn
from aibos.app.services import bills as bill_service

router = APIRouter()


@router.get("", response_model=BillPage)
def list_bills(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("bill:read")),
    supplier_id: UUID | None = Query(None),
    status_filter: BillStatus | None = Query(None, alias="status"),
    date_from: date | None = Query(None, alias="from"),
    date_to: date | None = Query(None, alias="to"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> BillPage:
    rows, total = bill_service.list_bills(
        db,
        ctx.require_company().id,
        supplier_id=supplier_id,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    return BillPage(
        data=[BillOut.model_validate(b) for b in rows],
        meta=page_meta(page, limit, total),
    )


@router.post("", response_model=BillDetailOut, status_code=status.HTTP_201_CREATED)
def create_bill(
    body: BillCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("bill:create")),
) -> Bill:
    bill = bill_service.create_bill(
        db,
        ctx.actor,
        company=ctx.require_company(),
        supplier_id=body.supplier_id,
        bill_number=body.bill_number,
        bill_date=body.bill_date,
        due_date=body.due_date,
        currency=body.currency,
        exchange_rate=body.exchange_rate,
        description=body.description,
        lines=body.lines,
    )
    db.commit()
    db.refresh(bill)
    return bill


@router.get("/{bill_id}", response_model=BillDetailOut)
def get_bill(
    bill_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("bill:read")),
) -> Bill:
    return bill_service.get_bill(db, ctx.require_company().id, bill_id)


@router.post("/{bill_id}/approve", response_model=BillDetailOut)
def approve_bill(
    bill_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("bill:approve")),
) -> Bill:
    bill = bill_service.approve_bill(db, ctx.actor, company=ctx.require_company(), bill_id=bill_id)
    db.commit()
    db.refresh(bill)
    return bill


@router.post("/{bill_id}/post", response_model=BillDetailOut)
def post_bill(
    bill_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("bill:post")),
) -> Bill:
    bill = bill_service.post_bill(db, ctx.actor, company=ctx.require_company(), bill_id=bill_id)
    db.commit()
    db.refresh(bill)
    return bill


@router.post("/{bill_id}/void", response_model=BillDetailOut)
def void_bill(
    bill_id: UUID,
    body: VoidIn | None = None,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("bill:void")),
) -> Bill:
    bill = bill_service.void_bill(
        db,
        ctx.actor,
        company=ctx.require_company(),
        bill_id=bill_id,
        reason=body.reason if body else None,
    )
    db.commit()
    db.refresh(bill)
    return bill


@router.delete("/{bill_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_bill(
    bill_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("bill:create")),
) -> None:
    bill_service.delete_bill(db, ctx.actor, company_id=ctx.require_company().id, bill_id=bill_id)
    db.commit()
