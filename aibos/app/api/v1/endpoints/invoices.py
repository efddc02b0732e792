from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from aibos.app.api.deps import (
    IdempotencyRequest,
    TenantContext,
    idempotency_key,
    remember,
    replay,
    require_permission,
)
from aibos.app.core.database import get_db
from aibos.app.models.invoice import Invoice, InvoiceStatus
from aibos.app.schemas.common import page_meta
from aibos.app.schemas.invoices import (
    InvoiceCreate,
    InvoiceDetailOut,
    InvoiceOut,
    InvoicePage,
    VoidIn,
)
from aibos.app.services import invoices as invoice_service

router = APIRouter()

CREATE_SCOPE = "invoices.create"


@router.get("", response_model=InvoicePage)
def list_invoices(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("invoice:read")),
    customer_id: UUID | None = Query(None),
    status_filter: InvoiceStatus | None = Query(None, alias="status"),
    date_from: date | None = Query(None, alias="from"),
    date_to: date | None = Query(None, alias="to"),
    search: str | None = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> InvoicePage:
    rows, total = invoice_service.list_invoices(
        db,
        ctx.require_company().id,
        customer_id=customer_id,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        search=search,
        page=page,
        limit=limit,
    )
    return InvoicePage(
        data=[InvoiceOut.model_validate(i) for i in rows],
        meta=page_meta(page, limit, total),
    )


@router.post("", response_model=InvoiceDetailOut, status_code=status.HTTP_201_CREATED)
def create_invoice(
    body: InvoiceCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("invoice:create")),
    idem: IdempotencyRequest | None = Depends(idempotency_key),
) -> InvoiceDetailOut | JSONResponse:
    stored = replay(db, ctx, CREATE_SCOPE, idem)
    if stored is not None:
        return stored

    invoice = invoice_service.create_invoice(
        db,
        ctx.actor,
        company=ctx.require_company(),
        customer_id=body.customer_id,
        invoice_date=body.invoice_date,
        due_date=body.due_date,
        invoice_number=body.invoice_number,
        currency=body.currency,
        exchange_rate=body.exchange_rate,
        description=body.description,
        notes=body.notes,
        lines=body.lines,
    )
    out = InvoiceDetailOut.model_validate(invoice)
    remember(db, ctx, CREATE_SCOPE, idem, status.HTTP_201_CREATED, out)
    db.commit()
    return out


@router.get("/{invoice_id}", response_model=InvoiceDetailOut)
def get_invoice(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("invoice:read")),
) -> Invoice:
    return invoice_service.get_invoice(db, ctx.require_company().id, invoice_id)


@router.post("/{invoice_id}/post", response_model=InvoiceDetailOut)
def post_invoice(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("invoice:post")),
) -> Invoice:
    invoice = invoice_service.post_invoice(
        db, ctx.actor, company=ctx.require_company(), invoice_id=invoice_id
    )
    db.commit()
    db.refresh(invoice)
    return invoice


@router.post("/{invoice_id}/void", response_model=InvoiceDetailOut)
def void_invoice(
    invoice_id: UUID,
    body: VoidIn | None = None,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("invoice:void")),
) -> Invoice:
    invoice = invoice_service.void_invoice(
        db,
        ctx.actor,
        company=ctx.require_company(),
        invoice_id=invoice_id,
        reason=body.reason if body else None,
    )
    db.commit()
    db.refresh(invoice)
    return invoice


@router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_invoice(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("invoice:create")),
) -> None:
    invoice_service.delete_invoice(
        db, ctx.actor, company_id=ctx.require_company().id, invoice_id=invoice_id
    )
    db.commit()
