from __future__ import annotations

from datetime import date
from typing import Any
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
from aibos.app.models.payment import Payment, PaymentStatus, PaymentType
from aibos.app.schemas.common import page_meta
from aibos.app.schemas.invoices import VoidIn
from aibos.app.schemas.payments import (
    PaymentCreate,
    PaymentDetailOut,
    PaymentOut,
    PaymentPage,
    PaymentResultOut,
)
from aibos.app.services import payments as payment_service
from aibos.app.services.payments import AllocationInput, PaymentRequest

router = APIRouter()

CREATE_SCOPE = "payments.create"


@router.post("", response_model=PaymentResultOut, status_code=status.HTTP_201_CREATED)
def create_payment(
    body: PaymentCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("payment:create")),
    idem: IdempotencyRequest | None = Depends(idempotency_key),
) -> PaymentResultOut | JSONResponse:
    """Record a supplier payment or customer receipt against open documents."""
    stored = replay(db, ctx, CREATE_SCOPE, idem)
    if stored is not None:
        return stored

    request = PaymentRequest(
        payment_type=body.payment_type,
        payment_date=body.payment_date,
        payment_method=body.payment_method,
        bank_account_id=body.bank_account_id,
        amount=body.amount,
        currency=body.currency,
        exchange_rate=body.exchange_rate,
        supplier_id=body.supplier_id,
        customer_id=body.customer_id,
        reference=body.reference,
        description=body.description,
        allocations=[AllocationInput(a.document_id, a.amount) for a in body.allocations],
    )
    result = payment_service.process_payment(
        db, ctx.actor, company=ctx.require_company(), request=request
    )
    out = PaymentResultOut(
        payment=PaymentDetailOut.model_validate(result.payment),
        warnings=result.warnings,
    )
    remember(db, ctx, CREATE_SCOPE, idem, status.HTTP_201_CREATED, out)
    db.commit()
    return out


@router.get("", response_model=PaymentPage)
def list_payments(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("payment:read")),
    payment_type: PaymentType | None = Query(None),
    status_filter: PaymentStatus | None = Query(None, alias="status"),
    date_from: date | None = Query(None, alias="from"),
    date_to: date | None = Query(None, alias="to"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> PaymentPage:
    rows, total = payment_service.list_payments(
        db,
        ctx.require_company().id,
        payment_type=payment_type,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    return PaymentPage(
        data=[PaymentOut.model_validate(p) for p in rows],
        meta=page_meta(page, limit, total),
    )


@router.get("/summary")
def get_payment_summary(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("payment:read")),
    date_from: date | None = Query(None, alias="from"),
    date_to: date | None = Query(None, alias="to"),
) -> dict[str, Any]:
    return payment_service.payment_summary(
        db, ctx.require_company().id, date_from=date_from, date_to=date_to
    )


@router.get("/{payment_id}", response_model=PaymentDetailOut)
def get_payment(
    payment_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("payment:read")),
) -> Payment:
    return payment_service.get_payment(db, ctx.require_company().id, payment_id)


@router.post("/{payment_id}/void", response_model=PaymentDetailOut)
def void_payment(
    payment_id: UUID,
    body: VoidIn | None = None,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("payment:void")),
) -> Payment:
    payment = payment_service.void_payment(
        db,
        ctx.actor,
        company=ctx.require_company(),
        payment_id=payment_id,
        reason=body.reason if body else None,
    )
    db.commit()
    db.refresh(payment)
    return payment
