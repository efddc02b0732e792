from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from aibos.app.api.deps import TenantContext, require_permission
from aibos.app.core.database import get_db
from aibos.app.models.tax import TaxCode, TaxType
from aibos.app.schemas.tax import (
    TaxCalculationIn,
    TaxCalculationOut,
    TaxCodeCreate,
    TaxCodeOut,
    TaxCodeUpdate,
)
from aibos.app.services import tax as tax_service

router = APIRouter()


@router.get("/tax-codes", response_model=list[TaxCodeOut])
def list_tax_codes(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("tax:read")),
    tax_type: TaxType | None = Query(None),
    active_only: bool = Query(False),
) -> list[TaxCode]:
    return tax_service.list_tax_codes(
        db, ctx.require_company().id, tax_type=tax_type, active_only=active_only
    )


@router.post("/tax-codes", response_model=TaxCodeOut, status_code=status.HTTP_201_CREATED)
def create_tax_code(
    body: TaxCodeCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("tax:write")),
) -> TaxCode:
    tax_code = tax_service.create_tax_code(
        db,
        ctx.actor,
        company=ctx.require_company(),
        code=body.code,
        name=body.name,
        rate=body.rate,
        tax_type=body.tax_type,
        tax_account_id=body.tax_account_id,
    )
    db.commit()
    db.refresh(tax_code)
    return tax_code


@router.patch("/tax-codes/{tax_code_id}", response_model=TaxCodeOut)
def update_tax_code(
    tax_code_id: UUID,
    body: TaxCodeUpdate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("tax:write")),
) -> TaxCode:
    tax_code = tax_service.update_tax_code(
        db,
        ctx.actor,
        company_id=ctx.require_company().id,
        tax_code_id=tax_code_id,
        name=body.name,
        rate=body.rate,
        tax_account_id=body.tax_account_id,
        is_active=body.is_active,
    )
    db.commit()
    db.refresh(tax_code)
    return tax_code


@router.get("/tax/summary")
def tax_summary(
    date_from: date = Query(..., alias="from"),
    date_to: date = Query(..., alias="to"),
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("tax:read")),
) -> dict:
    return tax_service.tax_summary(
        db, ctx.require_company().id, date_from=date_from, date_to=date_to
    )


@router.post("/tax/calculate", response_model=TaxCalculationOut)
def calculate_tax(
    body: TaxCalculationIn,
    _ctx: TenantContext = Depends(require_permission("tax:read")),
) -> TaxCalculationOut:
    result = tax_service.calculate_tax(body.amount, body.rate, body.inclusive)
    return TaxCalculationOut(net=result.net, tax=result.tax, gross=result.gross)
