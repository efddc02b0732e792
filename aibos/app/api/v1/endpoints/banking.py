from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, UploadFile, status
from sqlalchemy.orm import Session

from aibos.app.api.deps import TenantContext, require_permission
from aibos.app.core.config import settings
from aibos.app.core.database import get_db
from aibos.app.core.errors import ValidationFailed
from aibos.app.models.banking import BankAccount, BankTransaction
from aibos.app.schemas.banking import (
    AutoMatchOut,
    BankAccountCreate,
    BankAccountOut,
    BankTransactionOut,
    BankTransactionPage,
    ImportResultOut,
    ManualMatchIn,
    ManualMatchOut,
)
from aibos.app.schemas.common import page_meta
from aibos.app.services import banking as banking_service

router = APIRouter()


@router.get("/bank-accounts", response_model=list[BankAccountOut])
def list_bank_accounts(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("bank:read")),
    active_only: bool = Query(False),
) -> list[BankAccount]:
    return banking_service.list_bank_accounts(
        db, ctx.require_company().id, active_only=active_only
    )


@router.post(
    "/bank-accounts", response_model=BankAccountOut, status_code=status.HTTP_201_CREATED
)
def create_bank_account(
    body: BankAccountCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("bank:write")),
) -> BankAccount:
    account = banking_service.create_bank_account(
        db,
        ctx.actor,
        company=ctx.require_company(),
        name=body.name,
        account_number=body.account_number,
        gl_account_id=body.gl_account_id,
        bank_name=body.bank_name,
        currency=body.currency,
    )
    db.commit()
    db.refresh(account)
    return account


@router.post("/bank-accounts/{bank_account_id}/import", response_model=ImportResultOut)
async def import_statement(
    bank_account_id: UUID,
    file: UploadFile = File(...),
    statement_format: str | None = Query(None, alias="format"),
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("bank:write")),
) -> ImportResultOut:
    """Import a CSV bank statement. Bad rows are reported, not fatal."""
    content = await file.read()
    if not content:
        raise ValidationFailed("Statement file is empty", code="EMPTY_FILE")
    if len(content) > settings.MAX_ATTACHMENT_BYTES:
        raise ValidationFailed("Statement file is too large", code="FILE_TOO_LARGE")
    result = banking_service.import_statement(
        db,
        ctx.actor,
        company_id=ctx.require_company().id,
        bank_account_id=bank_account_id,
        content=content,
        statement_format=statement_format,
    )
    db.commit()
    return ImportResultOut.model_validate(result)


@router.get(
    "/bank-accounts/{bank_account_id}/transactions", response_model=BankTransactionPage
)
def list_transactions(
    bank_account_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("bank:read")),
    is_matched: bool | None = Query(None),
    date_from: date | None = Query(None, alias="from"),
    date_to: date | None = Query(None, alias="to"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
) -> BankTransactionPage:
    rows, total = banking_service.list_transactions(
        db,
        ctx.require_company().id,
        bank_account_id,
        is_matched=is_matched,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    return BankTransactionPage(
        data=[BankTransactionOut.model_validate(t) for t in rows],
        meta=page_meta(page, limit, total),
    )


@router.post("/bank-accounts/{bank_account_id}/auto-match", response_model=AutoMatchOut)
def auto_match(
    bank_account_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("bank:reconcile")),
) -> dict:
    result = banking_service.auto_match(
        db, ctx.actor, company_id=ctx.require_company().id, bank_account_id=bank_account_id
    )
    db.commit()
    return result


@router.post("/bank-transactions/{transaction_id}/match", response_model=ManualMatchOut)
def match_transaction(
    transaction_id: UUID,
    body: ManualMatchIn,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("bank:reconcile")),
) -> ManualMatchOut:
    txn, warnings = banking_service.match_transaction(
        db,
        ctx.actor,
        company_id=ctx.require_company().id,
        transaction_id=transaction_id,
        payment_id=body.payment_id,
    )
    db.commit()
    db.refresh(txn)
    return ManualMatchOut(transaction=BankTransactionOut.model_validate(txn), warnings=warnings)


@router.post("/bank-transactions/{transaction_id}/unmatch", response_model=BankTransactionOut)
def unmatch_transaction(
    transaction_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("bank:reconcile")),
) -> BankTransaction:
    txn = banking_service.unmatch_transaction(
        db, ctx.actor, company_id=ctx.require_company().id, transaction_id=transaction_id
    )
    db.commit()
    db.refresh(txn)
    return txn
