from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from aibos.app.api.deps import TenantContext, require_permission
from aibos.app.core.database import get_db
from aibos.app.models.account import AccountCategory, AccountType
from aibos.app.schemas.accounts import AccountCreate, AccountOut, AccountUpdate, SeedResult
from aibos.app.services import accounts as account_service

router = APIRouter()


@router.get("", response_model=list[AccountOut])
def list_accounts(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("account:read")),
    account_type: AccountType | None = Query(None),
    category: AccountCategory | None = Query(None),
    include_inactive: bool = Query(True),
) -> list[AccountOut]:
    return account_service.list_accounts(
        db,
        ctx.require_company().id,
        account_type=account_type,
        category=category,
        include_inactive=include_inactive,
    )


@router.post("", response_model=AccountOut, status_code=status.HTTP_201_CREATED)
def create_account(
    body: AccountCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("account:write")),
) -> AccountOut:
    account = account_service.create_account(
        db, ctx.actor, company=ctx.require_company(), payload=body
    )
    db.commit()
    return account


@router.post("/seed", response_model=SeedResult, status_code=status.HTTP_201_CREATED)
def seed_chart(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("account:write")),
) -> SeedResult:
    created = account_service.seed_default_chart(db, ctx.actor, company=ctx.require_company())
    db.commit()
    return SeedResult(created=len(created), codes=[a.code for a in created])


@router.get("/{account_id}", response_model=AccountOut)
def get_account(
    account_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("account:read")),
) -> AccountOut:
    return account_service.get_account(db, ctx.require_company().id, account_id)


@router.patch("/{account_id}", response_model=AccountOut)
def update_account(
    account_id: UUID,
    body: AccountUpdate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("account:write")),
) -> AccountOut:
    account = account_service.update_account(
        db,
        ctx.actor,
        company_id=ctx.require_company().id,
        account_id=account_id,
        payload=body,
    )
    db.commit()
    return account


@router.delete("/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_account(
    account_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("account:write")),
) -> None:
    account_service.delete_account(
        db, ctx.actor, company_id=ctx.require_company().id, account_id=account_id
    )
    db.commit()
