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
from aibos.app.models.journal import Journal, JournalStatus
from aibos.app.schemas.common import page_meta
from aibos.app.schemas.journals import (
    JournalCreate,
    JournalDetailOut,
    JournalOut,
    JournalPage,
    JournalPostOut,
    JournalReverse,
)
from aibos.app.services import journals as journal_service
from aibos.app.services.posting import LineInput

router = APIRouter()

CREATE_SCOPE = "journals.create"


@router.post("", response_model=JournalDetailOut, status_code=status.HTTP_201_CREATED)
def create_journal(
    body: JournalCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("journal:create")),
    idem: IdempotencyRequest | None = Depends(idempotency_key),
) -> JournalDetailOut | JSONResponse:
    stored = replay(db, ctx, CREATE_SCOPE, idem)
    if stored is not None:
        return stored

    journal = journal_service.create_journal(
        db,
        ctx.actor,
        company=ctx.require_company(),
        journal_date=body.journal_date,
        description=body.description,
        reference=body.reference,
        currency=body.currency,
        exchange_rate=body.exchange_rate,
        lines=[
            LineInput(
                account_id=ln.account_id,
                debit=ln.debit,
                credit=ln.credit,
                description=ln.description,
                reference=ln.reference,
            )
            for ln in body.lines
        ],
    )
    out = JournalDetailOut.model_validate(journal)
    remember(db, ctx, CREATE_SCOPE, idem, status.HTTP_201_CREATED, out)
    db.commit()
    return out


@router.get("", response_model=JournalPage)
def list_journals(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("journal:read")),
    status_filter: JournalStatus | None = Query(None, alias="status"),
    date_from: date | None = Query(None, alias="from"),
    date_to: date | None = Query(None, alias="to"),
    reference: str | None = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
) -> JournalPage:
    rows, total = journal_service.list_journals(
        db,
        ctx.require_company().id,
        status=status_filter,
        date_from=date_from,
        date_to=date_to,
        reference=reference,
        page=page,
        limit=limit,
    )
    return JournalPage(
        data=[JournalOut.model_validate(j) for j in rows],
        meta=page_meta(page, limit, total),
    )


@router.get("/{journal_id}", response_model=JournalDetailOut)
def get_journal(
    journal_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("journal:read")),
) -> Journal:
    return journal_service.get_journal(db, ctx.require_company().id, journal_id)


@router.post("/{journal_id}/post", response_model=JournalPostOut)
def post_journal(
    journal_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("journal:post")),
) -> JournalPostOut:
    result = journal_service.post_journal(
        db, ctx.actor, company=ctx.require_company(), journal_id=journal_id
    )
    db.commit()
    db.refresh(result.journal)
    return JournalPostOut(
        journal=JournalDetailOut.model_validate(result.journal),
        requires_approval=result.requires_approval,
        approver_roles=result.approver_roles,
    )


@router.post("/{journal_id}/approve", response_model=JournalDetailOut)
def approve_journal(
    journal_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("journal:approve")),
) -> Journal:
    journal = journal_service.approve_journal(
        db, ctx.actor, company=ctx.require_company(), journal_id=journal_id
    )
    db.commit()
    db.refresh(journal)
    return journal


@router.post("/{journal_id}/reverse", response_model=JournalDetailOut)
def reverse_journal(
    journal_id: UUID,
    body: JournalReverse | None = None,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("journal:reverse")),
) -> Journal:
    """Post a mirror journal and mark the original reversed. Returns the reversal."""
    body = body or JournalReverse()
    reversal = journal_service.reverse_journal(
        db,
        ctx.actor,
        company=ctx.require_company(),
        journal_id=journal_id,
        reversal_date=body.reversal_date,
        description=body.description,
    )
    db.commit()
    db.refresh(reversal)
    return reversal


@router.delete("/{journal_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_journal(
    journal_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("journal:create")),
) -> None:
    journal_service.delete_journal(
        db, ctx.actor, company_id=ctx.require_company().id, journal_id=journal_id
    )
    db.commit()
