from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from aibos.app.api.deps import TenantContext, get_tenant_context, require_permission
from aibos.app.core.database import get_db
from aibos.app.core.errors import PermissionDenied
from aibos.app.models.period import FiscalPeriod, PeriodStatus
from aibos.app.schemas.periods import (
    CloseValidationOut,
    PeriodAction,
    PeriodActionOut,
    PeriodGenerate,
    PeriodLockOut,
    PeriodOut,
    PeriodUpdate,
)
from aibos.app.services import periods as period_service
from aibos.app.services.access import enforce_sod

router = APIRouter()


@router.post("/generate", response_model=list[PeriodOut], status_code=status.HTTP_201_CREATED)
def generate_periods(
    body: PeriodGenerate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("period:close")),
) -> list[FiscalPeriod]:
    periods = period_service.generate_periods(
        db, ctx.actor, company=ctx.require_company(), fiscal_year=body.fiscal_year
    )
    db.commit()
    return periods


@router.get("", response_model=list[PeriodOut])
def list_periods(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("period:read")),
    status_filter: PeriodStatus | None = Query(None, alias="status"),
    fiscal_year: int | None = Query(None),
) -> list[FiscalPeriod]:
    return period_service.list_periods(
        db, ctx.require_company().id, status=status_filter, fiscal_year=fiscal_year
    )


@router.post("", response_model=PeriodActionOut)
def period_action(
    body: PeriodAction,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(get_tenant_context),
) -> PeriodActionOut:
    """Close, reopen or lock a period. Each action has its own permission."""
    code = f"period:{body.action}"
    if not ctx.can(code):
        raise PermissionDenied(f"Missing permissions: {code}", code="PERMISSION_DENIED")
    enforce_sod(ctx.actor, code)
    company = ctx.require_company()

    if body.action == "close":
        result = period_service.close_period(
            db,
            ctx.actor,
            company=company,
            period_id=body.period_id,
            close_date=body.close_date,
            force_close=body.force_close,
            create_reversing_entries=body.create_reversing_entries,
            notes=body.notes,
        )
        db.commit()
        db.refresh(result.period)
        return PeriodActionOut(
            action=body.action,
            period=PeriodOut.model_validate(result.period),
            next_period_id=result.next_period_id,
            reversing_entries_created=result.reversing_entries_created,
            validation=CloseValidationOut(
                can_close=result.validation.can_close,
                errors=result.validation.errors,
                warnings=result.validation.warnings,
            ),
        )

    if body.action == "open":
        period = period_service.open_period(
            db, ctx.actor, company=company, period_id=body.period_id, reason=body.reason
        )
        db.commit()
        db.refresh(period)
        return PeriodActionOut(action=body.action, period=PeriodOut.model_validate(period))

    lock = period_service.lock_period(
        db,
        ctx.actor,
        company=company,
        period_id=body.period_id,
        lock_type=body.lock_type,
        reason=body.reason,
    )
    db.commit()
    db.refresh(lock)
    return PeriodActionOut(
        action=body.action,
        period=PeriodOut.model_validate(lock.period),
        lock=PeriodLockOut.model_validate(lock),
    )


@router.get("/{period_id}", response_model=PeriodOut)
def get_period(
    period_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("period:read")),
) -> FiscalPeriod:
    return period_service.get_period(db, ctx.require_company().id, period_id)


@router.put("/{period_id}", response_model=PeriodOut)
def update_period(
    period_id: UUID,
    body: PeriodUpdate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("period:close")),
) -> FiscalPeriod:
    period = period_service.update_period(
        db,
        ctx.actor,
        company_id=ctx.require_company().id,
        period_id=period_id,
        period_name=body.period_name,
        start_date=body.start_date,
        end_date=body.end_date,
        status=body.status,
    )
    db.commit()
    db.refresh(period)
    return period


@router.get("/{period_id}/close-validation", response_model=CloseValidationOut)
def close_validation(
    period_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("period:read")),
) -> CloseValidationOut:
    period = period_service.get_period(db, ctx.require_company().id, period_id)
    result = period_service.validate_period_close(db, period)
    return CloseValidationOut(
        can_close=result.can_close, errors=result.errors, warnings=result.warnings
    )
