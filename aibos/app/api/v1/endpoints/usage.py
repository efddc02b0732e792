from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from aibos.app.api.deps import TenantContext, require_permission
from aibos.app.core.database import get_db
from aibos.app.models.subscription import UsageRecord
from aibos.app.schemas.billing import UsageCreate, UsageOut, UsageSummaryOut
from aibos.app.services import subscriptions as subscription_service

router = APIRouter()


@router.post("", response_model=UsageOut, status_code=status.HTTP_201_CREATED)
def record_usage(
    body: UsageCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("usage:write")),
) -> UsageRecord:
    record = subscription_service.record_usage(
        db,
        ctx.actor,
        tenant_id=ctx.tenant.id,
        metric=body.metric,
        value=body.value,
        unit=body.unit,
    )
    db.commit()
    db.refresh(record)
    return record


@router.get("/summary", response_model=UsageSummaryOut)
def usage_summary(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("subscription:read")),
) -> dict:
    return subscription_service.usage_summary(db, ctx.tenant.id)
