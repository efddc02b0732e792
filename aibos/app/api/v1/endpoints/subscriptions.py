from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from aibos.app.api.deps import TenantContext, require_permission
from aibos.app.core.database import get_db
from aibos.app.models.subscription import Subscription, SubscriptionPlan
from aibos.app.schemas.billing import (
    PlanOut,
    SubscriptionCancel,
    SubscriptionCreate,
    SubscriptionOut,
    SubscriptionUpdate,
)
from aibos.app.services import subscriptions as subscription_service

router = APIRouter()


@router.get("/plans", response_model=list[PlanOut])
def list_plans(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("subscription:read")),
) -> list[SubscriptionPlan]:
    return subscription_service.list_plans(db)


@router.get("/current", response_model=SubscriptionOut | None)
def current_subscription(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("subscription:read")),
) -> Subscription | None:
    return subscription_service.get_current_subscription(db, ctx.tenant.id)


@router.post("", response_model=SubscriptionOut, status_code=status.HTTP_201_CREATED)
def create_subscription(
    body: SubscriptionCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("subscription:manage")),
) -> Subscription:
    sub = subscription_service.create_subscription(
        db,
        ctx.actor,
        tenant_id=ctx.tenant.id,
        plan_id=body.plan_id,
        auto_renew=body.auto_renew,
        billing_address=body.billing_address,
    )
    db.commit()
    db.refresh(sub)
    return sub


@router.patch("/{subscription_id}", response_model=SubscriptionOut)
def update_subscription(
    subscription_id: UUID,
    body: SubscriptionUpdate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("subscription:manage")),
) -> Subscription:
    sub = subscription_service.update_subscription(
        db,
        ctx.actor,
        tenant_id=ctx.tenant.id,
        subscription_id=subscription_id,
        auto_renew=body.auto_renew,
        billing_address=body.billing_address,
    )
    db.commit()
    db.refresh(sub)
    return sub


@router.post("/{subscription_id}/cancel", response_model=SubscriptionOut)
def cancel_subscription(
    subscription_id: UUID,
    body: SubscriptionCancel | None = None,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("subscription:manage")),
) -> Subscription:
    sub = subscription_service.cancel_subscription(
        db,
        ctx.actor,
        tenant_id=ctx.tenant.id,
        subscription_id=subscription_id,
        reason=body.reason if body else None,
    )
    db.commit()
    db.refresh(sub)
    return sub
