from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from aibos.app.api.deps import TenantContext, require_permission
from aibos.app.core.database import get_db
from aibos.app.models.subscription import SubscriptionInvoice
from aibos.app.schemas.billing import BillingInvoiceOut, WebhookEvent
from aibos.app.services import subscriptions as subscription_service

router = APIRouter()


@router.post("/webhook")
def billing_webhook(
    event: WebhookEvent,
    x_webhook_secret: str | None = Header(None, alias="X-Webhook-Secret"),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """Payment provider callback. Authenticated by shared secret, not JWT."""
    subscription_service.verify_webhook_secret(x_webhook_secret)
    result = subscription_service.handle_webhook(
        db, event_type=event.event_type, data=event.data
    )
    db.commit()
    return result


@router.get("/invoices", response_model=list[BillingInvoiceOut])
def list_invoices(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("subscription:read")),
) -> list[SubscriptionInvoice]:
    return subscription_service.list_billing_invoices(db, ctx.tenant.id)
