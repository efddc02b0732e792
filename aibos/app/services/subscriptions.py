"""Subscription plans, tenant subscriptions, billing invoices and usage metering.

Does NOT call db.commit(). The caller is responsible.
"""

from __future__ import annotations

import calendar
import hmac
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from aibos.app.core.config import settings
from aibos.app.core.database import next_sequence
from aibos.app.core.errors import (
    ConflictError,
    LimitExceeded,
    NotFoundError,
    PermissionDenied,
    ValidationFailed,
)
from aibos.app.core.timeutils import today as _today
from aibos.app.core.timeutils import utcnow
from aibos.app.models.subscription import (
    LIVE_SUBSCRIPTION_STATUSES,
    BillingCycle,
    BillingInvoiceStatus,
    PlanType,
    Subscription,
    SubscriptionInvoice,
    SubscriptionPlan,
    SubscriptionStatus,
    UsageRecord,
)
from aibos.app.services.audit import Actor, log_action
from aibos.app.services.notification_service import (
    NotificationService,
    NotificationType,
    notify_tenant_admins,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
USAGE_WINDOW_DAYS = 30
USAGE_WARNING_PERCENT = Decimal("80")
PAYMENT_DUE_DAYS = 14

DEFAULT_PLANS: list[dict[str, Any]] = [
    {
        "name": "Free",
        "plan_type": PlanType.FREE,
        "price": Decimal("0"),
        "limits": {"users": 2, "companies": 1, "storage_mb": 100, "api_calls": 1000},
    },
    {
        "name": "Basic",
        "plan_type": PlanType.BASIC,
        "price": Decimal("99"),
        "limits": {"users": 10, "companies": 3, "storage_mb": 1024, "api_calls": 20000},
    },
    {
        "name": "Professional",
        "plan_type": PlanType.PROFESSIONAL,
        "price": Decimal("299"),
        "limits": {"users": 50, "companies": 10, "storage_mb": 10240, "api_calls": 200000},
    },
    {
        "name": "Enterprise",
        "plan_type": PlanType.ENTERPRISE,
        "price": Decimal("999"),
        "limits": {"users": None, "companies": None, "storage_mb": None, "api_calls": None},
    },
]


def add_months(start: date, months: int) -> date:
    """Same day *months* later, clamped to the end of shorter months."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def period_end(start: date, cycle: BillingCycle) -> date:
    return add_months(start, 12 if cycle == BillingCycle.YEARLY else 1)


# ─── Plans ───────────────────────────────────────────────────────────────────


def list_plans(db: Session, *, active_only: bool = True) -> list[SubscriptionPlan]:
    q = db.query(SubscriptionPlan)
    if active_only:
        q = q.filter(SubscriptionPlan.is_active.is_(True))
    return q.order_by(SubscriptionPlan.price).all()


def seed_default_plans(db: Session) -> list[SubscriptionPlan]:
    existing = {name for (name,) in db.query(SubscriptionPlan.name).all()}
    created = []
    for definition in DEFAULT_PLANS:
        if definition["name"] in existing:
            continue
        plan = SubscriptionPlan(currency=settings.DEFAULT_CURRENCY, **definition)
        db.add(plan)
        created.append(plan)
    db.flush()
    return created


# ─── Subscriptions ───────────────────────────────────────────────────────────


def get_current_subscription(db: Session, tenant_id: UUID) -> Subscription | None:
    return (
        db.query(Subscription)
        .filter(
            Subscription.tenant_id == tenant_id,
            Subscription.status.in_(LIVE_SUBSCRIPTION_STATUSES),
        )
        .order_by(Subscription.created_at.desc())
        .first()
    )


def get_subscription(db: Session, tenant_id: UUID, subscription_id: UUID) -> Subscription:
    sub = (
        db.query(Subscription)
        .filter(Subscription.id == subscription_id, Subscription.tenant_id == tenant_id)
        .first()
    )
    if sub is None:
        raise NotFoundError("Subscription not found", code="SUBSCRIPTION_NOT_FOUND")
    return sub


def next_invoice_number(db: Session, on: date) -> str:
    return next_sequence(db, SubscriptionInvoice.invoice_number, f"SUB-{on:%Y%m}-", width=5)


def _issue_invoice(
    db: Session, sub: Subscription, plan: SubscriptionPlan, start: date, end: date
) -> SubscriptionInvoice:
    invoice = SubscriptionInvoice(
        tenant_id=sub.tenant_id,
        subscription_id=sub.id,
        invoice_number=next_invoice_number(db, start),
        amount=plan.price,
        currency=plan.currency,
        period_start=start,
        period_end=end,
        due_date=start + timedelta(days=PAYMENT_DUE_DAYS),
        status=BillingInvoiceStatus.DRAFT,
    )
    db.add(invoice)
    db.flush()
    return invoice


def create_subscription(
    db: Session,
    actor: Actor,
    *,
    tenant_id: UUID,
    plan_id: UUID,
    auto_renew: bool = True,
    billing_address: dict[str, Any] | None = None,
    today: date | None = None,
) -> Subscription:
    """Subscribe the tenant to *plan_id*.

    Paid plans start with a trial and get a DRAFT invoice for the first
    billing period, due after the trial.
    """
    today = today or _today()
    plan = (
        db.query(SubscriptionPlan)
        .filter(SubscriptionPlan.id == plan_id, SubscriptionPlan.is_active.is_(True))
        .first()
    )
    if plan is None:
        raise NotFoundError("Plan not found", code="PLAN_NOT_FOUND")
    if get_current_subscription(db, tenant_id) is not None:
        raise ConflictError(
            "Tenant already has an active subscription", code="ACTIVE_SUBSCRIPTION_EXISTS"
        )

    is_paid = plan.plan_type != PlanType.FREE
    trial_end = today + timedelta(days=settings.TRIAL_DAYS) if is_paid else None
    sub = Subscription(
        tenant_id=tenant_id,
        plan_id=plan.id,
        status=SubscriptionStatus.TRIAL if is_paid else SubscriptionStatus.ACTIVE,
        start_date=today,
        end_date=period_end(today, plan.billing_cycle),
        trial_end_date=trial_end,
        auto_renew=auto_renew,
        billing_address=billing_address,
        created_by=actor.user_id,
    )
    db.add(sub)
    db.flush()
    if is_paid:
        invoice = _issue_invoice(db, sub, plan, today, sub.end_date)
        invoice.due_date = max(invoice.due_date, trial_end)

    log_action(
        db,
        actor=actor,
        action="SUBSCRIPTION_CREATED",
        entity_type="subscription",
        entity_id=sub.id,
        changes={"plan": plan.name, "status": sub.status.value, "end_date": sub.end_date},
    )
    logger.info("Tenant %s subscribed to %s", tenant_id, plan.name)
    return sub


def update_subscription(
    db: Session,
    actor: Actor,
    *,
    tenant_id: UUID,
    subscription_id: UUID,
    auto_renew: bool | None = None,
    billing_address: dict[str, Any] | None = None,
) -> Subscription:
    sub = get_subscription(db, tenant_id, subscription_id)
    old = {"auto_renew": sub.auto_renew, "billing_address": sub.billing_address}
    if auto_renew is not None:
        sub.auto_renew = auto_renew
    if billing_address is not None:
        sub.billing_address = billing_address
    db.flush()
    log_action(
        db,
        actor=actor,
        action="SUBSCRIPTION_UPDATED",
        entity_type="subscription",
        entity_id=sub.id,
        old_values=old,
        changes={"auto_renew": sub.auto_renew, "billing_address": sub.billing_address},
    )
    return sub


def cancel_subscription(
    db: Session,
    actor: Actor,
    *,
    tenant_id: UUID,
    subscription_id: UUID,
    reason: str | None = None,
    notifier: NotificationService | None = None,
) -> Subscription:
    sub = get_subscription(db, tenant_id, subscription_id)
    if sub.status == SubscriptionStatus.CANCELLED:
        raise ConflictError(
            "Subscription is already cancelled", code="SUBSCRIPTION_ALREADY_CANCELLED"
        )
    old_status = sub.status
    sub.status = SubscriptionStatus.CANCELLED
    sub.cancelled_at = utcnow()
    sub.cancellation_reason = reason
    sub.auto_renew = False
    for invoice in sub.invoices:
        if invoice.status in (BillingInvoiceStatus.DRAFT, BillingInvoiceStatus.SENT):
            invoice.status = BillingInvoiceStatus.CANCELLED
    db.flush()

    log_action(
        db,
        actor=actor,
        action="SUBSCRIPTION_CANCELLED",
        entity_type="subscription",
        entity_id=sub.id,
        old_values={"status": old_status.value},
        changes={"status": sub.status.value, "reason": reason},
    )
    notify_tenant_admins(
        db,
        tenant_id,
        NotificationType.SUBSCRIPTION_CANCELLED,
        service=notifier,
        plan_name=sub.plan.name,
        reason=reason or "not given",
    )
    return sub


def list_billing_invoices(db: Session, tenant_id: UUID) -> list[SubscriptionInvoice]:
    return (
        db.query(SubscriptionInvoice)
        .filter(SubscriptionInvoice.tenant_id == tenant_id)
        .order_by(SubscriptionInvoice.due_date.desc())
        .all()
    )


# ─── Webhook ─────────────────────────────────────────────────────────────────


WEBHOOK_EVENTS = ("invoice.paid", "invoice.payment_failed")


def verify_webhook_secret(provided: str | None) -> None:
    if not provided or not hmac.compare_digest(provided, settings.BILLING_WEBHOOK_SECRET):
        raise PermissionDenied("Invalid webhook secret", code="INVALID_WEBHOOK_SECRET")


def handle_webhook(db: Session, *, event_type: str, data: dict[str, Any]) -> dict[str, Any]:
    """Apply a payment provider event to the referenced billing invoice.

    ``data`` carries ``invoice_number`` and optionally ``provider_reference``.
    Unknown event types are acknowledged and ignored.
    """
    if event_type not in WEBHOOK_EVENTS:
        logger.info("Ignoring billing webhook event %s", event_type)
        return {"received": True, "handled": False}

    number = data.get("invoice_number")
    invoice = (
        db.query(SubscriptionInvoice)
        .filter(SubscriptionInvoice.invoice_number == number)
        .first()
        if number
        else None
    )
    if invoice is None:
        raise NotFoundError("Billing invoice not found", code="BILLING_INVOICE_NOT_FOUND")

    sub = invoice.subscription
    if event_type == "invoice.paid":
        invoice.status = BillingInvoiceStatus.PAID
        invoice.paid_at = utcnow()
        if sub.status != SubscriptionStatus.CANCELLED:
            sub.status = SubscriptionStatus.ACTIVE
    else:
        invoice.status = BillingInvoiceStatus.OVERDUE
        if sub.status != SubscriptionStatus.CANCELLED:
            sub.status = SubscriptionStatus.PAST_DUE
    if data.get("provider_reference"):
        invoice.provider_reference = str(data["provider_reference"])[:255]
    db.flush()

    log_action(
        db,
        actor=Actor(user_id=None, tenant_id=sub.tenant_id, role="system"),
        action="BILLING_WEBHOOK",
        entity_type="subscription_invoice",
        entity_id=invoice.id,
        changes={
            "event": event_type,
            "invoice_status": invoice.status.value,
            "subscription_status": sub.status.value,
        },
    )
    logger.info("Billing webhook %s applied to %s", event_type, invoice.invoice_number)
    return {
        "received": True,
        "handled": True,
        "invoice_status": invoice.status.value,
        "subscription_status": sub.status.value,
    }


# ─── Usage ───────────────────────────────────────────────────────────────────


def _plan_limit(sub: Subscription | None, metric: str) -> Decimal | None:
    if sub is None:
        return None
    raw = (sub.plan.limits or {}).get(metric)
    if raw is None or Decimal(str(raw)) < ZERO:
        return None
    return Decimal(str(raw))


def _window_total(db: Session, tenant_id: UUID, metric: str, now: datetime) -> Decimal:
    since = now - timedelta(days=USAGE_WINDOW_DAYS)
    total = (
        db.query(func.coalesce(func.sum(UsageRecord.value), 0))
        .filter(
            UsageRecord.tenant_id == tenant_id,
            UsageRecord.metric == metric,
            UsageRecord.recorded_at >= since,
        )
        .scalar()
    )
    return Decimal(str(total))


def record_usage(
    db: Session,
    actor: Actor,
    *,
    tenant_id: UUID,
    metric: str,
    value: Decimal,
    unit: str = "count",
    notifier: NotificationService | None = None,
) -> UsageRecord:
    value = Decimal(str(value))
    if value <= ZERO:
        raise ValidationFailed("Usage value must be positive", code="INVALID_USAGE_VALUE")
    now = utcnow()
    sub = get_current_subscription(db, tenant_id)
    limit = _plan_limit(sub, metric)
    used = _window_total(db, tenant_id, metric, now)
    if limit is not None and used + value > limit:
        logger.warning(
            "Usage limit for %s exceeded by tenant %s (%s + %s > %s)",
            metric, tenant_id, used, value, limit,
        )
        raise LimitExceeded(
            f"Usage limit for {metric} exceeded", code="USAGE_LIMIT_EXCEEDED"
        )

    record = UsageRecord(
        tenant_id=tenant_id,
        metric=metric,
        value=value,
        unit=unit,
        recorded_at=now,
        recorded_by=actor.user_id,
    )
    db.add(record)
    db.flush()

    if limit:
        before = used / limit * 100
        after = (used + value) / limit * 100
        if before < USAGE_WARNING_PERCENT <= after:
            notify_tenant_admins(
                db,
                tenant_id,
                NotificationType.USAGE_LIMIT_NEAR,
                service=notifier,
                metric=metric,
                percentage=str(after.quantize(Decimal("1"))),
            )
    return record


def usage_summary(db: Session, tenant_id: UUID) -> dict[str, Any]:
    now = utcnow()
    sub = get_current_subscription(db, tenant_id)
    metrics = {
        m for (m,) in db.query(UsageRecord.metric)
        .filter(UsageRecord.tenant_id == tenant_id)
        .distinct()
        .all()
    }
    if sub is not None:
        metrics.update((sub.plan.limits or {}).keys())

    rows = []
    for metric in sorted(metrics):
        total = _window_total(db, tenant_id, metric, now)
        limit = _plan_limit(sub, metric)
        percentage = (
            (total / limit * 100).quantize(Decimal("0.01")) if limit else None
        )
        rows.append({
            "metric": metric,
            "total": total,
            "limit": limit,
            "usage_percentage": percentage,
        })
    return {
        "plan": sub.plan.name if sub else None,
        "window_days": USAGE_WINDOW_DAYS,
        "metrics": rows,
    }


# ─── Renewal ─────────────────────────────────────────────────────────────────


def renew_subscriptions(db: Session, today: date | None = None) -> dict[str, int]:
    """Daily roll-over: end trials, renew or expire subscriptions past their end date."""
    today = today or _today()
    counts = {"activated": 0, "renewed": 0, "expired": 0}

    trials = (
        db.query(Subscription)
        .filter(
            Subscription.status == SubscriptionStatus.TRIAL,
            Subscription.trial_end_date.isnot(None),
            Subscription.trial_end_date < today,
        )
        .all()
    )
    for sub in trials:
        sub.status = SubscriptionStatus.ACTIVE
        counts["activated"] += 1
    db.flush()

    due = (
        db.query(Subscription)
        .filter(
            Subscription.status.in_((SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE)),
            Subscription.end_date < today,
        )
        .all()
    )
    for sub in due:
        if sub.auto_renew and sub.plan.is_active:
            start = sub.end_date
            sub.end_date = period_end(start, sub.plan.billing_cycle)
            if sub.plan.plan_type != PlanType.FREE:
                _issue_invoice(db, sub, sub.plan, start, sub.end_date)
            counts["renewed"] += 1
            action = "SUBSCRIPTION_RENEWED"
        else:
            sub.status = SubscriptionStatus.EXPIRED
            counts["expired"] += 1
            action = "SUBSCRIPTION_EXPIRED"
        log_action(
            db,
            actor=Actor(user_id=None, tenant_id=sub.tenant_id, role="system"),
            action=action,
            entity_type="subscription",
            entity_id=sub.id,
            changes={"end_date": sub.end_date, "status": sub.status.value},
        )
    db.flush()
    logger.info("Subscription roll-over: %s", counts)
    return counts
