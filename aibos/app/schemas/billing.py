from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from aibos.app.models.subscription import (
    BillingCycle,
    BillingInvoiceStatus,
    PlanType,
    SubscriptionStatus,
)


class PlanOut(BaseModel):
    id: UUID
    name: str
    plan_type: PlanType
    price: Decimal
    currency: str
    billing_cycle: BillingCycle
    limits: dict[str, Any]
    features: list[str]
    is_active: bool

    class Config:
        from_attributes = True


class SubscriptionCreate(BaseModel):
    plan_id: UUID
    auto_renew: bool = True
    billing_address: dict[str, Any] | None = None


class SubscriptionUpdate(BaseModel):
    auto_renew: bool | None = None
    billing_address: dict[str, Any] | None = None


class SubscriptionCancel(BaseModel):
    reason: str | None = Field(None, max_length=500)


class SubscriptionOut(BaseModel):
    id: UUID
    plan_id: UUID
    plan: PlanOut
    status: SubscriptionStatus
    start_date: date
    end_date: date
    trial_end_date: date | None
    auto_renew: bool
    billing_address: dict[str, Any] | None
    cancelled_at: datetime | None
    cancellation_reason: str | None

    class Config:
        from_attributes = True


class BillingInvoiceOut(BaseModel):
    id: UUID
    subscription_id: UUID
    invoice_number: str
    amount: Decimal
    currency: str
    period_start: date
    period_end: date
    due_date: date
    status: BillingInvoiceStatus
    paid_at: datetime | None
    provider_reference: str | None

    class Config:
        from_attributes = True


class WebhookEvent(BaseModel):
    event_type: str = Field(..., alias="type")
    data: dict[str, Any] = {}

    class Config:
        populate_by_name = True


class UsageCreate(BaseModel):
    metric: str = Field(..., min_length=1, max_length=50)
    value: Decimal = Field(..., gt=0)
    unit: str = Field("count", max_length=20)


class UsageOut(BaseModel):
    id: UUID
    metric: str
    value: Decimal
    unit: str
    recorded_at: datetime

    class Config:
        from_attributes = True


class UsageMetric(BaseModel):
    metric: str
    total: Decimal
    limit: Decimal | None
    usage_percentage: Decimal | None


class UsageSummaryOut(BaseModel):
    plan: str | None
    window_days: int
    metrics: list[UsageMetric]
