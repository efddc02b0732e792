from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from aibos.app.models.payment import PaymentMethod, PaymentStatus, PaymentType
from aibos.app.schemas.common import PageMeta


class AllocationIn(BaseModel):
    document_id: UUID
    amount: Decimal = Field(..., gt=0)


class PaymentCreate(BaseModel):
    payment_type: PaymentType
    payment_date: date
    payment_method: PaymentMethod
    bank_account_id: UUID
    amount: Decimal = Field(..., gt=0)
    currency: str = "MYR"
    exchange_rate: Decimal = Field(Decimal("1"), gt=0)
    supplier_id: UUID | None = None
    customer_id: UUID | None = None
    reference: str | None = Field(None, max_length=100)
    description: str | None = Field(None, max_length=500)
    allocations: list[AllocationIn] = Field(..., min_length=1)

    @field_validator("currency")
    @classmethod
    def currency_iso(cls, v: str) -> str:
        if not re.match(r"^[A-Z]{3}$", v):
            raise ValueError("Currency must be a 3-letter ISO code")
        return v

    @model_validator(mode="after")
    def party_matches_type(self) -> PaymentCreate:
        if self.payment_type == PaymentType.BILL and self.supplier_id is None:
            raise ValueError("supplier_id is required for bill payments")
        if self.payment_type == PaymentType.INVOICE and self.customer_id is None:
            raise ValueError("customer_id is required for invoice receipts")
        return self


class AllocationOut(BaseModel):
    id: UUID
    bill_id: UUID | None
    invoice_id: UUID | None
    allocated_amount: Decimal

    class Config:
        from_attributes = True


class PaymentOut(BaseModel):
    id: UUID
    payment_number: str
    payment_type: PaymentType
    payment_date: date
    payment_method: PaymentMethod
    bank_account_id: UUID
    currency: str
    exchange_rate: Decimal
    amount: Decimal
    reference: str | None
    description: str | None
    supplier_id: UUID | None
    customer_id: UUID | None
    status: PaymentStatus
    journal_id: UUID | None
    is_reconciled: bool
    created_by: UUID
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class PaymentDetailOut(PaymentOut):
    allocations: list[AllocationOut] = []


class PaymentResultOut(BaseModel):
    payment: PaymentDetailOut
    warnings: list[str] = []


class PaymentPage(BaseModel):
    data: list[PaymentOut]
    meta: PageMeta
