from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from aibos.app.models.invoice import InvoiceStatus
from aibos.app.schemas.common import PageMeta


class InvoiceLineIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    revenue_account_id: UUID
    tax_code_id: UUID | None = None


class InvoiceCreate(BaseModel):
    customer_id: UUID
    invoice_date: date
    due_date: date | None = None
    invoice_number: str | None = Field(None, max_length=50)
    currency: str | None = None
    exchange_rate: Decimal | None = Field(None, gt=0)
    description: str | None = Field(None, max_length=500)
    notes: str | None = None
    lines: list[InvoiceLineIn] = Field(..., min_length=1, max_length=100)

    @field_validator("currency")
    @classmethod
    def currency_iso(cls, v: str | None) -> str | None:
        if v is not None and not re.match(r"^[A-Z]{3}$", v):
            raise ValueError("Currency must be a 3-letter ISO code")
        return v

    @model_validator(mode="after")
    def due_after_issue(self) -> InvoiceCreate:
        if self.due_date and self.due_date < self.invoice_date:
            raise ValueError("due_date must not precede invoice_date")
        return self


class VoidIn(BaseModel):
    reason: str | None = Field(None, max_length=500)


class InvoiceLineOut(BaseModel):
    id: UUID
    line_number: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    revenue_account_id: UUID
    tax_code_id: UUID | None
    tax_rate: Decimal
    line_amount: Decimal
    tax_amount: Decimal

    class Config:
        from_attributes = True


class InvoiceOut(BaseModel):
    id: UUID
    invoice_number: str
    customer_id: UUID
    invoice_date: date
    due_date: date
    currency: str
    exchange_rate: Decimal | None
    description: str | None
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    balance_amount: Decimal
    status: InvoiceStatus
    journal_id: UUID | None
    created_by: UUID
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class InvoiceDetailOut(InvoiceOut):
    notes: str | None
    lines: list[InvoiceLineOut] = []


class InvoicePage(BaseModel):
    data: list[InvoiceOut]
    meta: PageMeta
