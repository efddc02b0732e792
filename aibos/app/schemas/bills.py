from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from aibos.app.models.bill import BillStatus
from aibos.app.schemas.common import PageMeta


class BillLineIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    expense_account_id: UUID
    tax_code_id: UUID | None = None


class BillCreate(BaseModel):
    supplier_id: UUID
    bill_number: str = Field(..., min_length=1, max_length=50)
    bill_date: date
    due_date: date | None = None
    currency: str | None = None
    exchange_rate: Decimal | None = Field(None, gt=0)
    description: str | None = Field(None, max_length=500)
    lines: list[BillLineIn] = Field(..., min_length=1, max_length=100)

    @field_validator("currency")
    @classmethod
    def currency_iso(cls, v: str | None) -> str | None:
        if v is not None and not re.match(r"^[A-Z]{3}$", v):
            raise ValueError("Currency must be a 3-letter ISO code")
        return v

    @model_validator(mode="after")
    def due_after_bill(self) -> BillCreate:
        if self.due_date and self.due_date < self.bill_date:
            raise ValueError("due_date must not precede bill_date")
        return self


class BillLineOut(BaseModel):
    id: UUID
    line_number: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    expense_account_id: UUID
    tax_code_id: UUID | None
    tax_rate: Decimal
    line_amount: Decimal
    tax_amount: Decimal

    class Config:
        from_attributes = True


class BillOut(BaseModel):
    id: UUID
    bill_number: str
    supplier_id: UUID
    bill_date: date
    due_date: date
    currency: str
    exchange_rate: Decimal | None
    description: str | None
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    balance_amount: Decimal
    status: BillStatus
    journal_id: UUID | None
    created_by: UUID
    approved_by: UUID | None
    approved_at: datetime | None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class BillDetailOut(BillOut):
    lines: list[BillLineOut] = []


class BillPage(BaseModel):
    data: list[BillOut]
    meta: PageMeta
