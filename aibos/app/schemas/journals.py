from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from aibos.app.models.journal import JournalStatus
from aibos.app.schemas.common import PageMeta

_TOLERANCE = Decimal("0.01")


class JournalLineIn(BaseModel):
    account_id: UUID
    debit: Decimal = Field(Decimal("0"), ge=0)
    credit: Decimal = Field(Decimal("0"), ge=0)
    description: str | None = Field(None, max_length=500)
    reference: str | None = Field(None, max_length=100)

    @model_validator(mode="after")
    def one_side_only(self) -> JournalLineIn:
        if self.debit > 0 and self.credit > 0:
            raise ValueError("A line cannot carry both a debit and a credit")
        if self.debit == 0 and self.credit == 0:
            raise ValueError("A line must carry a debit or a credit")
        return self


class JournalCreate(BaseModel):
    journal_date: date
    description: str = Field(..., min_length=1, max_length=500)
    reference: str | None = Field(None, max_length=100)
    currency: str | None = None
    exchange_rate: Decimal | None = Field(None, gt=0)
    lines: list[JournalLineIn] = Field(..., min_length=1, max_length=100)

    @field_validator("currency")
    @classmethod
    def currency_iso(cls, v: str | None) -> str | None:
        if v is not None and not re.match(r"^[A-Z]{3}$", v):
            raise ValueError("Currency must be a 3-letter ISO code")
        return v

    @field_validator("lines")
    @classmethod
    def validate_double_entry(cls, v: list[JournalLineIn]) -> list[JournalLineIn]:
        total_debits = sum((ln.debit for ln in v), Decimal("0"))
        total_credits = sum((ln.credit for ln in v), Decimal("0"))
        if abs(total_debits - total_credits) > _TOLERANCE:
            raise ValueError(
                f"Double-entry violation: debits ({total_debits}) "
                f"!= credits ({total_credits})"
            )
        return v


class JournalReverse(BaseModel):
    reversal_date: date | None = None
    description: str | None = Field(None, max_length=500)


class JournalLineOut(BaseModel):
    id: UUID
    line_number: int
    account_id: UUID
    debit: Decimal
    credit: Decimal
    description: str | None
    reference: str | None

    class Config:
        from_attributes = True


class JournalOut(BaseModel):
    id: UUID
    journal_number: str
    journal_date: date
    description: str
    reference: str | None
    currency: str
    exchange_rate: Decimal
    total_debit: Decimal
    total_credit: Decimal
    status: JournalStatus
    source_type: str | None
    source_id: UUID | None
    created_by: UUID
    approved_by: UUID | None
    posted_by: UUID | None
    posted_at: datetime | None
    reversal_of_id: UUID | None
    reversed_by_id: UUID | None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class JournalDetailOut(JournalOut):
    lines: list[JournalLineOut] = []


class JournalPostOut(BaseModel):
    journal: JournalDetailOut
    requires_approval: bool
    approver_roles: list[str] = []


class JournalPage(BaseModel):
    data: list[JournalOut]
    meta: PageMeta
