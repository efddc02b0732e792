from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from aibos.app.schemas.common import PageMeta


class BankAccountCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    account_number: str = Field(..., min_length=1, max_length=50)
    gl_account_id: UUID
    bank_name: str | None = Field(None, max_length=255)
    currency: str | None = None

    @field_validator("currency")
    @classmethod
    def currency_iso(cls, v: str | None) -> str | None:
        if v is not None and not re.match(r"^[A-Z]{3}$", v):
            raise ValueError("Currency must be a 3-letter ISO code")
        return v


class BankAccountOut(BaseModel):
    id: UUID
    name: str
    bank_name: str | None
    account_number: str
    currency: str
    gl_account_id: UUID
    is_active: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class BankTransactionOut(BaseModel):
    id: UUID
    bank_account_id: UUID
    transaction_date: date
    description: str
    reference: str | None
    debit_amount: Decimal
    credit_amount: Decimal
    balance: Decimal | None
    is_matched: bool
    matched_payment_id: UUID | None
    match_confidence: Decimal | None
    matched_by: UUID | None
    matched_at: datetime | None
    import_batch_id: str | None

    class Config:
        from_attributes = True


class BankTransactionPage(BaseModel):
    data: list[BankTransactionOut]
    meta: PageMeta


class ImportResultOut(BaseModel):
    imported: int
    skipped: int
    errors: list[str]
    warnings: list[str]
    batch_id: str
    format: str

    class Config:
        from_attributes = True


class MatchEntry(BaseModel):
    transaction_id: UUID
    payment_id: UUID
    confidence: float
    reasons: list[str]


class AutoMatchOut(BaseModel):
    total_transactions: int
    matched_count: int
    suggested_count: int
    unmatched_count: int
    matched: list[MatchEntry]
    suggestions: list[MatchEntry]


class ManualMatchIn(BaseModel):
    payment_id: UUID


class ManualMatchOut(BaseModel):
    transaction: BankTransactionOut
    warnings: list[str] = []
