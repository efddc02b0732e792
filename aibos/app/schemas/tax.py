from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from aibos.app.models.tax import TaxType


class TaxCodeCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=100)
    rate: Decimal = Field(..., ge=0, le=100)
    tax_type: TaxType
    tax_account_id: UUID | None = None

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return v.strip().upper()


class TaxCodeUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    rate: Decimal | None = Field(None, ge=0, le=100)
    tax_account_id: UUID | None = None
    is_active: bool | None = None


class TaxCodeOut(BaseModel):
    id: UUID
    code: str
    name: str
    rate: Decimal
    tax_type: TaxType
    tax_account_id: UUID | None
    is_active: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class TaxCalculationIn(BaseModel):
    amount: Decimal
    rate: Decimal = Field(..., ge=0, le=100)
    inclusive: bool = False


class TaxCalculationOut(BaseModel):
    net: Decimal
    tax: Decimal
    gross: Decimal
