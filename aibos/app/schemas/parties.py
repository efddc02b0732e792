from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from aibos.app.models.customer import PartyStatus, PaymentTerms


def _currency(v: str | None) -> str | None:
    if v is not None and not re.match(r"^[A-Z]{3}$", v):
        raise ValueError("Currency must be a 3-letter ISO code")
    return v


class _PartyBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=50)
    tax_id: str | None = Field(None, max_length=50)
    currency: str | None = None
    payment_terms: PaymentTerms = PaymentTerms.NET_30

    @field_validator("currency")
    @classmethod
    def currency_iso(cls, v: str | None) -> str | None:
        return _currency(v)


class CustomerCreate(_PartyBase):
    billing_address: dict[str, Any] | None = None
    credit_limit: Decimal | None = Field(None, ge=0)


class CustomerUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=50)
    tax_id: str | None = Field(None, max_length=50)
    billing_address: dict[str, Any] | None = None
    payment_terms: PaymentTerms | None = None
    credit_limit: Decimal | None = Field(None, ge=0)
    status: PartyStatus | None = None


class CustomerOut(BaseModel):
    id: UUID
    customer_number: str
    name: str
    email: str | None
    phone: str | None
    tax_id: str | None
    billing_address: dict[str, Any] | None
    currency: str
    payment_terms: PaymentTerms
    credit_limit: Decimal | None
    status: PartyStatus
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class CustomerDetailOut(CustomerOut):
    outstanding_balance: Decimal


class SupplierCreate(_PartyBase):
    contact_person: str | None = Field(None, max_length=255)
    address: dict[str, Any] | None = None


class SupplierUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    contact_person: str | None = Field(None, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=50)
    tax_id: str | None = Field(None, max_length=50)
    address: dict[str, Any] | None = None
    payment_terms: PaymentTerms | None = None
    status: PartyStatus | None = None


class SupplierOut(BaseModel):
    id: UUID
    supplier_number: str
    name: str
    contact_person: str | None
    email: str | None
    phone: str | None
    tax_id: str | None
    address: dict[str, Any] | None
    currency: str
    payment_terms: PaymentTerms
    status: PartyStatus
    created_at: datetime | None = None

    class Config:
        from_attributes = True
