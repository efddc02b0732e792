from __future__ import annotations

import re
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, field_validator

from aibos.app.models.account import AccountCategory, AccountType, NormalBalance


class AccountCreate(BaseModel):
    code: str
    name: str
    account_type: AccountType
    category: AccountCategory
    parent_id: UUID | None = None
    currency: str | None = None

    @field_validator("code")
    @classmethod
    def code_must_be_digits(cls, v: str) -> str:
        v = v.strip()
        if not re.match(r"^\d{4,20}$", v):
            raise ValueError("Code must be 4-20 digits")
        return v

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Name must not be empty")
        return v.strip()

    @field_validator("currency")
    @classmethod
    def currency_iso(cls, v: str | None) -> str | None:
        if v is not None and not re.match(r"^[A-Z]{3}$", v):
            raise ValueError("Currency must be a 3-letter ISO code")
        return v


class AccountUpdate(BaseModel):
    name: str | None = None
    is_active: bool | None = None

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            raise ValueError("Name must not be empty")
        return v.strip() if v else v


class AccountOut(BaseModel):
    id: UUID
    code: str
    name: str
    account_type: AccountType
    category: AccountCategory
    normal_balance: NormalBalance
    parent_id: UUID | None
    currency: str | None
    is_active: bool
    is_system: bool
    balance: str
    created_at: datetime | None

    class Config:
        from_attributes = True


class SeedResult(BaseModel):
    created: int
    codes: list[str]
