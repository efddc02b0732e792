from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

GovernancePack = Literal["starter", "business", "enterprise", "regulated", "franchise"]


class PolicySettings(BaseModel):
    approval_threshold_rm: float | None = Field(None, ge=0)
    export_requires_reason: bool | None = None
    mfa_required_for_admin: bool | None = None
    session_timeout_minutes: int | None = Field(None, ge=5, le=1440)
    ip_allowlist: list[str] | None = None


class CompanyCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=255)
    base_currency: str = "MYR"
    fiscal_year_end: int = Field(12, ge=1, le=12)

    @field_validator("base_currency")
    @classmethod
    def currency_iso(cls, v: str) -> str:
        if not re.match(r"^[A-Z]{3}$", v):
            raise ValueError("Currency must be a 3-letter ISO code")
        return v


class CompanyUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    base_currency: str | None = None
    fiscal_year_end: int | None = Field(None, ge=1, le=12)
    is_active: bool | None = None
    policy_settings: PolicySettings | None = None


class TenantCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=2, max_length=100)
    governance_pack: GovernancePack = "starter"
    company: CompanyCreate

    @field_validator("slug")
    @classmethod
    def slug_format(cls, v: str) -> str:
        if not re.match(r"^[a-z0-9-]+$", v):
            raise ValueError("Slug may only contain lowercase letters, digits and hyphens")
        return v


class GovernancePackApply(BaseModel):
    pack: str


class CompanyOut(BaseModel):
    id: UUID
    code: str
    name: str
    base_currency: str
    fiscal_year_end: int
    policy_settings: dict[str, Any]
    is_active: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class TenantOut(BaseModel):
    id: UUID
    name: str
    slug: str
    feature_flags: dict[str, bool]
    governance_pack: str
    is_active: bool
    companies: list[CompanyOut] = []

    class Config:
        from_attributes = True


class RecommendedPack(BaseModel):
    pack: str
