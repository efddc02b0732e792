from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from aibos.app.core.permissions import MembershipRole
from aibos.app.core.security import validate_password_strength


def _validate_pw(v: str) -> str:
    error = validate_password_strength(v)
    if error:
        raise ValueError(error)
    return v


class RegisterIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=12, max_length=128)
    first_name: str | None = Field(None, max_length=100)
    last_name: str | None = Field(None, max_length=100)

    @field_validator("password")
    @classmethod
    def check_password_strength(cls, v: str) -> str:
        return _validate_pw(v)


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserOut(BaseModel):
    id: UUID
    email: str
    first_name: str | None
    last_name: str | None
    is_active: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class MembershipOut(BaseModel):
    id: UUID
    tenant_id: UUID
    company_id: UUID | None
    role: str
    permissions: list[str] = []
    can_manage_users: bool
    can_manage_settings: bool
    can_view_reports: bool
    can_manage_companies: bool
    is_active: bool


class MeOut(UserOut):
    memberships: list[MembershipOut] = []


class MemberOut(MembershipOut):
    user: UserOut


class MemberCreate(BaseModel):
    email: EmailStr
    role: MembershipRole
    password: str | None = Field(None, min_length=12, max_length=128)
    first_name: str | None = Field(None, max_length=100)
    last_name: str | None = Field(None, max_length=100)
    company_id: UUID | None = None
    permissions: dict[str, list[str]] | None = None
    can_manage_users: bool | None = None
    can_manage_settings: bool | None = None
    can_view_reports: bool | None = None
    can_manage_companies: bool | None = None

    @field_validator("password")
    @classmethod
    def check_password_strength(cls, v: str | None) -> str | None:
        return _validate_pw(v) if v is not None else v


class MemberUpdate(BaseModel):
    role: MembershipRole | None = None
    company_id: UUID | None = None
    permissions: dict[str, list[str]] | None = None
    is_active: bool | None = None
    can_manage_users: bool | None = None
    can_manage_settings: bool | None = None
    can_view_reports: bool | None = None
    can_manage_companies: bool | None = None


class ChangePasswordIn(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=12, max_length=128)

    @field_validator("new_password")
    @classmethod
    def check_password_strength(cls, v: str) -> str:
        return _validate_pw(v)


def member_flags(body: MemberCreate | MemberUpdate) -> dict[str, Any]:
    return {
        k: v
        for k, v in body.model_dump(
            include={
                "can_manage_users",
                "can_manage_settings",
                "can_view_reports",
                "can_manage_companies",
            }
        ).items()
        if v is not None
    }
