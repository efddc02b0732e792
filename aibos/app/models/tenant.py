from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from aibos.app.core.database import Base, JSONType

DEFAULT_FEATURE_FLAGS: dict[str, bool] = {
    "attachments": True,
    "reports": True,
    "ar": True,
    "ap": True,
    "je": True,
    "regulated_mode": False,
}

DEFAULT_POLICY_SETTINGS: dict[str, Any] = {
    "approval_threshold_rm": 50000,
    "export_requires_reason": False,
    "mfa_required_for_admin": False,
    "session_timeout_minutes": 480,
    "ip_allowlist": [],
}


class Tenant(Base):
    """Top-level customer organisation. Every business row hangs off a tenant."""

    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    feature_flags: Mapped[dict[str, Any]] = mapped_column(
        JSONType, nullable=False, default=lambda: dict(DEFAULT_FEATURE_FLAGS)
    )
    governance_pack: Mapped[str] = mapped_column(
        String(30), nullable=False, default="starter"
    )
    is_active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    companies: Mapped[list[Company]] = relationship(
        back_populates="tenant", order_by="Company.code"
    )


class Company(Base):
    """A legal entity inside a tenant with its own books."""

    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tenants.id"), nullable=False
    )
    code: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    base_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="MYR")
    fiscal_year_end: Mapped[int] = mapped_column(Integer, nullable=False, default=12)
    policy_settings: Mapped[dict[str, Any]] = mapped_column(
        JSONType, nullable=False, default=lambda: dict(DEFAULT_POLICY_SETTINGS)
    )
    is_active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    tenant: Mapped[Tenant] = relationship(back_populates="companies")

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_company_tenant_code"),
        CheckConstraint(
            "fiscal_year_end BETWEEN 1 AND 12", name="ck_company_fiscal_year_end"
        ),
        Index("ix_companies_tenant", "tenant_id"),
    )
