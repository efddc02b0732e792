from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from aibos.app.core.database import Base, JSONType


class PaymentTerms(str, enum.Enum):
    NET_15 = "NET_15"
    NET_30 = "NET_30"
    NET_45 = "NET_45"
    NET_60 = "NET_60"
    COD = "COD"
    PREPAID = "PREPAID"


PAYMENT_TERM_DAYS: dict[PaymentTerms, int] = {
    PaymentTerms.NET_15: 15,
    PaymentTerms.NET_30: 30,
    PaymentTerms.NET_45: 45,
    PaymentTerms.NET_60: 60,
    PaymentTerms.COD: 0,
    PaymentTerms.PREPAID: 0,
}


class PartyStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tenants.id"), nullable=False
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id"), nullable=False
    )
    customer_number: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    tax_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    billing_address: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType, nullable=True
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="MYR")
    payment_terms: Mapped[PaymentTerms] = mapped_column(
        Enum(PaymentTerms), nullable=False, default=PaymentTerms.NET_30
    )
    credit_limit: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=20, scale=4), nullable=True
    )
    status: Mapped[PartyStatus] = mapped_column(
        Enum(PartyStatus), nullable=False, default=PartyStatus.ACTIVE
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("company_id", "customer_number", name="uq_customer_company_number"),
        Index("ix_customers_company_name", "company_id", "name"),
    )
