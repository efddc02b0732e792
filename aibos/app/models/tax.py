from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from aibos.app.core.database import Base


class TaxType(str, enum.Enum):
    INPUT = "INPUT"
    OUTPUT = "OUTPUT"
    EXEMPT = "EXEMPT"


class TaxCode(Base):
    """A tax rate (percent) and the GL account its amounts post to."""

    __tablename__ = "tax_codes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tenants.id"), nullable=False
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id"), nullable=False
    )
    code: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(precision=7, scale=4), nullable=False)
    tax_type: Mapped[TaxType] = mapped_column(Enum(TaxType), nullable=False)
    tax_account_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("accounts.id"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    tax_account: Mapped["Account | None"] = relationship()  # noqa: F821

    __table_args__ = (
        UniqueConstraint("company_id", "code", name="uq_tax_code_company_code"),
        CheckConstraint("rate >= 0 AND rate <= 100", name="ck_tax_rate_range"),
    )
