from __future__ import annotations

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from aibos.app.core.database import Base


class PeriodStatus(str, enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    LOCKED = "LOCKED"


class LockType(str, enum.Enum):
    POSTING = "POSTING"
    REPORTING = "REPORTING"
    FULL = "FULL"


class ReversalStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"


class FiscalPeriod(Base):
    """One accounting period (normally a month) of a company's fiscal year.

    Journals dated inside a CLOSED or LOCKED period, or inside a period with
    an active POSTING/FULL lock, are rejected by ``assert_period_open``.
    """

    __tablename__ = "fiscal_periods"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tenants.id"), nullable=False
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id"), nullable=False
    )
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_number: Mapped[int] = mapped_column(Integer, nullable=False)
    period_name: Mapped[str] = mapped_column(String(50), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[PeriodStatus] = mapped_column(
        Enum(PeriodStatus), nullable=False, default=PeriodStatus.OPEN
    )
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    closed_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    reopen_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    locks: Mapped[list[PeriodLock]] = relationship(back_populates="period")

    __table_args__ = (
        UniqueConstraint(
            "company_id", "fiscal_year", "period_number", name="uq_period_company_year_number"
        ),
        CheckConstraint("end_date >= start_date", name="ck_period_dates"),
        Index("ix_fiscal_periods_company_dates", "company_id", "start_date", "end_date"),
    )


class PeriodLock(Base):
    __tablename__ = "period_locks"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    period_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("fiscal_periods.id"), nullable=False
    )
    lock_type: Mapped[LockType] = mapped_column(Enum(LockType), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True)
    locked_by: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    locked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    period: Mapped[FiscalPeriod] = relationship(back_populates="locks")

    __table_args__ = (Index("ix_period_locks_period", "period_id"),)


class ReversingEntry(Base):
    """An accrual journal scheduled to be reversed on the next period's first day."""

    __tablename__ = "reversing_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tenants.id"), nullable=False
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id"), nullable=False
    )
    original_journal_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("gl_journals.id"), nullable=False
    )
    reversal_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[ReversalStatus] = mapped_column(
        Enum(ReversalStatus), nullable=False, default=ReversalStatus.PENDING
    )
    reversal_journal_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("gl_journals.id"), nullable=True
    )
    created_by: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_reversing_entries_status_date", "status", "reversal_date"),
    )
