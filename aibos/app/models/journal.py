from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from aibos.app.core.database import Base


class JournalStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    POSTED = "posted"
    REVERSED = "reversed"


# Statuses whose lines count towards balances and reports.
LEDGER_STATUSES = (JournalStatus.POSTED, JournalStatus.REVERSED)


class Journal(Base):
    """General ledger journal header.

    Double-entry integrity (sum(debits) == sum(credits)) spans child rows, so
    it is enforced in services/posting.py before a journal leaves draft. The
    totals stored here are denormalised copies of the line sums in base
    currency.
    """

    __tablename__ = "gl_journals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tenants.id"), nullable=False
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id"), nullable=False
    )
    journal_number: Mapped[str] = mapped_column(String(50), nullable=False)
    journal_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="MYR")
    exchange_rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=20, scale=8), nullable=False, default=Decimal("1")
    )
    total_debit: Mapped[Decimal] = mapped_column(
        Numeric(precision=20, scale=4), nullable=False, default=Decimal("0")
    )
    total_credit: Mapped[Decimal] = mapped_column(
        Numeric(precision=20, scale=4), nullable=False, default=Decimal("0")
    )
    status: Mapped[JournalStatus] = mapped_column(
        Enum(JournalStatus), nullable=False, default=JournalStatus.DRAFT
    )
    source_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    source_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_by: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"), nullable=False
    )
    approved_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    posted_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    posted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    reversal_of_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("gl_journals.id"), nullable=True
    )
    reversed_by_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("gl_journals.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    lines: Mapped[list[JournalLine]] = relationship(
        back_populates="journal",
        cascade="all, delete-orphan",
        order_by="JournalLine.line_number",
    )

    __table_args__ = (
        UniqueConstraint("company_id", "journal_number", name="uq_journal_company_number"),
        CheckConstraint("exchange_rate > 0", name="ck_journal_exchange_rate_positive"),
        Index("ix_gl_journals_company_date", "company_id", "journal_date"),
        Index("ix_gl_journals_status", "status"),
        Index("ix_gl_journals_source", "source_type", "source_id"),
    )


class JournalLine(Base):
    """A single debit or credit line.

    Exactly one of debit / credit is > 0, the other is 0. Enforced by a CHECK
    constraint. Amounts are in base currency.
    """

    __tablename__ = "gl_journal_lines"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    journal_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("gl_journals.id"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("accounts.id"), nullable=False
    )
    debit: Mapped[Decimal] = mapped_column(
        Numeric(precision=20, scale=4), nullable=False, default=Decimal("0")
    )
    credit: Mapped[Decimal] = mapped_column(
        Numeric(precision=20, scale=4), nullable=False, default=Decimal("0")
    )
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    journal: Mapped[Journal] = relationship(back_populates="lines")
    account: Mapped["Account"] = relationship()  # noqa: F821

    __table_args__ = (
        CheckConstraint(
            "(debit > 0 AND credit = 0) OR (credit > 0 AND debit = 0)",
            name="ck_line_debit_xor_credit",
        ),
        CheckConstraint("debit >= 0", name="ck_line_debit_non_negative"),
        CheckConstraint("credit >= 0", name="ck_line_credit_non_negative"),
        Index("ix_gl_lines_journal", "journal_id"),
        Index("ix_gl_lines_account", "account_id"),
    )
