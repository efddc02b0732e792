from __future__ import annotations

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from aibos.app.core.database import Base, JSONType


class AttachmentCategory(str, enum.Enum):
    INVOICE = "invoice"
    RECEIPT = "receipt"
    CONTRACT = "contract"
    REPORT = "report"
    STATEMENT = "statement"
    TAX_DOCUMENT = "tax_document"
    BANK_DOCUMENT = "bank_document"
    LEGAL_DOCUMENT = "legal_document"
    CORRESPONDENCE = "correspondence"
    OTHER = "other"


class AttachmentStatus(str, enum.Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    DELETED = "deleted"
    PROCESSING = "processing"
    FAILED = "failed"


class EntityType(str, enum.Enum):
    INVOICE = "invoice"
    BILL = "bill"
    JOURNAL = "journal"
    CUSTOMER = "customer"
    SUPPLIER = "supplier"
    PAYMENT = "payment"
    BANK_TRANSACTION = "bank_transaction"
    TAX_RETURN = "tax_return"
    REPORT = "report"


class Attachment(Base):
    """Stored document metadata. File bytes live in FileStorageService."""

    __tablename__ = "attachments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("tenants.id"), nullable=False
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id"), nullable=False
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    file_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    storage_path: Mapped[str] = mapped_column(String(500), nullable=False)
    category: Mapped[AttachmentCategory] = mapped_column(
        Enum(AttachmentCategory), nullable=False, default=AttachmentCategory.OTHER
    )
    tags: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_public: Mapped[bool] = mapped_column(default=False)
    status: Mapped[AttachmentStatus] = mapped_column(
        Enum(AttachmentStatus), nullable=False, default=AttachmentStatus.ACTIVE
    )
    retention_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    uploaded_by: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    links: Mapped[list[AttachmentLink]] = relationship(
        back_populates="attachment", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_attachments_company_hash", "tenant_id", "company_id", "file_hash"),
        Index("ix_attachments_company_status", "company_id", "status"),
        Index("ix_attachments_category", "category"),
    )


class AttachmentLink(Base):
    __tablename__ = "attachment_links"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    attachment_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("attachments.id"), nullable=False
    )
    entity_type: Mapped[EntityType] = mapped_column(Enum(EntityType), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    link_type: Mapped[str] = mapped_column(String(30), nullable=False, default="attachment")
    created_by: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    attachment: Mapped[Attachment] = relationship(back_populates="links")

    __table_args__ = (
        UniqueConstraint(
            "attachment_id", "entity_type", "entity_id", name="uq_attachment_link_entity"
        ),
        Index("ix_attachment_links_entity", "entity_type", "entity_id"),
    )
