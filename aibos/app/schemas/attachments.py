from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field

from aibos.app.models.attachment import AttachmentCategory, AttachmentStatus, EntityType
from aibos.app.schemas.common import PageMeta


class AttachmentLinkOut(BaseModel):
    id: UUID
    entity_type: EntityType
    entity_id: UUID
    link_type: str
    created_by: UUID
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class AttachmentOut(BaseModel):
    id: UUID
    filename: str
    original_filename: str
    mime_type: str
    file_size: int
    file_hash: str
    category: AttachmentCategory
    tags: list[str]
    description: str | None
    is_public: bool
    status: AttachmentStatus
    retention_until: date | None
    uploaded_by: UUID
    created_at: datetime | None = None
    updated_at: datetime | None = None
    links: list[AttachmentLinkOut] = []

    class Config:
        from_attributes = True


class UploadOut(BaseModel):
    attachment: AttachmentOut
    duplicate: bool


class AttachmentPage(BaseModel):
    data: list[AttachmentOut]
    meta: PageMeta


class AttachmentUpdate(BaseModel):
    category: AttachmentCategory | None = None
    tags: list[str] | None = None
    description: str | None = Field(None, max_length=1000)
    is_public: bool | None = None
    retention_until: date | None = None


class LinkCreate(BaseModel):
    entity_type: EntityType
    entity_id: UUID
    link_type: str = Field("attachment", min_length=1, max_length=50)


class BatchRequest(BaseModel):
    attachment_ids: list[UUID] = Field(..., min_length=1, max_length=50)
    operation: Literal[
        "delete", "archive", "restore", "update_category", "add_tags", "remove_tags"
    ]
    data: dict[str, Any] = {}


class BatchItemOut(BaseModel):
    id: UUID
    success: bool
    error: str | None = None


class BatchResultOut(BaseModel):
    operation: str
    succeeded: int
    failed: int
    results: list[BatchItemOut]
