"""Document attachments: upload with dedupe, metadata, links and batch operations.

Does NOT call db.commit(). The caller is responsible.
"""

from __future__ import annotations

import hashlib
import logging
import mimetypes
import uuid
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from aibos.app.core.config import settings
from aibos.app.core.errors import ConflictError, NotFoundError, ValidationFailed
from aibos.app.models.attachment import (
    Attachment,
    AttachmentCategory,
    AttachmentLink,
    AttachmentStatus,
    EntityType,
)
from aibos.app.services.audit import Actor, log_action
from aibos.app.services.file_service import FileStorageService

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = frozenset({
    "application/pdf",
    "image/png",
    "image/jpeg",
    "image/gif",
    "image/webp",
    "text/plain",
    "text/csv",
    "application/xml",
    "text/xml",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
})

MAX_TAGS = 20
MAX_TAG_LENGTH = 50
MAX_BATCH = 50
SORT_FIELDS = {
    "created_at": Attachment.created_at,
    "filename": Attachment.original_filename,
    "file_size": Attachment.file_size,
}
BATCH_OPERATIONS = (
    "delete",
    "archive",
    "restore",
    "update_category",
    "add_tags",
    "remove_tags",
)


def _extension(filename: str, mime_type: str) -> str:
    if "." in filename:
        ext = filename.rsplit(".", 1)[1].lower()
        if ext.isalnum() and len(ext) <= 10:
            return ext
    guessed = mimetypes.guess_extension(mime_type) or ".bin"
    return guessed.lstrip(".")


def storage_path_for(
    tenant_id: UUID, company_id: UUID, category: AttachmentCategory, stored_name: str
) -> str:
    return f"{tenant_id}/{company_id}/{category.value}/{stored_name}"


def clean_tags(tags: list[str] | None) -> list[str]:
    """Strip, dedupe and validate tags, keeping first-seen order."""
    if not tags:
        return []
    cleaned: list[str] = []
    for tag in tags:
        tag = tag.strip()
        if not tag or len(tag) > MAX_TAG_LENGTH:
            raise ValidationFailed(
                f"Tags must be 1-{MAX_TAG_LENGTH} characters", code="INVALID_TAG"
            )
        if tag not in cleaned:
            cleaned.append(tag)
    if len(cleaned) > MAX_TAGS:
        raise ValidationFailed(f"At most {MAX_TAGS} tags are allowed", code="TOO_MANY_TAGS")
    return cleaned


@dataclass
class UploadResult:
    attachment: Attachment
    duplicate: bool = False


def upload_attachment(
    db: Session,
    actor: Actor,
    *,
    tenant_id: UUID,
    company_id: UUID,
    filename: str,
    content: bytes,
    mime_type: str | None,
    category: AttachmentCategory = AttachmentCategory.OTHER,
    tags: list[str] | None = None,
    description: str | None = None,
    is_public: bool = False,
    entity_type: EntityType | None = None,
    entity_id: UUID | None = None,
    storage: FileStorageService | None = None,
) -> UploadResult:
    """Store *content* and its metadata.

    A file whose SHA-256 already exists for the company is not stored again;
    the existing attachment is returned with ``duplicate=True`` (and linked to
    the entity if one was given).
    """
    if not content:
        raise ValidationFailed("File is empty", code="EMPTY_FILE")
    if len(content) > settings.MAX_ATTACHMENT_BYTES:
        raise ValidationFailed(
            f"File exceeds {settings.MAX_ATTACHMENT_BYTES} bytes", code="FILE_TOO_LARGE"
        )
    mime_type = (mime_type or mimetypes.guess_type(filename)[0] or "").lower()
    if mime_type not in ALLOWED_MIME_TYPES:
        raise ValidationFailed(
            f"File type '{mime_type or 'unknown'}' is not allowed", code="UNSUPPORTED_FILE_TYPE"
        )
    tags = clean_tags(tags)
    if (entity_type is None) != (entity_id is None):
        raise ValidationFailed(
            "entity_type and entity_id must be given together", code="INVALID_ENTITY"
        )

    file_hash = hashlib.sha256(content).hexdigest()
    existing = (
        db.query(Attachment)
        .filter(
            Attachment.tenant_id == tenant_id,
            Attachment.company_id == company_id,
            Attachment.file_hash == file_hash,
            Attachment.status != AttachmentStatus.DELETED,
        )
        .first()
    )
    if existing is not None:
        if entity_type is not None:
            _link(db, actor, existing, entity_type, entity_id, "attachment", strict=False)
        logger.info("Duplicate upload of %s matched attachment %s", filename, existing.id)
        return UploadResult(attachment=existing, duplicate=True)

    stored_name = f"{uuid.uuid4()}.{_extension(filename, mime_type)}"
    path = storage_path_for(tenant_id, company_id, category, stored_name)
    (storage or FileStorageService()).save(path, content)

    attachment = Attachment(
        tenant_id=tenant_id,
        company_id=company_id,
        filename=stored_name,
        original_filename=filename[:255],
        mime_type=mime_type,
        file_size=len(content),
        file_hash=file_hash,
        storage_path=path,
        category=category,
        tags=tags,
        description=description,
        is_public=is_public,
        uploaded_by=actor.user_id,
    )
    db.add(attachment)
    db.flush()
    if entity_type is not None:
        _link(db, actor, attachment, entity_type, entity_id, "attachment", strict=False)

    log_action(
        db,
        actor=actor,
        action="ATTACHMENT_UPLOADED",
        entity_type="attachment",
        entity_id=attachment.id,
        company_id=company_id,
        changes={
            "filename": attachment.original_filename,
            "file_size": attachment.file_size,
            "category": category.value,
        },
    )
    return UploadResult(attachment=attachment)


def list_attachments(
    db: Session,
    tenant_id: UUID,
    company_id: UUID,
    *,
    category: AttachmentCategory | None = None,
    status: AttachmentStatus | None = None,
    entity_type: EntityType | None = None,
    entity_id: UUID | None = None,
    tag: str | None = None,
    search: str | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Attachment], int]:
    if sort_by not in SORT_FIELDS:
        raise ValidationFailed(f"Cannot sort by '{sort_by}'", code="INVALID_SORT")
    limit = max(1, min(limit, 100))

    q = db.query(Attachment).filter(
        Attachment.tenant_id == tenant_id, Attachment.company_id == company_id
    )
    if status is not None:
        q = q.filter(Attachment.status == status)
    else:
        q = q.filter(Attachment.status != AttachmentStatus.DELETED)
    if category is not None:
        q = q.filter(Attachment.category == category)
    if entity_type is not None or entity_id is not None:
        q = q.join(AttachmentLink, AttachmentLink.attachment_id == Attachment.id)
        if entity_type is not None:
            q = q.filter(AttachmentLink.entity_type == entity_type)
        if entity_id is not None:
            q = q.filter(AttachmentLink.entity_id == entity_id)
    if search:
        pattern = f"%{search}%"
        q = q.filter(
            or_(
                Attachment.original_filename.ilike(pattern),
                Attachment.description.ilike(pattern),
            )
        )

    column = SORT_FIELDS[sort_by]
    q = q.order_by(column.asc() if sort_order == "asc" else column.desc())

    if tag:
        # Tags are a JSON list; filter in Python so the query stays portable.
        rows = [a for a in q.all() if tag in (a.tags or [])]
        total = len(rows)
        return rows[(page - 1) * limit : page * limit], total

    total = q.count()
    return q.offset((page - 1) * limit).limit(limit).all(), total


def get_attachment(
    db: Session, tenant_id: UUID, company_id: UUID, attachment_id: UUID
) -> Attachment:
    attachment = (
        db.query(Attachment)
        .filter(
            Attachment.id == attachment_id,
            Attachment.tenant_id == tenant_id,
            Attachment.company_id == company_id,
            Attachment.status != AttachmentStatus.DELETED,
        )
        .first()
    )
    if attachment is None:
        raise NotFoundError("Attachment not found", code="ATTACHMENT_NOT_FOUND")
    return attachment


def read_content(attachment: Attachment, storage: FileStorageService | None = None) -> bytes:
    storage = storage or FileStorageService()
    if not storage.exists(attachment.storage_path):
        raise NotFoundError("Attachment file is missing", code="FILE_NOT_FOUND")
    return storage.read(attachment.storage_path)


def update_attachment(
    db: Session,
    actor: Actor,
    *,
    tenant_id: UUID,
    company_id: UUID,
    attachment_id: UUID,
    changes: dict[str, Any],
) -> Attachment:
    attachment = get_attachment(db, tenant_id, company_id, attachment_id)
    old: dict[str, Any] = {}
    new: dict[str, Any] = {}
    for key in ("category", "tags", "description", "is_public", "retention_until"):
        if key not in changes or changes[key] is None:
            continue
        value = clean_tags(changes[key]) if key == "tags" else changes[key]
        if key == "category":
            value = AttachmentCategory(value)
        old[key] = getattr(attachment, key)
        setattr(attachment, key, value)
        new[key] = value
    db.flush()
    log_action(
        db,
        actor=actor,
        action="ATTACHMENT_UPDATED",
        entity_type="attachment",
        entity_id=attachment.id,
        company_id=company_id,
        old_values=old,
        changes=new,
    )
    return attachment


def delete_attachment(
    db: Session, actor: Actor, *, tenant_id: UUID, company_id: UUID, attachment_id: UUID
) -> None:
    """Soft delete: the row and file remain until a retention job removes them."""
    attachment = get_attachment(db, tenant_id, company_id, attachment_id)
    attachment.status = AttachmentStatus.DELETED
    db.flush()
    log_action(
        db,
        actor=actor,
        action="ATTACHMENT_DELETED",
        entity_type="attachment",
        entity_id=attachment.id,
        company_id=company_id,
    )


def _link(
    db: Session,
    actor: Actor,
    attachment: Attachment,
    entity_type: EntityType,
    entity_id: UUID,
    link_type: str,
    *,
    strict: bool,
) -> AttachmentLink | None:
    existing = (
        db.query(AttachmentLink)
        .filter(
            AttachmentLink.attachment_id == attachment.id,
            AttachmentLink.entity_type == entity_type,
            AttachmentLink.entity_id == entity_id,
        )
        .first()
    )
    if existing is not None:
        if strict:
            raise ConflictError("Attachment is already linked", code="LINK_EXISTS")
        return existing
    link = AttachmentLink(
        attachment_id=attachment.id,
        entity_type=entity_type,
        entity_id=entity_id,
        link_type=link_type,
        created_by=actor.user_id,
    )
    db.add(link)
    db.flush()
    return link


def link_attachment(
    db: Session,
    actor: Actor,
    *,
    tenant_id: UUID,
    company_id: UUID,
    attachment_id: UUID,
    entity_type: EntityType,
    entity_id: UUID,
    link_type: str = "attachment",
) -> AttachmentLink:
    attachment = get_attachment(db, tenant_id, company_id, attachment_id)
    link = _link(db, actor, attachment, entity_type, entity_id, link_type, strict=True)
    log_action(
        db,
        actor=actor,
        action="ATTACHMENT_LINKED",
        entity_type="attachment",
        entity_id=attachment.id,
        company_id=company_id,
        changes={"entity_type": entity_type.value, "entity_id": entity_id},
    )
    return link


# ─── Batch ───────────────────────────────────────────────────────────────────


@dataclass
class BatchResult:
    operation: str
    results: list[dict] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r["success"])

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded


def _apply_batch(attachment: Attachment, operation: str, data: dict[str, Any]) -> None:
    if operation == "delete":
        attachment.status = AttachmentStatus.DELETED
    elif operation == "archive":
        attachment.status = AttachmentStatus.ARCHIVED
    elif operation == "restore":
        attachment.status = AttachmentStatus.ACTIVE
    elif operation == "update_category":
        attachment.category = AttachmentCategory(data["category"])
    elif operation == "add_tags":
        attachment.tags = clean_tags(list(attachment.tags or []) + list(data["tags"]))
    elif operation == "remove_tags":
        drop = set(data["tags"])
        attachment.tags = [t for t in attachment.tags or [] if t not in drop]


def _check_batch_data(operation: str, data: dict[str, Any]) -> None:
    if operation == "update_category":
        try:
            AttachmentCategory(data.get("category"))
        except ValueError:
            raise ValidationFailed(
                "update_category needs a valid data.category", code="INVALID_BATCH_DATA"
            ) from None
    if operation in ("add_tags", "remove_tags"):
        tags = data.get("tags")
        if not isinstance(tags, list) or not tags:
            raise ValidationFailed(
                f"{operation} needs a non-empty data.tags list", code="INVALID_BATCH_DATA"
            )
        if operation == "add_tags":
            clean_tags(tags)


def batch_operation(
    db: Session,
    actor: Actor,
    *,
    tenant_id: UUID,
    company_id: UUID,
    attachment_ids: list[UUID],
    operation: str,
    data: dict[str, Any] | None = None,
) -> BatchResult:
    """Apply *operation* to each attachment, reporting per-id outcomes.

    Ids that do not belong to the tenant are reported as failures and do not
    stop the rest of the batch.
    """
    if operation not in BATCH_OPERATIONS:
        raise ValidationFailed(f"Unknown operation '{operation}'", code="INVALID_OPERATION")
    if not 1 <= len(attachment_ids) <= MAX_BATCH:
        raise ValidationFailed(
            f"Between 1 and {MAX_BATCH} attachment ids are required", code="INVALID_BATCH_SIZE"
        )
    data = data or {}
    _check_batch_data(operation, data)

    found = {
        a.id: a
        for a in db.query(Attachment)
        .filter(
            Attachment.id.in_(set(attachment_ids)),
            Attachment.tenant_id == tenant_id,
            Attachment.company_id == company_id,
        )
        .all()
    }
    result = BatchResult(operation=operation)
    for attachment_id in attachment_ids:
        attachment = found.get(attachment_id)
        if attachment is None or (
            attachment.status == AttachmentStatus.DELETED and operation != "restore"
        ):
            result.results.append(
                {"id": attachment_id, "success": False, "error": "Attachment not found"}
            )
            continue
        try:
            _apply_batch(attachment, operation, data)
        except ValidationFailed as exc:
            result.results.append({"id": attachment_id, "success": False, "error": exc.detail})
            continue
        result.results.append({"id": attachment_id, "success": True, "error": None})

    db.flush()
    log_action(
        db,
        actor=actor,
        action="ATTACHMENTS_BATCH",
        entity_type="attachment",
        entity_id="batch",
        company_id=company_id,
        changes={
            "operation": operation,
            "ids": [r["id"] for r in result.results if r["success"]],
            "failed": result.failed,
        },
    )
    return result
