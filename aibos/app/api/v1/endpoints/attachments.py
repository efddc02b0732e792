from __future__ import annotations

from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status
from sqlalchemy.orm import Session

from aibos.app.api.deps import TenantContext, require_permission
from aibos.app.core.database import get_db
from aibos.app.models.attachment import (
    Attachment,
    AttachmentCategory,
    AttachmentLink,
    AttachmentStatus,
    EntityType,
)
from aibos.app.schemas.attachments import (
    AttachmentLinkOut,
    AttachmentOut,
    AttachmentPage,
    AttachmentUpdate,
    BatchRequest,
    BatchResultOut,
    LinkCreate,
    UploadOut,
)
from aibos.app.schemas.common import page_meta
from aibos.app.services import attachments as attachment_service

router = APIRouter()


def _split_tags(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [t for t in (part.strip() for part in raw.split(",")) if t]


@router.post("", response_model=UploadOut, status_code=status.HTTP_201_CREATED)
async def upload_attachment(
    response: Response,
    file: UploadFile = File(...),
    category: AttachmentCategory = Form(AttachmentCategory.OTHER),
    tags: str | None = Form(None, description="Comma-separated tags"),
    description: str | None = Form(None, max_length=1000),
    is_public: bool = Form(False),
    entity_type: EntityType | None = Form(None),
    entity_id: UUID | None = Form(None),
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("attachment:upload")),
) -> UploadOut:
    content = await file.read()
    company = ctx.require_company()
    result = attachment_service.upload_attachment(
        db,
        ctx.actor,
        tenant_id=ctx.tenant.id,
        company_id=company.id,
        filename=file.filename or "upload",
        content=content,
        mime_type=file.content_type,
        category=category,
        tags=_split_tags(tags),
        description=description,
        is_public=is_public,
        entity_type=entity_type,
        entity_id=entity_id,
    )
    db.commit()
    db.refresh(result.attachment)
    if result.duplicate:
        response.status_code = status.HTTP_200_OK
    return UploadOut(
        attachment=AttachmentOut.model_validate(result.attachment),
        duplicate=result.duplicate,
    )


@router.get("", response_model=AttachmentPage)
def list_attachments(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("attachment:read")),
    category: AttachmentCategory | None = Query(None),
    status_filter: AttachmentStatus | None = Query(None, alias="status"),
    entity_type: EntityType | None = Query(None),
    entity_id: UUID | None = Query(None),
    tag: str | None = Query(None, max_length=50),
    search: str | None = Query(None, max_length=200),
    sort_by: Literal["created_at", "filename", "file_size"] = Query("created_at"),
    sort_order: Literal["asc", "desc"] = Query("desc"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> AttachmentPage:
    rows, total = attachment_service.list_attachments(
        db,
        ctx.tenant.id,
        ctx.require_company().id,
        category=category,
        status=status_filter,
        entity_type=entity_type,
        entity_id=entity_id,
        tag=tag,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return AttachmentPage(
        data=[AttachmentOut.model_validate(a) for a in rows],
        meta=page_meta(page, limit, total),
    )


@router.post("/batch", response_model=BatchResultOut)
def batch_attachments(
    body: BatchRequest,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("attachment:manage")),
) -> BatchResultOut:
    result = attachment_service.batch_operation(
        db,
        ctx.actor,
        tenant_id=ctx.tenant.id,
        company_id=ctx.require_company().id,
        attachment_ids=body.attachment_ids,
        operation=body.operation,
        data=body.data,
    )
    db.commit()
    return BatchResultOut(
        operation=result.operation,
        succeeded=result.succeeded,
        failed=result.failed,
        results=result.results,
    )


@router.get("/{attachment_id}", response_model=AttachmentOut)
def get_attachment(
    attachment_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("attachment:read")),
) -> Attachment:
    return attachment_service.get_attachment(
        db, ctx.tenant.id, ctx.require_company().id, attachment_id
    )


@router.get("/{attachment_id}/download")
def download_attachment(
    attachment_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("attachment:read")),
) -> Response:
    attachment = attachment_service.get_attachment(
        db, ctx.tenant.id, ctx.require_company().id, attachment_id
    )
    return Response(
        content=attachment_service.read_content(attachment),
        media_type=attachment.mime_type,
        headers={
            "Content-Disposition": f'attachment; filename="{attachment.original_filename}"'
        },
    )


@router.patch("/{attachment_id}", response_model=AttachmentOut)
def update_attachment(
    attachment_id: UUID,
    body: AttachmentUpdate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("attachment:upload")),
) -> Attachment:
    attachment = attachment_service.update_attachment(
        db,
        ctx.actor,
        tenant_id=ctx.tenant.id,
        company_id=ctx.require_company().id,
        attachment_id=attachment_id,
        changes=body.model_dump(exclude_unset=True),
    )
    db.commit()
    db.refresh(attachment)
    return attachment


@router.delete("/{attachment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_attachment(
    attachment_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("attachment:manage")),
) -> None:
    attachment_service.delete_attachment(
        db,
        ctx.actor,
        tenant_id=ctx.tenant.id,
        company_id=ctx.require_company().id,
        attachment_id=attachment_id,
    )
    db.commit()


@router.post(
    "/{attachment_id}/links",
    response_model=AttachmentLinkOut,
    status_code=status.HTTP_201_CREATED,
)
def link_attachment(
    attachment_id: UUID,
    body: LinkCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("attachment:upload")),
) -> AttachmentLink:
    link = attachment_service.link_attachment(
        db,
        ctx.actor,
        tenant_id=ctx.tenant.id,
        company_id=ctx.require_company().id,
        attachment_id=attachment_id,
        entity_type=body.entity_type,
        entity_id=body.entity_id,
        link_type=body.link_type,
    )
    db.commit()
    db.refresh(link)
    return link
