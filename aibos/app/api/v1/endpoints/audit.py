from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from aibos.app.api.deps import TenantContext, require_permission
from aibos.app.core.database import get_db
from aibos.app.schemas.audit import AuditLogOut, AuditLogPage
from aibos.app.schemas.common import page_meta
from aibos.app.services.audit import list_audit_logs

router = APIRouter()


@router.get("", response_model=AuditLogPage)
def get_audit_logs(
    entity_type: str | None = Query(None, description="e.g. journal, invoice, period"),
    entity_id: str | None = Query(None),
    action: str | None = Query(None, description="e.g. JOURNAL_POSTED, LOGIN_FAILED"),
    user_id: UUID | None = Query(None),
    from_date: date | None = Query(None, alias="from"),
    to_date: date | None = Query(None, alias="to"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("audit:read")),
) -> AuditLogPage:
    rows, total = list_audit_logs(
        db,
        tenant_id=ctx.tenant.id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        user_id=user_id,
        from_date=from_date,
        to_date=to_date,
        page=page,
        limit=limit,
    )
    return AuditLogPage(
        data=[AuditLogOut.model_validate(r) for r in rows],
        meta=page_meta(page, limit, total),
    )
