from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from aibos.app.schemas.common import PageMeta


class AuditLogOut(BaseModel):
    id: UUID
    company_id: UUID | None
    user_id: UUID | None
    action: str
    entity_type: str
    entity_id: str
    old_values: dict[str, Any] | None
    new_values: dict[str, Any] | None
    ip_address: str | None
    user_agent: str | None
    request_id: str | None
    created_at: datetime

    class Config:
        from_attributes = True


class AuditLogPage(BaseModel):
    data: list[AuditLogOut]
    meta: PageMeta
