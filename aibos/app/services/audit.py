from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from aibos.app.models.audit import AuditLog


@dataclass(frozen=True)
class Actor:
    """Who is doing something, and where. Passed to every mutating service."""

    user_id: UUID | None
    tenant_id: UUID | None = None
    company_id: UUID | None = None
    role: str = "user"
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None
    permissions: frozenset[str] = field(default_factory=frozenset)


def log_action(
    db: Session,
    *,
    actor: Actor,
    action: str,
    entity_type: str,
    entity_id: Any,
    changes: dict[str, Any] | None = None,
    old_values: dict[str, Any] | None = None,
    company_id: UUID | None = None,
) -> None:
    """Write a single row to the audit_logs table.

    Does NOT call db.commit(). The caller commits it as part of its own
    transaction.
    """
    db.add(
        AuditLog(
            tenant_id=actor.tenant_id,
            company_id=company_id or actor.company_id,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            user_id=actor.user_id,
            old_values=jsonable_encoder(old_values) if old_values is not None else None,
            new_values=jsonable_encoder(changes) if changes is not None else None,
            ip_address=actor.ip_address,
            user_agent=(actor.user_agent or "")[:500] or None,
            request_id=actor.request_id,
        )
    )


def list_audit_logs(
    db: Session,
    *,
    tenant_id: UUID,
    entity_type: str | None = None,
    entity_id: str | None = None,
    action: str | None = None,
    user_id: UUID | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[AuditLog], int]:
    query = db.query(AuditLog).filter(AuditLog.tenant_id == tenant_id)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id:
        query = query.filter(AuditLog.entity_id == entity_id)
    if action:
        query = query.filter(AuditLog.action == action)
    if user_id:
        query = query.filter(AuditLog.user_id == user_id)
    if from_date:
        query = query.filter(
            AuditLog.created_at >= datetime.combine(from_date, time.min, tzinfo=timezone.utc)
        )
    if to_date:
        query = query.filter(
            AuditLog.created_at
            < datetime.combine(to_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
        )
    total = query.count()
    rows = (
        query.order_by(AuditLog.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total
