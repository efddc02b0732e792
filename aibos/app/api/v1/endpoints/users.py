from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from aibos.app.api.deps import TenantContext, require_permission
from aibos.app.api.v1.endpoints.auth import membership_out
from aibos.app.core.database import get_db
from aibos.app.models.user import Membership
from aibos.app.schemas.users import (
    MemberCreate,
    MemberOut,
    MemberUpdate,
    UserOut,
    member_flags,
)
from aibos.app.services import users as user_service

router = APIRouter()


def _member_out(membership: Membership) -> MemberOut:
    return MemberOut(
        **membership_out(membership).model_dump(),
        user=UserOut.model_validate(membership.user),
    )


@router.get("", response_model=list[MemberOut])
def list_members(
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("user:read")),
    include_inactive: bool = Query(False),
) -> list[MemberOut]:
    members = user_service.list_members(db, ctx.tenant.id, include_inactive=include_inactive)
    return [_member_out(m) for m in members]


@router.post("", response_model=MemberOut, status_code=status.HTTP_201_CREATED)
def create_member(
    body: MemberCreate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("user:manage")),
) -> MemberOut:
    membership = user_service.create_member(
        db,
        ctx.actor,
        tenant_id=ctx.tenant.id,
        email=body.email,
        role=body.role.value,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        company_id=body.company_id,
        permissions=body.permissions,
        flags=member_flags(body),
    )
    db.commit()
    db.refresh(membership)
    return _member_out(membership)


@router.get("/{user_id}", response_model=MemberOut)
def get_member(
    user_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("user:read")),
) -> MemberOut:
    return _member_out(user_service.get_member(db, ctx.tenant.id, user_id))


@router.patch("/{user_id}", response_model=MemberOut)
def update_member(
    user_id: UUID,
    body: MemberUpdate,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("user:manage")),
) -> MemberOut:
    changes = body.model_dump(exclude_unset=True)
    if body.role is not None:
        changes["role"] = body.role.value
    membership = user_service.update_member(
        db, ctx.actor, tenant_id=ctx.tenant.id, user_id=user_id, changes=changes
    )
    db.commit()
    db.refresh(membership)
    return _member_out(membership)


@router.delete("/{user_id}", response_model=MemberOut)
def deactivate_member(
    user_id: UUID,
    db: Session = Depends(get_db),
    ctx: TenantContext = Depends(require_permission("user:manage")),
) -> MemberOut:
    membership = user_service.deactivate_member(
        db, ctx.actor, tenant_id=ctx.tenant.id, user_id=user_id
    )
    db.commit()
    db.refresh(membership)
    return _member_out(membership)
