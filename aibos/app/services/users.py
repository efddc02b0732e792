"""User accounts, login and tenant memberships.

All mutations are audit-logged. This module does NOT call db.commit();
the caller (endpoint) is responsible for committing. Login failures are
audited before the error is raised, so the endpoint commits on failure too.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from aibos.app.core.config import settings
from aibos.app.core.errors import (
    AccountLocked,
    AuthenticationFailed,
    ConflictError,
    NotFoundError,
    PermissionDenied,
    ValidationFailed,
)
from aibos.app.core.permissions import (
    ROLE_MANAGERS,
    MembershipRole,
    effective_permissions,
)
from aibos.app.core.security import (
    get_password_hash,
    revoke_token,
    validate_password_strength,
    verify_password,
)
from aibos.app.core.timeutils import as_utc, utcnow
from aibos.app.models.tenant import Company
from aibos.app.models.user import Membership, User
from aibos.app.services.audit import Actor, log_action

logger = logging.getLogger(__name__)

MEMBER_FLAGS = (
    "can_manage_users",
    "can_manage_settings",
    "can_view_reports",
    "can_manage_companies",
)
_ROLES = {r.value for r in MembershipRole}


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _check_password(password: str) -> None:
    error = validate_password_strength(password)
    if error:
        raise ValidationFailed(error, code="WEAK_PASSWORD")


def find_user_by_email(db: Session, email: str) -> User | None:
    return (
        db.query(User)
        .filter(func.lower(User.email) == _normalize_email(email))
        .first()
    )


def register_user(
    db: Session,
    *,
    email: str,
    password: str,
    first_name: str | None = None,
    last_name: str | None = None,
    ip_address: str | None = None,
) -> User:
    """Create a user account. Raises EMAIL_TAKEN if the address is in use."""
    _check_password(password)
    if find_user_by_email(db, email):
        raise ConflictError("Email is already registered", code="EMAIL_TAKEN")

    user = User(
        email=_normalize_email(email),
        first_name=first_name,
        last_name=last_name,
        hashed_password=get_password_hash(password),
    )
    db.add(user)
    db.flush()

    log_action(
        db,
        actor=Actor(user_id=user.id, ip_address=ip_address),
        action="USER_REGISTERED",
        entity_type="user",
        entity_id=user.id,
        changes={"email": user.email},
    )
    return user


def authenticate(
    db: Session,
    *,
    email: str,
    password: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
    now: datetime | None = None,
) -> User:
    """Check credentials, tracking failures and locking the account.

    Raises AccountLocked (423) while a lockout is active, AuthenticationFailed
    (401) for bad credentials and PermissionDenied for inactive users.
    """
    now = now or utcnow()
    user = find_user_by_email(db, email)

    def audit(action: str, changes: dict[str, Any]) -> None:
        log_action(
            db,
            actor=Actor(
                user_id=user.id if user else None,
                ip_address=ip_address,
                user_agent=user_agent,
            ),
            action=action,
            entity_type="auth",
            entity_id=user.id if user else _normalize_email(email),
            changes=changes,
        )

    if user and user.locked_until:
        locked_until = as_utc(user.locked_until)
        if now < locked_until:
            remaining = int((locked_until - now).total_seconds() // 60) + 1
            audit("LOGIN_BLOCKED", {"reason": "account_locked"})
            raise AccountLocked(f"Account locked. Try again in {remaining} minutes.")
        user.failed_login_attempts = 0
        user.locked_until = None

    if not user or not verify_password(password, user.hashed_password):
        if user:
            user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
            if user.failed_login_attempts >= settings.MAX_LOGIN_ATTEMPTS:
                user.locked_until = now + timedelta(minutes=settings.LOCKOUT_MINUTES)
                audit("ACCOUNT_LOCKED", {"failed_attempts": user.failed_login_attempts})
                logger.warning("Account %s locked after repeated failures", user.id)
        audit("LOGIN_FAILED", {"reason": "invalid_credentials"})
        db.flush()
        raise AuthenticationFailed("Incorrect email or password")

    if not user.is_active:
        audit("LOGIN_FAILED", {"reason": "inactive_user"})
        db.flush()
        raise PermissionDenied("Inactive user", code="USER_INACTIVE")

    user.failed_login_attempts = 0
    user.locked_until = None
    audit("LOGIN_SUCCESS", {"email": user.email})
    db.flush()
    return user


def logout(db: Session, user: User, token: str, *, ip_address: str | None = None) -> None:
    revoke_token(token)
    log_action(
        db,
        actor=Actor(user_id=user.id, ip_address=ip_address),
        action="LOGOUT",
        entity_type="auth",
        entity_id=user.id,
    )


def active_memberships(db: Session, user_id: UUID) -> list[Membership]:
    return (
        db.query(Membership)
        .filter(Membership.user_id == user_id, Membership.is_active.is_(True))
        .order_by(Membership.created_at)
        .all()
    )


def membership_permissions(membership: Membership) -> list[str]:
    return sorted(effective_permissions(membership.role, membership.permissions))


# ─── Members of a tenant ─────────────────────────────────────────────────────


def list_members(
    db: Session, tenant_id: UUID, *, include_inactive: bool = False
) -> list[Membership]:
    query = (
        db.query(Membership)
        .options(joinedload(Membership.user))
        .filter(Membership.tenant_id == tenant_id)
    )
    if not include_inactive:
        query = query.filter(Membership.is_active.is_(True))
    return query.order_by(Membership.created_at.desc()).all()


def get_member(db: Session, tenant_id: UUID, user_id: UUID) -> Membership:
    membership = (
        db.query(Membership)
        .options(joinedload(Membership.user))
        .filter(Membership.tenant_id == tenant_id, Membership.user_id == user_id)
        .first()
    )
    if membership is None:
        raise NotFoundError("Member not found", code="MEMBER_NOT_FOUND")
    return membership


def check_role_assignment(actor: Actor, role: str) -> None:
    """Only admins and managers hand out roles, and only admins create admins."""
    if role not in _ROLES:
        raise ValidationFailed(f"Unknown role '{role}'", code="INVALID_ROLE")
    if actor.role not in ROLE_MANAGERS:
        raise PermissionDenied(
            "Only admins and managers may assign roles", code="ROLE_ASSIGNMENT_DENIED"
        )
    if role == MembershipRole.ADMIN.value and actor.role != MembershipRole.ADMIN.value:
        raise PermissionDenied(
            "Only an admin may assign the admin role", code="ROLE_ASSIGNMENT_DENIED"
        )


def _check_company(db: Session, tenant_id: UUID, company_id: UUID | None) -> None:
    if company_id is None:
        return
    exists = (
        db.query(Company.id)
        .filter(Company.id == company_id, Company.tenant_id == tenant_id)
        .first()
    )
    if not exists:
        raise NotFoundError("Company not found", code="COMPANY_NOT_FOUND")


def _check_overrides(permissions: dict[str, Any] | None) -> dict[str, list[str]]:
    if not permissions:
        return {}
    unknown = set(permissions) - {"allow", "deny"}
    if unknown:
        raise ValidationFailed(
            "Permission overrides may only contain 'allow' and 'deny'",
            code="INVALID_PERMISSIONS",
        )
    return {k: [str(p) for p in v or []] for k, v in permissions.items()}


def create_member(
    db: Session,
    actor: Actor,
    *,
    tenant_id: UUID,
    email: str,
    role: str,
    password: str | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
    company_id: UUID | None = None,
    permissions: dict[str, Any] | None = None,
    flags: dict[str, bool] | None = None,
) -> Membership:
    """Add a member to the tenant, creating the user account if needed."""
    check_role_assignment(actor, role)
    _check_company(db, tenant_id, company_id)
    overrides = _check_overrides(permissions)

    user = find_user_by_email(db, email)
    if user is None:
        if not password:
            raise ValidationFailed(
                "A password is required for a new user", code="PASSWORD_REQUIRED"
            )
        _check_password(password)
        user = User(
            email=_normalize_email(email),
            first_name=first_name,
            last_name=last_name,
            hashed_password=get_password_hash(password),
        )
        db.add(user)
        db.flush()

    membership = (
        db.query(Membership)
        .filter(Membership.tenant_id == tenant_id, Membership.user_id == user.id)
        .first()
    )
    if membership is not None and membership.is_active:
        raise ConflictError("User is already a member of this tenant", code="MEMBER_EXISTS")
    if membership is None:
        membership = Membership(user_id=user.id, tenant_id=tenant_id)
        db.add(membership)
    membership.role = role
    membership.company_id = company_id
    membership.permissions = overrides
    membership.is_active = True
    for flag, value in (flags or {}).items():
        if flag in MEMBER_FLAGS:
            setattr(membership, flag, bool(value))
    db.flush()

    log_action(
        db,
        actor=actor,
        action="MEMBER_CREATED",
        entity_type="membership",
        entity_id=membership.id,
        changes={"email": user.email, "role": role, "company_id": company_id},
    )
    logger.info("User %s added to tenant %s as %s", user.id, tenant_id, role)
    return membership


def update_member(
    db: Session,
    actor: Actor,
    *,
    tenant_id: UUID,
    user_id: UUID,
    changes: dict[str, Any],
) -> Membership:
    membership = get_member(db, tenant_id, user_id)
    is_self = user_id == actor.user_id
    old: dict[str, Any] = {}
    new: dict[str, Any] = {}

    role = changes.get("role")
    if role is not None and role != membership.role:
        if is_self:
            raise PermissionDenied("You cannot change your own role", code="CANNOT_CHANGE_OWN_ROLE")
        check_role_assignment(actor, role)
        # Demoting an admin is itself an admin-only action.
        if membership.role == MembershipRole.ADMIN.value and actor.role != MembershipRole.ADMIN.value:
            raise PermissionDenied(
                "Only an admin may change another admin's role", code="ROLE_ASSIGNMENT_DENIED"
            )
        old["role"], new["role"] = membership.role, role
        membership.role = role

    is_active = changes.get("is_active")
    if is_active is not None and is_active != membership.is_active:
        if is_self and not is_active:
            raise PermissionDenied("You cannot deactivate yourself", code="CANNOT_DEACTIVATE_SELF")
        old["is_active"], new["is_active"] = membership.is_active, is_active
        membership.is_active = is_active

    if "company_id" in changes and changes["company_id"] != membership.company_id:
        _check_company(db, tenant_id, changes["company_id"])
        old["company_id"], new["company_id"] = membership.company_id, changes["company_id"]
        membership.company_id = changes["company_id"]

    if changes.get("permissions") is not None:
        overrides = _check_overrides(changes["permissions"])
        if overrides != membership.permissions:
            old["permissions"], new["permissions"] = membership.permissions, overrides
            membership.permissions = overrides

    for flag in MEMBER_FLAGS:
        value = changes.get(flag)
        if value is not None and value != getattr(membership, flag):
            old[flag], new[flag] = getattr(membership, flag), value
            setattr(membership, flag, value)

    if new:
        db.flush()
        log_action(
            db,
            actor=actor,
            action="MEMBER_UPDATED",
            entity_type="membership",
            entity_id=membership.id,
            changes=new,
            old_values=old,
        )
    return membership


def deactivate_member(db: Session, actor: Actor, *, tenant_id: UUID, user_id: UUID) -> Membership:
    if user_id == actor.user_id:
        raise PermissionDenied("You cannot deactivate yourself", code="CANNOT_DEACTIVATE_SELF")
    membership = get_member(db, tenant_id, user_id)
    if membership.role == MembershipRole.ADMIN.value and actor.role != MembershipRole.ADMIN.value:
        raise PermissionDenied(
            "Only an admin may deactivate another admin", code="ROLE_ASSIGNMENT_DENIED"
        )
    if membership.is_active:
        membership.is_active = False
        db.flush()
        log_action(
            db,
            actor=actor,
            action="MEMBER_DEACTIVATED",
            entity_type="membership",
            entity_id=membership.id,
            changes={"is_active": False},
        )
    return membership


def change_password(
    db: Session,
    user: User,
    *,
    current_password: str,
    new_password: str,
) -> User:
    if not verify_password(current_password, user.hashed_password):
        raise ValidationFailed("Current password is incorrect", code="INVALID_PASSWORD")
    _check_password(new_password)
    user.hashed_password = get_password_hash(new_password)
    db.flush()
    log_action(
        db,
        actor=Actor(user_id=user.id),
        action="USER_PASSWORD_CHANGED",
        entity_type="user",
        entity_id=user.id,
    )
    return user
