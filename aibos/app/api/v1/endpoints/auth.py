from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from aibos.app.api.deps import client_ip, get_current_user, oauth2_scheme
from aibos.app.core.database import get_db
from aibos.app.core.errors import DomainError
from aibos.app.core.security import create_access_token
from aibos.app.middleware.rate_limit import InMemoryRateLimiter
from aibos.app.models.user import Membership, User
from aibos.app.schemas.common import Message
from aibos.app.schemas.users import (
    ChangePasswordIn,
    MembershipOut,
    MeOut,
    RegisterIn,
    TokenOut,
    UserOut,
)
from aibos.app.services import users as user_service

router = APIRouter()

# Per-IP login limiter. With several API replicas this belongs in Redis.
login_limiter = InMemoryRateLimiter(window_seconds=60, max_attempts=5)


def membership_out(membership: Membership) -> MembershipOut:
    return MembershipOut(
        id=membership.id,
        tenant_id=membership.tenant_id,
        company_id=membership.company_id,
        role=membership.role,
        permissions=user_service.membership_permissions(membership),
        can_manage_users=membership.can_manage_users,
        can_manage_settings=membership.can_manage_settings,
        can_view_reports=membership.can_view_reports,
        can_manage_companies=membership.can_manage_companies,
        is_active=membership.is_active,
    )


@router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterIn,
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    user = user_service.register_user(
        db,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        ip_address=client_ip(request),
    )
    db.commit()
    db.refresh(user)
    return user


@router.post("/login/access-token", response_model=TokenOut)
def login_access_token(
    request: Request,
    db: Session = Depends(get_db),
    form_data: OAuth2PasswordRequestForm = Depends(),
) -> TokenOut:
    ip = client_ip(request)
    login_limiter.check(ip)

    try:
        user = user_service.authenticate(
            db,
            email=form_data.username,
            password=form_data.password,
            ip_address=ip,
            user_agent=request.headers.get("user-agent"),
        )
    except DomainError:
        # Keep the failure audit rows and lockout counters.
        db.commit()
        raise
    db.commit()
    return TokenOut(access_token=create_access_token(subject=str(user.id)))


@router.post("/logout", response_model=Message)
def logout(
    request: Request,
    db: Session = Depends(get_db),
    token: str = Depends(oauth2_scheme),
    current_user: User = Depends(get_current_user),
) -> Message:
    """Invalidate the current access token."""
    user_service.logout(db, current_user, token, ip_address=client_ip(request))
    db.commit()
    return Message(detail="Logged out successfully")


@router.get("/me", response_model=MeOut)
def me(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MeOut:
    memberships = user_service.active_memberships(db, current_user.id)
    return MeOut(
        **UserOut.model_validate(current_user).model_dump(),
        memberships=[membership_out(m) for m in memberships],
    )


@router.post("/change-password", response_model=Message)
def change_password(
    body: ChangePasswordIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Message:
    user_service.change_password(
        db,
        current_user,
        current_password=body.current_password,
        new_password=body.new_password,
    )
    db.commit()
    return Message(detail="Password changed")
