from __future__ import annotations

import re
import uuid
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from passlib.context import CryptContext

from aibos.app.core.config import settings
from aibos.app.core.timeutils import utcnow

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ALGORITHM = "HS256"
MIN_PASSWORD_LENGTH = 12

_PASSWORD_RULES: list[tuple[str, str]] = [
    (r"[A-Z]", "Password must contain at least one uppercase letter"),
    (r"[a-z]", "Password must contain at least one lowercase letter"),
    (r"\d", "Password must contain at least one digit"),
    (
        r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]",
        "Password must contain at least one special character",
    ),
]

# Revoked token ids mapped to the token's expiry.
# With multiple API replicas this belongs in Redis.
_revoked_tokens: dict[str, datetime] = {}


def create_access_token(subject: str, expires_delta: timedelta | None = None) -> str:
    now = utcnow()
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {"sub": subject, "iat": now, "exp": expire, "jti": uuid.uuid4().hex}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def validate_password_strength(password: str) -> str | None:
    """Return an error message when *password* is too weak, else None."""
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    for pattern, message in _PASSWORD_RULES:
        if not re.search(pattern, password):
            return message
    return None


def _token_id(token: str) -> tuple[str | None, datetime | None]:
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return None, None
    exp = claims.get("exp")
    expires = datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None
    return claims.get("jti"), expires


def revoke_token(token: str) -> None:
    """Deny-list a token until it would have expired anyway."""
    jti, expires = _token_id(token)
    if jti is not None:
        _revoked_tokens[jti] = expires or utcnow()


def is_token_revoked(token: str) -> bool:
    jti, _ = _token_id(token)
    return jti is not None and jti in _revoked_tokens


def cleanup_expired_tokens(now: datetime | None = None) -> int:
    """Forget revoked tokens whose expiry has passed. Returns how many went."""
    now = now or utcnow()
    expired = [jti for jti, expires in _revoked_tokens.items() if expires <= now]
    for jti in expired:
        del _revoked_tokens[jti]
    return len(expired)
