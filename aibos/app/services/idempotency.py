"""Replay protection for POST requests carrying an ``Idempotency-Key`` header.

Does NOT call db.commit(). The caller stores the response in the same
transaction as the write it describes.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from aibos.app.core.config import settings
from aibos.app.core.errors import ConflictError, ValidationFailed
from aibos.app.core.timeutils import as_utc, utcnow
from aibos.app.models.idempotency import IdempotencyKey

logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 255


def request_hash(body: Any) -> str:
    """Stable SHA-256 of a request body, independent of key order."""
    canonical = json.dumps(jsonable_encoder(body), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def check_key(key: str) -> str:
    key = key.strip()
    if not key or len(key) > MAX_KEY_LENGTH:
        raise ValidationFailed(
            f"Idempotency-Key must be 1-{MAX_KEY_LENGTH} characters",
            code="INVALID_IDEMPOTENCY_KEY",
        )
    return key


def lookup(
    db: Session,
    *,
    tenant_id: UUID,
    scope: str,
    key: str,
    body_hash: str,
    now: datetime | None = None,
) -> IdempotencyKey | None:
    """Return the stored response for *key*, or None if the request is new.

    A live key reused with a different body is a 409.
    """
    now = now or utcnow()
    record = (
        db.query(IdempotencyKey)
        .filter(
            IdempotencyKey.tenant_id == tenant_id,
            IdempotencyKey.scope == scope,
            IdempotencyKey.key == key,
        )
        .first()
    )
    if record is None:
        return None
    if as_utc(record.expires_at) <= now:
        db.delete(record)
        db.flush()
        return None
    if record.request_hash != body_hash:
        logger.warning("Idempotency key %s reused with a different body on %s", key, scope)
        raise ConflictError(
            "Idempotency-Key was already used with a different request body",
            code="IDEMPOTENCY_KEY_REUSED",
        )
    return record


def store(
    db: Session,
    *,
    tenant_id: UUID,
    scope: str,
    key: str,
    body_hash: str,
    status_code: int,
    response_body: Any,
    now: datetime | None = None,
) -> IdempotencyKey:
    now = now or utcnow()
    record = IdempotencyKey(
        tenant_id=tenant_id,
        scope=scope,
        key=key,
        request_hash=body_hash,
        response_status=status_code,
        response_body=jsonable_encoder(response_body),
        expires_at=now + timedelta(hours=settings.IDEMPOTENCY_TTL_HOURS),
    )
    db.add(record)
    db.flush()
    return record


def purge_expired(db: Session, now: datetime | None = None) -> int:
    now = now or utcnow()
    count = (
        db.query(IdempotencyKey)
        .filter(IdempotencyKey.expires_at <= now)
        .delete(synchronize_session=False)
    )
    logger.info("Purged %d expired idempotency keys", count)
    return count
