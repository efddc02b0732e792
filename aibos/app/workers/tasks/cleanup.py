"""Periodic cleanup tasks."""

from __future__ import annotations

from aibos.app.workers.celery_app import celery


@celery.task(name="aibos.app.workers.tasks.cleanup.cleanup_revoked_tokens")
def cleanup_revoked_tokens() -> dict:
    """Purge expired entries from the in-memory revoked-token set.

    Tokens past their ``exp`` claim can no longer be used, so they are dropped.
    """
    from aibos.app.core.security import cleanup_expired_tokens

    removed = cleanup_expired_tokens()
    return {"removed": removed}


@celery.task(name="aibos.app.workers.tasks.cleanup.purge_idempotency_keys")
def purge_idempotency_keys() -> dict:
    from aibos.app.core.database import SessionLocal
    from aibos.app.services.idempotency import purge_expired

    db = SessionLocal()
    try:
        removed = purge_expired(db)
        db.commit()
        return {"removed": removed}
    finally:
        db.close()
