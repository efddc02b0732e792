"""Subscription lifecycle task."""

from __future__ import annotations

from aibos.app.workers.celery_app import celery


@celery.task(name="aibos.app.workers.tasks.billing.renew_subscriptions")
def renew_subscriptions() -> dict:
    """End trials, renew auto-renewing subscriptions and expire the rest."""
    from aibos.app.core.database import SessionLocal
    from aibos.app.services.subscriptions import renew_subscriptions as _renew

    db = SessionLocal()
    try:
        counts = _renew(db)
        db.commit()
        return counts
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
