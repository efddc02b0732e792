"""Celery application instance.

Start the worker::

    celery -A aibos.app.workers.celery_app worker --loglevel=info
    celery -A aibos.app.workers.celery_app beat --loglevel=info
"""

from __future__ import annotations

from celery import Celery
from celery.schedules import crontab

from aibos.app.core.config import settings

celery = Celery(
    "aibos",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "aibos.app.workers.tasks.billing",
        "aibos.app.workers.tasks.cleanup",
        "aibos.app.workers.tasks.ledger",
        "aibos.app.workers.tasks.notifications",
    ],
)

celery.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone=settings.CELERY_TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)

# Periodic tasks
celery.conf.beat_schedule = {
    "process-reversing-entries-daily": {
        "task": "aibos.app.workers.tasks.ledger.process_reversing_entries",
        "schedule": crontab(hour=1, minute=0),
    },
    "mark-overdue-documents-daily": {
        "task": "aibos.app.workers.tasks.ledger.mark_overdue_documents",
        "schedule": crontab(hour=1, minute=30),
    },
    "renew-subscriptions-daily": {
        "task": "aibos.app.workers.tasks.billing.renew_subscriptions",
        "schedule": crontab(hour=2, minute=0),
    },
    "purge-idempotency-keys-hourly": {
        "task": "aibos.app.workers.tasks.cleanup.purge_idempotency_keys",
        "schedule": crontab(minute=15),
    },
    "cleanup-revoked-tokens-hourly": {
        "task": "aibos.app.workers.tasks.cleanup.cleanup_revoked_tokens",
        "schedule": crontab(minute=0),
    },
}
