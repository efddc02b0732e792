"""Out-of-request notification delivery."""

from __future__ import annotations

import logging

from aibos.app.workers.celery_app import celery

logger = logging.getLogger(__name__)


@celery.task(name="aibos.app.workers.tasks.notifications.send_notification")
def send_notification(
    notification_type: str,
    recipient_email: str,
    template_kwargs: dict,
) -> dict:
    from aibos.app.services.notification_service import (
        NotificationService,
        NotificationType,
    )

    try:
        ntype = NotificationType(notification_type)
    except ValueError:
        logger.warning("Dropping notification of unknown type %s", notification_type)
        return {"status": "rejected", "type": notification_type}

    try:
        delivered = NotificationService().send(ntype, recipient_email, **template_kwargs)
    except KeyError as exc:
        logger.warning("Template %s is missing field %s", ntype.value, exc)
        return {"status": "rejected", "type": notification_type}
    return {"status": "sent" if delivered else "skipped", "type": ntype.value}


@celery.task(name="aibos.app.workers.tasks.notifications.notify_admins")
def notify_admins(tenant_id: str, notification_type: str, template_kwargs: dict) -> dict:
    """Fan a notification out to every active admin of *tenant_id*."""
    from uuid import UUID

    from aibos.app.core.database import SessionLocal
    from aibos.app.services.notification_service import (
        NotificationType,
        notify_tenant_admins,
    )

    db = SessionLocal()
    try:
        delivered = notify_tenant_admins(
            db, UUID(tenant_id), NotificationType(notification_type), **template_kwargs
        )
    finally:
        db.close()
    return {"delivered": delivered}
