"""Template-based notification service."""

from __future__ import annotations

import logging
from enum import Enum

from aibos.app.services.email_service import EmailService

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    INVOICE_ISSUED = "INVOICE_ISSUED"
    INVOICE_OVERDUE = "INVOICE_OVERDUE"
    PERIOD_CLOSED = "PERIOD_CLOSED"
    SUBSCRIPTION_CANCELLED = "SUBSCRIPTION_CANCELLED"
    USAGE_LIMIT_NEAR = "USAGE_LIMIT_NEAR"


_TEMPLATES: dict[NotificationType, dict[str, str]] = {
    NotificationType.INVOICE_ISSUED: {
        "subject": "Invoice {invoice_number} from {company_name}",
        "body": (
            "<h2>Invoice {invoice_number}</h2>"
            "<p>An invoice for <strong>{currency} {amount}</strong> is due on "
            "{due_date}.</p>"
        ),
    },
    NotificationType.INVOICE_OVERDUE: {
        "subject": "Payment overdue: invoice {invoice_number}",
        "body": (
            "<h2>Payment Overdue</h2>"
            "<p>Invoice <strong>{invoice_number}</strong> for "
            "<strong>{currency} {amount}</strong> has been overdue since {due_date}.</p>"
        ),
    },
    NotificationType.PERIOD_CLOSED: {
        "subject": "Period {period_name} closed",
        "body": (
            "<h2>Period Closed</h2>"
            "<p>{company_name} period <strong>{period_name}</strong> was closed "
            "by {closed_by}. Posting into it is now blocked.</p>"
        ),
    },
    NotificationType.SUBSCRIPTION_CANCELLED: {
        "subject": "Your {plan_name} subscription was cancelled",
        "body": (
            "<h2>Subscription Cancelled</h2>"
            "<p>Your <strong>{plan_name}</strong> subscription has been cancelled. "
            "Reason: {reason}</p>"
        ),
    },
    NotificationType.USAGE_LIMIT_NEAR: {
        "subject": "Usage of {metric} at {percentage}%",
        "body": (
            "<h2>Usage Alert</h2>"
            "<p>Your tenant has used <strong>{percentage}%</strong> of the "
            "{metric} allowance on its current plan.</p>"
        ),
    },
}


class NotificationService:
    """Send typed notifications using predefined templates."""

    def __init__(self, email: EmailService | None = None) -> None:
        self._email = email or EmailService()

    def render(self, notification_type: NotificationType, **kwargs: str) -> tuple[str, str]:
        template = _TEMPLATES[notification_type]
        return template["subject"].format(**kwargs), template["body"].format(**kwargs)

    def send(
        self,
        notification_type: NotificationType,
        recipient_email: str,
        **kwargs: str,
    ) -> bool:
        """Render the template for *notification_type* and send via email."""
        if notification_type not in _TEMPLATES:
            logger.error("Unknown notification type: %s", notification_type)
            return False

        subject, body = self.render(notification_type, **kwargs)
        return self._email.send(to=recipient_email, subject=subject, body_html=body)


def notify_tenant_admins(
    db,
    tenant_id,
    notification_type: NotificationType,
    service: NotificationService | None = None,
    **kwargs: str,
) -> int:
    """Send *notification_type* to every active admin of a tenant.

    Returns the number of emails actually delivered.
    """
    from aibos.app.models.user import Membership, User

    admins = (
        db.query(User)
        .join(Membership, Membership.user_id == User.id)
        .filter(
            Membership.tenant_id == tenant_id,
            Membership.role == "admin",
            Membership.is_active.is_(True),
            User.is_active.is_(True),
        )
        .all()
    )
    service = service or NotificationService()
    return sum(1 for admin in admins if service.send(notification_type, admin.email, **kwargs))
