"""Outbound email for tenant notifications."""

from __future__ import annotations

import logging
import re
import smtplib
from email.message import EmailMessage

from aibos.app.core.config import settings

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")


def html_to_text(body_html: str) -> str:
    text = body_html.replace("<br>", "\n").replace("</p>", "\n")
    return re.sub(r"\n{3,}", "\n\n", _TAG_RE.sub("", text)).strip()


class EmailService:
    """Deliver notification mail through the configured SMTP relay.

    Tests swap this for a recording subclass; the notification layer
    only relies on :meth:`send` returning whether the message left.
    """

    def build_message(
        self, to: str, subject: str, body_html: str, from_addr: str | None = None
    ) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = from_addr or settings.SMTP_FROM
        msg["To"] = to
        msg.set_content(html_to_text(body_html))
        msg.add_alternative(body_html, subtype="html")
        return msg

    def send(
        self,
        to: str,
        subject: str,
        body_html: str,
        from_addr: str | None = None,
    ) -> bool:
        if not settings.NOTIFICATION_ENABLED:
            logger.info("Notifications disabled, not mailing %s: %s", to, subject)
            return False

        msg = self.build_message(to, subject, body_html, from_addr)
        try:
            with smtplib.SMTP(
                settings.SMTP_HOST, settings.SMTP_PORT, timeout=settings.SMTP_TIMEOUT_SECONDS
            ) as server:
                if settings.SMTP_USE_TLS:
                    server.starttls()
                if settings.SMTP_USERNAME:
                    server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError):
            logger.exception("Mail to %s failed: %s", to, subject)
            return False
        logger.info("Mail sent to %s: %s", to, subject)
        return True
