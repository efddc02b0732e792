"""Tests for token revocation, notification mail and the notification task."""

from __future__ import annotations

from datetime import timedelta

from aibos.app.core import security
from aibos.app.core.timeutils import utcnow
from aibos.app.services.email_service import EmailService, html_to_text


def test_tokens_carry_unique_ids() -> None:
    first = security.decode_access_token(security.create_access_token("u-1"))
    second = security.decode_access_token(security.create_access_token("u-1"))
    assert first["sub"] == "u-1"
    assert first["jti"] != second["jti"]


def test_revoke_only_affects_that_token() -> None:
    revoked = security.create_access_token("u-2")
    other = security.create_access_token("u-2")
    security.revoke_token(revoked)
    assert security.is_token_revoked(revoked)
    assert not security.is_token_revoked(other)


def test_garbage_token_is_not_revoked() -> None:
    security.revoke_token("not-a-jwt")
    assert not security.is_token_revoked("not-a-jwt")


def test_cleanup_drops_expired_entries() -> None:
    token = security.create_access_token("u-3", expires_delta=timedelta(minutes=5))
    security.revoke_token(token)
    assert security.cleanup_expired_tokens(now=utcnow()) == 0
    assert security.cleanup_expired_tokens(now=utcnow() + timedelta(minutes=6)) >= 1
    assert not security.is_token_revoked(token)


def test_html_to_text() -> None:
    assert html_to_text("<p>Invoice <b>INV-1</b> is due.</p><p>Thanks</p>") == (
        "Invoice INV-1 is due.\nThanks"
    )


def test_message_has_text_and_html_parts() -> None:
    msg = EmailService().build_message(
        "finance@acme.test", "Invoice overdue", "<p>Please pay</p>"
    )
    assert msg["To"] == "finance@acme.test"
    assert [part.get_content_type() for part in msg.iter_parts()] == [
        "text/plain",
        "text/html",
    ]


def test_notification_task_runs_inline() -> None:
    from aibos.app.workers.tasks.notifications import send_notification

    assert send_notification(
        "USAGE_LIMIT_NEAR", "admin@acme.test", {"metric": "api_calls", "percentage": "85"}
    ) == {"status": "skipped", "type": "USAGE_LIMIT_NEAR"}
    assert send_notification("FAX_SENT", "admin@acme.test", {})["status"] == "rejected"
    assert send_notification("INVOICE_ISSUED", "admin@acme.test", {})["status"] == "rejected"
