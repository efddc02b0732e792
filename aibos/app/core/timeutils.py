"""Timezone helpers.

SQLite hands back naive datetimes for ``DateTime(timezone=True)`` columns,
Postgres hands back aware ones. Everything compared in Python goes through
:func:`as_utc` first.
"""

from __future__ import annotations

from datetime import date, datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def today() -> date:
    return utcnow().date()


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
