"""Timezone helpers.

Timestamps are stored as UTC. Some backends (SQLite) drop tzinfo on the way
back, so values read from the database go through ``ensure_utc`` before
they are compared with ``utc_now()``.
"""

from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
