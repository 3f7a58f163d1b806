"""
UTC helpers. Timestamps are stored and compared in UTC everywhere; SQLite
hands back naive values, which are UTC by construction.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
