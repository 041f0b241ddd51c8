"""Time helpers for challenge windows."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from backends without tz support (SQLite)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def challenge_window(start: datetime, hours: int) -> tuple[datetime, datetime]:
    """Get (start, end) for a challenge that runs ``hours`` from ``start``."""
    start = as_utc(start)
    return start, start + timedelta(hours=hours)


def has_ended(end_time: datetime, now: datetime) -> bool:
    """True once ``now`` is at or past ``end_time``."""
    return as_utc(now) >= as_utc(end_time)


def seconds_remaining(end_time: datetime, now: datetime) -> int:
    """Whole seconds until ``end_time``, floored at 0."""
    return max(0, int((as_utc(end_time) - as_utc(now)).total_seconds()))
