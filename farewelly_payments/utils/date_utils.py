"""Date manipulation utilities"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Timezone-aware current time in UTC"""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_since(moment: datetime, now: datetime | None = None) -> float:
    """Elapsed days between a past moment and now"""
    now = now or utc_now()
    return (ensure_utc(now) - ensure_utc(moment)).total_seconds() / 86_400
