"""
Date/time helpers. Everything is stored and compared in UTC.

SQLite hands back naive datetimes even for timezone-aware columns, so every
value read from a row goes through ensure_utc before arithmetic.
"""
from datetime import date, datetime, time, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_today() -> date:
    return utc_now().date()


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def calendar_date(value: Union[date, datetime]) -> date:
    """Calendar date of a date or datetime, time-of-day dropped (UTC)."""
    if isinstance(value, datetime):
        return ensure_utc(value).date()
    return value


def parse_datetime(value: Union[None, str, date, datetime]) -> Optional[datetime]:
    """
    Coerce an ISO string, date, or datetime into an aware UTC datetime.
    Bare dates become midnight UTC. Raises ValueError on unparseable strings.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return parse_datetime(datetime.fromisoformat(text))
    raise ValueError(f"Unsupported date value: {value!r}")
