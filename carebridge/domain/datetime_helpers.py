import datetime as dt
from zoneinfo import ZoneInfo

from loguru import logger


def time_to_12h(time: dt.time) -> str:
    """Convert ``time(14, 30)`` → ``2:30 PM``.

    No leading zero on the hour (``3:30 PM`` not ``03:30 PM``).
    """
    hour = time.hour % 12 or 12
    period = "AM" if time.hour < 12 else "PM"
    return f"{hour}:{time.strftime('%M')} {period}"


def format_clock(raw: str) -> str:
    """Convert a backend time string like ``"09:00:00"`` → ``9:00 AM``.

    Strings whose hour part is not a number are returned unchanged.
    """
    parts = raw.split(":")
    try:
        hour = int(parts[0])
    except ValueError:
        return raw
    minutes = parts[1] if len(parts) > 1 else "00"
    period = "PM" if hour >= 12 else "AM"
    display_hour = hour % 12 or 12
    return f"{display_hour}:{minutes} {period}"


def clock_hour(raw: str) -> int | None:
    """Hour component of ``"HH:MM[:SS]"``, or None when unparseable."""
    try:
        return int(raw.split(":")[0])
    except ValueError:
        return None


def format_medium_date(date: dt.date) -> str:
    """Convert ``date(2026, 1, 9)`` → ``Jan 9, 2026``."""
    return f"{date.strftime('%b')} {date.day}, {date.year}"


def parse_flexible_date(value: str | None) -> dt.date | None:
    """Parse a backend date that may be a plain date or a full ISO timestamp."""
    if not value:
        return None
    try:
        return dt.date.fromisoformat(value)
    except ValueError:
        pass
    try:
        return dt.datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def parse_flexible_datetime(value: str | None) -> dt.datetime | None:
    if not value:
        return None
    try:
        return dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def resolve_timezone(name: str) -> dt.tzinfo:
    """Resolve a timezone name, falling back to UTC if invalid."""
    try:
        return ZoneInfo(name)
    except Exception:
        logger.warning("Invalid clinic timezone '{}'; defaulting to UTC", name)
        return dt.timezone.utc


def clinic_today(tz: dt.tzinfo) -> dt.date:
    return dt.datetime.now(tz).date()


def is_weekend(date: dt.date) -> bool:
    return date.weekday() >= 5
