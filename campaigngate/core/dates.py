"""
Date handling shared by validation and export.

Stored documents carry dates as ISO-8601 strings or datetimes; naive
values are taken to be UTC.
"""

from datetime import date, datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a stored date value.

    Returns:
        Timezone-aware datetime, or None if the value is not a date
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_day(value: Any) -> Optional[str]:
    """YYYY-MM-DD for a stored date value, or None if it does not parse."""
    parsed = parse_datetime(value)
    if parsed is None:
        return None
    return parsed.date().isoformat()
