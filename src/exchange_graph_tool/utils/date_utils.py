"""Date and time utilities for Exchange Graph Tool."""

from datetime import datetime
from typing import Optional

import pytz

# Graph expects dateTime values without an offset, the zone goes in timeZone
GRAPH_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S"


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure datetime is in UTC.

    Args:
        dt: Datetime to convert

    Returns:
        UTC datetime
    """
    if dt.tzinfo is None:
        return pytz.utc.localize(dt)
    return dt.astimezone(pytz.utc)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(pytz.utc)


def parse_graph_datetime(value: str, time_zone: Optional[str] = None) -> datetime:
    """
    Parse a Graph dateTimeTimeZone pair into an aware UTC datetime.

    Graph returns up to seven fractional digits ("2024-01-15T10:00:00.0000000"),
    which datetime.fromisoformat does not accept on every interpreter, so the
    fraction is trimmed to microseconds first.

    Args:
        value: dateTime string
        time_zone: IANA or Windows zone name; naive values are taken as UTC
            unless a known IANA zone is given

    Returns:
        UTC datetime
    """
    text = value.strip().replace("Z", "+00:00")
    if "." in text:
        head, _, tail = text.partition(".")
        digits = ""
        for ch in tail:
            if not ch.isdigit():
                break
            digits += ch
        text = f"{head}.{digits[:6].ljust(6, '0')}{tail[len(digits):]}"

    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None and time_zone and time_zone.upper() != "UTC":
        try:
            return ensure_utc(pytz.timezone(time_zone).localize(dt))
        except pytz.UnknownTimeZoneError:
            # Windows zone names; responses are requested in UTC anyway
            pass
    return ensure_utc(dt)


def format_graph_datetime(dt: datetime) -> str:
    """Format a datetime as a UTC Graph dateTime string."""
    return ensure_utc(dt).strftime(GRAPH_DATETIME_FORMAT)
