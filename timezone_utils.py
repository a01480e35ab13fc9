"""Timezone and formatting helpers.

All instants are stored as timezone-aware UTC datetimes. Calendar arithmetic
(days, weekdays, months) always happens on the local calendar of the
reminder's IANA timezone, then the result is converted back to UTC.
"""

from datetime import date, datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from errors import ValidationError


def get_zone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name, rejecting unknown names."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError) as e:
        raise ValidationError(f"Unknown timezone: {name!r}") from e


def parse_time_of_day(value: str) -> time:
    """Parse a "HH:MM" 24-hour time of day."""
    try:
        hours, minutes = value.split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, ValueError) as e:
        raise ValidationError(f"Invalid time of day {value!r}, expected HH:MM") from e


def ensure_utc(dt: datetime) -> datetime:
    """Return dt as an aware UTC datetime. Naive values are taken as UTC.

    SQLite drops tzinfo on the way back out, so everything read from the
    store passes through here.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def localize(dt: datetime, tz_name: str) -> datetime:
    """Read a naive datetime as wall-clock time in tz_name; return aware UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=get_zone(tz_name))
    return ensure_utc(dt)


def to_local(dt: datetime, tz_name: str) -> datetime:
    return ensure_utc(dt).astimezone(get_zone(tz_name))


def local_date(dt: datetime, tz_name: str) -> date:
    return to_local(dt, tz_name).date()


def combine_local(day: date, at: time, tz_name: str) -> datetime:
    """Build the UTC instant for a local calendar day and wall-clock time."""
    local = datetime.combine(day, at, tzinfo=get_zone(tz_name))
    return local.astimezone(timezone.utc)


def parse_datetime_to_utc(value: str, default_tz: str) -> datetime:
    """Parse an ISO datetime string and convert to UTC.

    Handles:
    - ISO with offset: "2025-11-06T15:00:00+05:30" → converted to UTC
    - ISO with Z: "2025-11-06T15:00:00Z" → already UTC
    - Naive ISO: "2025-11-06T15:00:00" → taken in default_tz
    """
    try:
        dt = datetime.fromisoformat(value.strip().strip("'\"").replace('Z', '+00:00'))
    except (AttributeError, ValueError) as e:
        raise ValidationError(f"Invalid ISO 8601 timestamp: {value!r}") from e

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=get_zone(default_tz))
    return dt.astimezone(timezone.utc)


def parse_calendar_day(value: str, tz_name: str) -> date:
    """Parse an exclusion entry into a local calendar day.

    Accepts a plain "YYYY-MM-DD" day or a full ISO timestamp, which is
    converted to its calendar day in tz_name.
    """
    text = value.strip()
    if len(text) == 10:
        try:
            return date.fromisoformat(text)
        except ValueError as e:
            raise ValidationError(f"Invalid calendar day: {value!r}") from e
    return local_date(parse_datetime_to_utc(text, tz_name), tz_name)


def format_in_timezone(dt: Optional[datetime], tz_name: str) -> str:
    """Format an instant for display, e.g. "Oct 18, 2026, 09:00 AM"."""
    if dt is None:
        return "Completed"
    local = to_local(dt, tz_name)
    return f"{local:%b} {local.day}, {local.year}, {local:%I:%M %p}"

