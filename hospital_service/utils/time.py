"""Time and datetime utilities."""

from collections.abc import Callable
from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo

# Every "now" comparison in the services goes through one of these
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Get current UTC datetime.

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from the database.

    SQLite drops tzinfo on storage; all stored values are UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_local(dt: datetime, tz_name: str) -> datetime:
    """Convert a datetime to the named zone."""
    return as_utc(dt).astimezone(ZoneInfo(tz_name))


def start_of_local_day(dt: datetime, tz_name: str) -> datetime:
    """Return the UTC instant at which the local day containing dt began."""
    local = to_local(dt, tz_name)
    midnight = datetime.combine(local.date(), time.min, tzinfo=local.tzinfo)
    return midnight.astimezone(timezone.utc)


def parse_hhmm(value: str) -> time:
    """Parse an "HH:MM" string into a time.

    Raises:
        ValueError: If the string is not a valid 24-hour time
    """
    hours, _, minutes = value.partition(":")
    return time(int(hours), int(minutes))
