"""
Time rules and conversion helpers.
All persisted timestamps are UTC; naive values read back from the database are treated as UTC.
"""
from datetime import datetime, date, time, timedelta, timezone
from typing import Optional
import pytz


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to timezone-aware UTC.

    Args:
        dt: Datetime (aware, or naive meaning UTC)

    Returns:
        Aware UTC datetime, or None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.UTC)


def minutes_between(start: datetime, stop: datetime) -> float:
    return (ensure_utc(stop) - ensure_utc(start)).total_seconds() / 60


def calc_duration_minutes(start: Optional[datetime], stop: Optional[datetime]) -> Optional[int]:
    """
    Whole minutes between start and stop.

    Returns None when either side is missing or the interval is negative.
    """
    if start is None or stop is None:
        return None
    diff = minutes_between(start, stop)
    if diff < 0:
        return None
    return int(round(diff))


def parse_hhmm(value: str) -> time:
    hours, minutes = value.strip().split(":", 1)
    return time(int(hours), int(minutes))


def get_timezone(timezone_str: Optional[str]):
    """
    Resolve a timezone name.

    Raises:
        pytz.UnknownTimeZoneError: when the name is not a known zone
    """
    if not timezone_str or not timezone_str.strip():
        raise pytz.UnknownTimeZoneError(timezone_str)
    return pytz.timezone(timezone_str.strip())


def local_to_utc(local_datetime: datetime, timezone_str: str) -> datetime:
    """
    Convert local datetime to UTC.

    Args:
        local_datetime: Local datetime (naive)
        timezone_str: Timezone string (e.g., "Europe/Bucharest")

    Returns:
        UTC datetime (timezone-aware)
    """
    tz = get_timezone(timezone_str)
    if local_datetime.tzinfo is None:
        local_dt = tz.localize(local_datetime)
    else:
        local_dt = local_datetime.astimezone(tz)
    return local_dt.astimezone(pytz.UTC)


def utc_to_local(utc_datetime: datetime, timezone_str: str) -> datetime:
    """
    Convert UTC datetime to local timezone.

    Args:
        utc_datetime: UTC datetime (aware or naive UTC)
        timezone_str: Timezone string

    Returns:
        Local datetime (timezone-aware)
    """
    tz = get_timezone(timezone_str)
    return ensure_utc(utc_datetime).astimezone(tz)


def combine_date_time(date_val: date, time_val: time, timezone_str: str) -> datetime:
    """
    Combine a local date and time into a UTC datetime.
    """
    return local_to_utc(datetime.combine(date_val, time_val), timezone_str)


def local_day_bounds(day: date, timezone_str: str) -> tuple:
    """UTC [start, end) of a local calendar day."""
    start = combine_date_time(day, time.min, timezone_str)
    end = combine_date_time(day + timedelta(days=1), time.min, timezone_str)
    return start, end


def local_days(from_utc: datetime, to_utc: datetime, timezone_str: str) -> list:
    """Local calendar days touched by the UTC window [from_utc, to_utc)."""
    if ensure_utc(to_utc) <= ensure_utc(from_utc):
        return []
    first = utc_to_local(from_utc, timezone_str).date()
    last = utc_to_local(ensure_utc(to_utc) - timedelta(microseconds=1), timezone_str).date()
    days = []
    current = first
    while current <= last:
        days.append(current)
        current += timedelta(days=1)
    return days
