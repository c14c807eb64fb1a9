"""
Time utilities for the care-line scheduling system

Provides timezone-aware datetime handling so that recurring check-in calls
fire on the patient's calendar day rather than the server's.
"""
import calendar
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

import pytz

logger = logging.getLogger("time-utils")

# Default timezone for the system (UTC)
SYSTEM_TIMEZONE = timezone.utc

# Abbreviations staff commonly type into the enrollment form
TIMEZONE_ALIASES = {
    'EST': 'US/Eastern',
    'EDT': 'US/Eastern',
    'CST': 'US/Central',
    'CDT': 'US/Central',
    'MST': 'US/Mountain',
    'MDT': 'US/Mountain',
    'PST': 'US/Pacific',
    'PDT': 'US/Pacific',
    'AKST': 'US/Alaska',
    'HST': 'US/Hawaii',
}


def now_utc() -> datetime:
    """
    Get current time in UTC

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(SYSTEM_TIMEZONE)


def parse_iso_to_utc(iso_string: str) -> datetime:
    """
    Parse ISO datetime string to UTC datetime

    Args:
        iso_string: ISO format datetime string (a trailing 'Z' is accepted)

    Returns:
        datetime object in UTC timezone

    Raises:
        ValueError: If the ISO string is invalid
    """
    try:
        normalized = iso_string.strip()
        if normalized.endswith('Z'):
            normalized = normalized[:-1] + '+00:00'
        dt = datetime.fromisoformat(normalized)
    except ValueError as e:
        logger.error(f"Failed to parse ISO datetime string '{iso_string}': {e}")
        raise

    if dt.tzinfo is None:
        return dt.replace(tzinfo=SYSTEM_TIMEZONE)
    return dt.astimezone(SYSTEM_TIMEZONE)


def parse_optional_datetime(value) -> Optional[datetime]:
    """Parse a stored timestamp; empty strings and None come back as None"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    return parse_iso_to_utc(str(value))


def format_optional_datetime(value: Optional[datetime]) -> Optional[str]:
    """Serialize a timestamp for storage"""
    return to_utc(value).isoformat() if value else None


def get_timezone(timezone_name: Optional[str], default: str = 'UTC'):
    """
    Resolve a patient timezone name to a pytz timezone

    Args:
        timezone_name: IANA name or common abbreviation (EST, PST, ...)
        default: Timezone used when the name is missing or unknown

    Returns:
        pytz timezone instance
    """
    name = (timezone_name or '').strip() or default
    name = TIMEZONE_ALIASES.get(name.upper(), name)
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone '{timezone_name}', using {default}")
        return pytz.timezone(TIMEZONE_ALIASES.get(default.upper(), default))


def to_utc(dt: datetime, assume_timezone: str = 'UTC') -> datetime:
    """
    Convert datetime to UTC

    Args:
        dt: Datetime to convert
        assume_timezone: Timezone to assume if datetime is naive

    Returns:
        datetime object in UTC timezone
    """
    if dt.tzinfo is None:
        dt = get_timezone(assume_timezone).localize(dt)
    return dt.astimezone(SYSTEM_TIMEZONE)


def to_patient_timezone(dt: datetime, patient_timezone: Optional[str] = None, default: str = 'UTC') -> datetime:
    """
    Convert a datetime to the patient's local timezone

    Args:
        dt: Datetime to convert (naive values are treated as UTC)
        patient_timezone: Target timezone name
        default: Fallback timezone name

    Returns:
        datetime object in patient's timezone
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=SYSTEM_TIMEZONE)
    return dt.astimezone(get_timezone(patient_timezone, default))


def local_date(dt: datetime, patient_timezone: Optional[str] = None, default: str = 'UTC') -> date:
    """Calendar date of an instant as seen in the patient's timezone"""
    return to_patient_timezone(dt, patient_timezone, default).date()


def localize(day: date, time_of_day: time, patient_timezone: Optional[str] = None, default: str = 'UTC') -> datetime:
    """
    Build the UTC instant for a wall-clock time on a local calendar day

    Args:
        day: Local calendar date
        time_of_day: Local wall-clock time
        patient_timezone: Timezone the wall clock belongs to
        default: Fallback timezone name

    Returns:
        datetime in UTC
    """
    tz = get_timezone(patient_timezone, default)
    naive = datetime.combine(day, time_of_day.replace(tzinfo=None))
    return tz.localize(naive).astimezone(SYSTEM_TIMEZONE)


def start_of_local_day(day: date, patient_timezone: Optional[str] = None, default: str = 'UTC') -> datetime:
    """UTC instant of local midnight for the given calendar day"""
    return localize(day, time(0, 0), patient_timezone, default)


def clamp_day_of_month(year: int, month: int, day_of_month: int) -> int:
    """Clamp a configured day-of-month to the last day of shorter months"""
    last_day = calendar.monthrange(year, month)[1]
    return max(1, min(day_of_month, last_day))


def js_weekday(day: date) -> int:
    """Weekday number with Sunday as 0, as stored in schedule records"""
    return (day.weekday() + 1) % 7


def format_for_patient(dt: datetime, patient_timezone: Optional[str] = None) -> str:
    """
    Format datetime for display in the patient's local timezone

    Args:
        dt: UTC datetime to format
        patient_timezone: Patient's timezone

    Returns:
        Formatted datetime string in patient's timezone
    """
    local_dt = to_patient_timezone(dt, patient_timezone)
    return local_dt.strftime("%Y-%m-%d %I:%M %p %Z")


def days_between(start: date, end: date):
    """Yield each calendar day from start to end inclusive"""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
