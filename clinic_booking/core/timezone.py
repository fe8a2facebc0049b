"""
Clinic timezone helpers.

The service runs in a single fixed zone (``settings.CLINIC_TIMEZONE``).
Datetimes are stored and compared as naive wall-clock values in that zone;
anything arriving with an offset is converted here first.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterator

import pytz

from .config import settings


def get_clinic_timezone() -> pytz.BaseTzInfo:
    """Return the clinic's pytz timezone."""
    return pytz.timezone(settings.CLINIC_TIMEZONE)


def to_clinic_local(dt: datetime) -> datetime:
    """
    Re-express a datetime as naive clinic-local wall-clock time.

    Aware datetimes (any offset) are converted into the clinic zone.
    Naive datetimes are taken to already be clinic-local.
    """
    if dt.tzinfo is None:
        return dt.replace(microsecond=0)

    return dt.astimezone(get_clinic_timezone()).replace(tzinfo=None, microsecond=0)


def add_minutes(local_dt: datetime, minutes: int) -> datetime:
    """
    Add elapsed minutes to a naive clinic-local datetime.

    Arithmetic is done on the real instant so a span crossing a daylight
    saving transition keeps its true length.
    """
    tz = get_clinic_timezone()
    aware = tz.localize(local_dt)
    shifted = tz.normalize(aware + timedelta(minutes=minutes))
    return shifted.replace(tzinfo=None)


def combine_local(day: date, time_of_day: time) -> datetime:
    """Place a time-of-day on a calendar date, dropping any stored date part."""
    return datetime.combine(day, time_of_day.replace(tzinfo=None))


WEEKDAY_NAMES = (
    "MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY",
)


def weekday_for(day: date) -> str:
    """Weekday name in the stored enum format, e.g. ``MONDAY``."""
    return WEEKDAY_NAMES[day.weekday()]


def iter_local_dates(start: date, end: date) -> Iterator[date]:
    """Yield each calendar date from start to end inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def clinic_today() -> date:
    """Today's date in the clinic zone."""
    return datetime.now(get_clinic_timezone()).date()
