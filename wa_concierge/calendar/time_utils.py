"""
Timezone helpers for meeting reminders (DST-aware through pytz).
"""
from datetime import date, datetime, time

import pytz

from .models import DATE_FORMAT, TIME_FORMAT


def now_in(tz_name: str) -> datetime:
    return datetime.now(pytz.timezone(tz_name))


def local_datetime(day: date, time_of_day: time, tz_name: str) -> datetime:
    """Aware datetime for a wall-clock time on a given day in ``tz_name``."""
    tz = pytz.timezone(tz_name)
    return tz.localize(datetime.combine(day, time_of_day))


def parse_time(value: str) -> time:
    return datetime.strptime(value, TIME_FORMAT).time()


def parse_date(value: str) -> date:
    return datetime.strptime(value, DATE_FORMAT).date()


def diff_minutes(later: datetime, earlier: datetime) -> int:
    """Signed whole minutes from ``earlier`` to ``later``, truncated toward zero."""
    return int((later - earlier).total_seconds() / 60)

