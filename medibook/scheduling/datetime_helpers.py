import datetime as dt
from collections.abc import Callable
from zoneinfo import ZoneInfo

from loguru import logger

Clock = Callable[[], dt.datetime]


def resolve_timezone(name: str) -> dt.tzinfo:
    """Resolve a timezone name, falling back to UTC if invalid."""
    try:
        return ZoneInfo(name)
    except Exception:
        logger.warning("Invalid clinic timezone '{}'; defaulting to UTC", name)
        return dt.timezone.utc


def system_clock(tz: dt.tzinfo) -> Clock:
    """Return a clock reading the current time in ``tz``."""
    return lambda: dt.datetime.now(tz)


def to_clinic_time(value: dt.datetime, tz: dt.tzinfo) -> dt.datetime:
    """Express ``value`` in the clinic timezone.

    Naive datetimes are taken as clinic wall-clock time. Seconds and
    microseconds are kept so precision checks can still reject them.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def at(date: dt.date, time: dt.time, tz: dt.tzinfo | None) -> dt.datetime:
    """Combine a clinic-local date and wall-clock time, ``at(2026-03-02, 09:00)``."""
    return dt.datetime.combine(date, time, tzinfo=tz)


def day_of_week(date: dt.date) -> int:
    """ISO day of week: 1 = Monday … 7 = Sunday."""
    return date.isoweekday()


def is_minute_precise(value: dt.time | dt.datetime) -> bool:
    return value.second == 0 and value.microsecond == 0


def time_to_hhmm(time: dt.time) -> str:
    """Convert ``time(9, 5)`` → ``09:05``."""
    return time.strftime("%H:%M")
