"""Time-of-day window helpers.

Shared by quiet hours and on-call schedules. Windows are half-open
``[start, end)`` in minutes since local midnight and may wrap past midnight
(e.g. 22:00-06:00).
"""

from datetime import datetime, timezone
from typing import Iterable
from zoneinfo import ZoneInfo


def parse_hhmm(value: str) -> int:
    """Parse an ``HH:MM`` string into minutes since midnight.

    Raises:
        ValueError: If the string is not a valid 24h time.
    """
    try:
        hours_str, minutes_str = value.strip().split(":")
        hours, minutes = int(hours_str), int(minutes_str)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid time of day: {value!r}")

    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Invalid time of day: {value!r}")
    return hours * 60 + minutes


def in_window(minute_of_day: int, start: int, end: int) -> bool:
    """Check whether a minute of day falls in ``[start, end)``.

    A window with ``start > end`` wraps midnight. ``start == end`` is empty;
    schedule periods treat it as the whole day instead.
    """
    if start == end:
        return False
    if start > end:
        return minute_of_day >= start or minute_of_day < end
    return start <= minute_of_day < end


def to_local(moment: datetime, tz_name: str) -> datetime:
    """Convert a datetime into the named timezone.

    Naive datetimes are treated as UTC.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(ZoneInfo(tz_name or "UTC"))


def minute_of_day(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def sunday_based_weekday(moment: datetime) -> int:
    """Day of week with 0=Sunday .. 6=Saturday."""
    return moment.isoweekday() % 7


def is_within_hours(
    moment: datetime,
    start_time: str,
    end_time: str,
    tz_name: str = "UTC",
) -> bool:
    """Check whether ``moment`` falls in a local ``HH:MM`` window."""
    local = to_local(moment, tz_name)
    return in_window(
        minute_of_day(local), parse_hhmm(start_time), parse_hhmm(end_time),
    )


def is_on_schedule(
    moment: datetime,
    days_of_week: Iterable[int],
    start_time: str,
    end_time: str,
    tz_name: str = "UTC",
) -> bool:
    """Check a day-of-week plus time-of-day schedule period.

    Equal start and end times cover the whole of each listed day.
    """
    local = to_local(moment, tz_name)
    if sunday_based_weekday(local) not in set(days_of_week):
        return False
    start, end = parse_hhmm(start_time), parse_hhmm(end_time)
    if start == end:
        return True
    return in_window(minute_of_day(local), start, end)
