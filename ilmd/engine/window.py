"""
Execution window evaluation.

Windows are configured per weekday as 'HH:MM-HH:MM'. A window whose start is
later than its end crosses midnight, e.g. '22:00-06:00'. All functions here
are pure: the caller supplies the instant to evaluate.
"""

import re
from datetime import datetime
from typing import Optional, Tuple

from ilmd.exceptions import InvalidWindowError
from ilmd.storage.models import ScheduleConfig

MINUTES_PER_DAY = 24 * 60

_WINDOW_PATTERN = re.compile(r'^(\d{2}):(\d{2})-(\d{2}):(\d{2})$')


def parse_window(hours: str) -> Tuple[int, int]:
    """
    Parse a window string into minutes since midnight.

    Args:
        hours: Window in 'HH:MM-HH:MM' format

    Returns:
        (start_minutes, end_minutes)

    Raises:
        InvalidWindowError: If the string is malformed or out of range
    """
    match = _WINDOW_PATTERN.match(hours.strip())
    if not match:
        raise InvalidWindowError(f"Invalid execution window {hours!r}, expected HH:MM-HH:MM")

    start_hour, start_min, end_hour, end_min = (int(part) for part in match.groups())
    if start_hour > 23 or end_hour > 23 or start_min > 59 or end_min > 59:
        raise InvalidWindowError(f"Invalid execution window {hours!r}, time out of range")

    return start_hour * 60 + start_min, end_hour * 60 + end_min


def minutes_since_midnight(now: datetime) -> int:
    return now.hour * 60 + now.minute


def today_hours(schedule: ScheduleConfig, now: datetime) -> Optional[str]:
    """Window configured for the weekday of `now`, or None when closed all day."""
    hours = schedule.hours_for_weekday(now.weekday())
    if hours is None or not hours.strip():
        return None
    return hours


def is_open(start: int, end: int, current: int) -> bool:
    """Whether `current` falls inside [start, end), wrapping past midnight when start > end."""
    if start > end:
        return current >= start or current < end
    return start <= current < end


def in_window(schedule: ScheduleConfig, now: datetime) -> bool:
    """Check whether `now` is inside the schedule's window for today."""
    hours = today_hours(schedule, now)
    if hours is None:
        return False

    start, end = parse_window(hours)
    return is_open(start, end, minutes_since_midnight(now))


def minutes_until_close(schedule: ScheduleConfig, now: datetime) -> Optional[int]:
    """Minutes left in the current window, or None when the window is closed."""
    if not in_window(schedule, now):
        return None

    _, end = parse_window(today_hours(schedule, now))
    return (end - minutes_since_midnight(now)) % MINUTES_PER_DAY
