"""
Business-hours resolution.

Pure functions over a weekly ``BusinessHours`` schedule. The ``closed`` flag
of a day is authoritative: a day is never judged open or closed by probing a
fixed time of day.
"""

from datetime import date, time
from typing import Iterable, Optional, Tuple

from pendulum import DateTime

from .models import (
    BreakTime,
    BusinessHours,
    parse_time_of_day,
    time_to_minutes,
)

DEFAULT_EARLIEST_OPEN = time(7, 0)
DEFAULT_LATEST_CLOSE = time(22, 0)

MIN_BREAK_MINUTES = 15
MAX_BREAK_MINUTES = 240


def is_within_business_hours(
    hours: BusinessHours,
    day_of_week: int,
    time_of_day: "time | str",
) -> bool:
    """
    Check whether a time falls inside the opening hours of a weekday.

    The window is half-open: the opening time is bookable, the closing time
    is not.

    Args:
        hours: Weekly schedule
        day_of_week: 0=Monday ... 6=Sunday
        time_of_day: ``time`` or "HH:mm" string

    Returns:
        False if the day is closed, otherwise ``open <= time < close``
    """
    day = hours.for_day(day_of_week)
    if day.closed:
        return False

    minutes = time_to_minutes(time_of_day)
    return time_to_minutes(day.open) <= minutes < time_to_minutes(day.close)


def earliest_open_time(hours: BusinessHours) -> time:
    """Earliest opening time over all open days (07:00 if none are open)."""
    open_days = hours.open_days()
    if not open_days:
        return DEFAULT_EARLIEST_OPEN
    return min(day.open for day in open_days)


def latest_close_time(hours: BusinessHours) -> time:
    """Latest closing time over all open days (22:00 if none are open)."""
    open_days = hours.open_days()
    if not open_days:
        return DEFAULT_LATEST_CLOSE
    return max(day.close for day in open_days)


def is_on_break(hours: BusinessHours, day_of_week: int, time_of_day: "time | str") -> bool:
    """Check whether a time falls inside one of the day's breaks (half-open)."""
    day = hours.for_day(day_of_week)
    if day.closed:
        return False

    minutes = time_to_minutes(time_of_day)
    return any(
        time_to_minutes(b.start) <= minutes < time_to_minutes(b.end)
        for b in day.breaks
    )


def is_date_available(hours: Optional[BusinessHours], day: date) -> bool:
    """Check whether the business is open at all on a date (unknown hours count as open)."""
    if hours is None:
        return True
    return not hours.for_day(day.weekday()).closed


def available_hours(hours: Optional[BusinessHours], day: date) -> Optional[Tuple[time, time]]:
    """Return ``(open, close)`` for a date, or None when closed or unknown."""
    if hours is None:
        return None
    day_hours = hours.for_day(day.weekday())
    if day_hours.closed:
        return None
    return day_hours.open, day_hours.close


def is_currently_open(hours: Optional[BusinessHours], now: DateTime) -> bool:
    """Check whether the business is open at the given instant."""
    if hours is None:
        return False
    return is_within_business_hours(hours, now.day_of_week, now.time())


def next_opening(hours: Optional[BusinessHours], now: DateTime) -> Optional[DateTime]:
    """
    Find the next instant the business opens, looking up to a week ahead.

    If today's opening time is still ahead, today's opening is returned.
    """
    if hours is None:
        return None

    for offset in range(8):
        candidate_day = now.add(days=offset)
        day_hours = hours.for_day(candidate_day.day_of_week)
        if day_hours.closed:
            continue

        opening = candidate_day.set(
            hour=day_hours.open.hour,
            minute=day_hours.open.minute,
            second=0,
            microsecond=0,
        )
        if opening > now:
            return opening

    return None


def validate_break(
    break_time: BreakTime,
    open_time: "time | str",
    close_time: "time | str",
) -> BreakTime:
    """
    Validate that a break lies within opening hours and has a sensible length.

    Raises:
        ValueError: If the break is outside the opening window, shorter than
            15 minutes or longer than 4 hours
    """
    start = time_to_minutes(break_time.start)
    end = time_to_minutes(break_time.end)

    if start < time_to_minutes(parse_time_of_day(open_time)) or end > time_to_minutes(
        parse_time_of_day(close_time)
    ):
        raise ValueError("Break must fall within opening hours")

    length = end - start
    if length < MIN_BREAK_MINUTES:
        raise ValueError(f"Break must last at least {MIN_BREAK_MINUTES} minutes")
    if length > MAX_BREAK_MINUTES:
        raise ValueError(f"Break must not last longer than {MAX_BREAK_MINUTES} minutes")

    return break_time


def validate_breaks_do_not_overlap(breaks: Iterable[BreakTime]) -> None:
    """
    Ensure no two breaks of a day overlap.

    Raises:
        ValueError: If any two breaks overlap
    """
    ordered = sorted(breaks, key=lambda b: b.start)
    for previous, current in zip(ordered, ordered[1:]):
        if current.start < previous.end:
            raise ValueError(
                f"Breaks must not overlap: {previous.start}-{previous.end} "
                f"and {current.start}-{current.end}"
            )
