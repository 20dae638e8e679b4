"""
Discrete time-slot grids for agenda views and the booking flow.
"""

import logging
from datetime import date, datetime, time
from typing import Dict, Iterable, List, Optional

import pendulum
from pendulum import DateTime

from .business_hours import (
    earliest_open_time,
    is_on_break,
    is_within_business_hours,
    latest_close_time,
)
from .conflicts import has_conflict
from .models import (
    Appointment,
    BusinessHours,
    DayHours,
    TimeSlot,
    format_time_of_day,
    minutes_to_time,
    time_to_minutes,
)

logger = logging.getLogger(__name__)

DEFAULT_GRANULARITY_MINUTES = 15
GRID_MARGIN_MINUTES = 60
GRID_LOWER_BOUND = time(7, 0)
GRID_UPPER_BOUND = time(22, 0)

REASON_CLOSED = "closed"
REASON_OUTSIDE_HOURS = "outside_hours"


def _as_date(value: "date | datetime") -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _ceil_to(minutes: int, granularity_minutes: int) -> int:
    return minutes + (-minutes % granularity_minutes)


def _validate_granularity(granularity_minutes: int) -> None:
    if granularity_minutes <= 0:
        raise ValueError(f"Granularity must be positive, got {granularity_minutes}")


def grid_bounds(
    hours: Optional[BusinessHours],
    granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES,
    margin_minutes: int = GRID_MARGIN_MINUTES,
    lower_bound: time = GRID_LOWER_BOUND,
    upper_bound: time = GRID_UPPER_BOUND,
) -> tuple[int, int]:
    """
    Compute the visible grid range in minutes since midnight.

    The range spans the week's earliest opening to latest closing, widened by
    ``margin_minutes`` on both sides and clamped to ``[lower_bound, upper_bound]``.
    Without business hours the full outer bound is used.
    """
    _validate_granularity(granularity_minutes)
    # Outer bounds shrink to whole rows so rounding never crosses them
    lower = _ceil_to(time_to_minutes(lower_bound), granularity_minutes)
    upper = time_to_minutes(upper_bound) // granularity_minutes * granularity_minutes

    if hours is None:
        return lower, upper

    start = time_to_minutes(earliest_open_time(hours)) - margin_minutes
    end = time_to_minutes(latest_close_time(hours)) + margin_minutes

    start = max(start - start % granularity_minutes, lower)
    end = min(_ceil_to(end, granularity_minutes), upper)

    if start >= end:
        return lower, upper
    return start, end


def generate_slots(
    day: "date | datetime",
    granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES,
    hours: Optional[BusinessHours] = None,
    *,
    margin_minutes: int = GRID_MARGIN_MINUTES,
    lower_bound: time = GRID_LOWER_BOUND,
    upper_bound: time = GRID_UPPER_BOUND,
) -> List[TimeSlot]:
    """
    Generate the agenda rows for a single day.

    Args:
        day: The date being displayed
        granularity_minutes: Row size in minutes
        hours: Weekly business hours; None while they are not loaded yet

    Returns:
        Ordered time slots; slots outside business hours are disabled.
        Without business hours every slot of the default grid is enabled.
    """
    start, end = grid_bounds(hours, granularity_minutes, margin_minutes, lower_bound, upper_bound)

    if hours is None:
        logger.debug("Business hours not loaded, using the default grid")
        return [
            TimeSlot(label=format_time_of_day(m), time=minutes_to_time(m))
            for m in range(start, end, granularity_minutes)
        ]

    weekday = _as_date(day).weekday()
    day_closed = hours.for_day(weekday).closed
    slots: List[TimeSlot] = []

    for minutes in range(start, end, granularity_minutes):
        slot_time = minutes_to_time(minutes)
        within = is_within_business_hours(hours, weekday, slot_time)

        reason = None
        if day_closed:
            reason = REASON_CLOSED
        elif not within:
            reason = REASON_OUTSIDE_HOURS

        slots.append(
            TimeSlot(
                label=format_time_of_day(minutes),
                time=slot_time,
                disabled=not within,
                reason=reason,
                on_break=is_on_break(hours, weekday, slot_time),
            )
        )

    return slots


def generate_slots_for_range(
    start_date: "date | datetime",
    end_date: "date | datetime",
    granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES,
    hours: Optional[BusinessHours] = None,
) -> Dict[date, List[TimeSlot]]:
    """Generate grids for every day from ``start_date`` to ``end_date`` inclusive."""
    first = _as_date(start_date)
    current = pendulum.date(first.year, first.month, first.day)
    last = _as_date(end_date)

    grids: Dict[date, List[TimeSlot]] = {}
    while current <= last:
        grids[current] = generate_slots(current, granularity_minutes, hours)
        current = current.add(days=1)

    return grids


def find_bookable_starts(
    day: "date | datetime",
    duration_minutes: int,
    hours: Optional[BusinessHours],
    appointments: Iterable[Appointment],
    granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES,
    *,
    staff_id: Optional[str] = None,
    buffer_minutes: int = 0,
    buffer_before_minutes: int = 0,
    now: Optional[DateTime] = None,
    min_advance_minutes: int = 0,
    max_advance_days: Optional[int] = None,
    staff_hours: Optional[DayHours] = None,
    timezone: str = "UTC",
) -> List[DateTime]:
    """
    Find start instants where a service fits on a given day.

    A start is bookable when the whole service lies inside opening hours,
    does not touch a break, does not overlap another booking (including the
    buffers before and after it) and is not in the past.

    Args:
        buffer_minutes: Cleanup time kept free after the service
        buffer_before_minutes: Preparation time kept free before the service
        now: Reference instant for past and advance-notice checks; without
            it none of those checks apply
        min_advance_minutes: Minimum notice between ``now`` and a start
        max_advance_days: Days after ``now`` beyond which nothing is bookable
        staff_hours: Working hours of the staff member on this weekday; only
            the part that overlaps the salon's hours is offered

    Client-facing booking never offers times while business hours are
    unknown, so ``hours=None`` yields no starts.
    """
    _validate_granularity(granularity_minutes)
    if duration_minutes <= 0:
        raise ValueError(f"Duration must be positive, got {duration_minutes}")
    if min(buffer_minutes, buffer_before_minutes, min_advance_minutes) < 0:
        raise ValueError("Buffers and advance notice must not be negative")
    if hours is None:
        return []

    the_day = _as_date(day)
    day_hours = hours.for_day(the_day.weekday())
    if day_hours.closed or (staff_hours is not None and staff_hours.closed):
        return []

    midnight = pendulum.datetime(the_day.year, the_day.month, the_day.day, tz=timezone)
    earliest: Optional[DateTime] = None
    if now is not None:
        earliest = now.add(minutes=min_advance_minutes)
        if max_advance_days is not None:
            last_day = now.in_timezone(timezone).add(days=max_advance_days).date()
            if the_day > last_day:
                return []

    existing = list(appointments)
    open_minutes = time_to_minutes(day_hours.open)
    close_minutes = time_to_minutes(day_hours.close)
    breaks = [(time_to_minutes(b.start), time_to_minutes(b.end)) for b in day_hours.breaks]
    if staff_hours is not None:
        open_minutes = max(open_minutes, time_to_minutes(staff_hours.open))
        close_minutes = min(close_minutes, time_to_minutes(staff_hours.close))
        breaks.extend((time_to_minutes(b.start), time_to_minutes(b.end)) for b in staff_hours.breaks)

    starts: List[DateTime] = []
    first = _ceil_to(open_minutes, granularity_minutes)
    blocked_minutes = buffer_before_minutes + duration_minutes + buffer_minutes

    for minutes in range(first, close_minutes - duration_minutes + 1, granularity_minutes):
        end_minutes = minutes + duration_minutes
        if any(minutes < b_end and b_start < end_minutes for b_start, b_end in breaks):
            continue

        candidate = midnight.set(hour=minutes // 60, minute=minutes % 60)
        if earliest is not None and candidate < earliest:
            continue
        blocked_from = candidate.subtract(minutes=buffer_before_minutes)
        if has_conflict(blocked_from, blocked_minutes, existing, staff_id=staff_id):
            continue

        starts.append(candidate)

    return starts
