"""
Interval conflict detection for appointments.

A conflict is an expected outcome of a scheduling request, so these
functions answer with booleans or lists and leave it to the caller to
surface a rejection. Existing appointments with malformed intervals are
skipped and logged so a single bad record cannot break a check.
"""

import logging
from typing import Iterable, List, Optional

from pendulum import DateTime

from .exceptions import InvalidInterval
from .models import Appointment, TimeRange

logger = logging.getLogger(__name__)


def intervals_overlap(
    a_start: DateTime,
    a_minutes: int,
    b_start: DateTime,
    b_minutes: int,
) -> bool:
    """
    Half-open overlap test for two ``(start, duration)`` intervals.

    ``[s1, e1)`` and ``[s2, e2)`` overlap iff ``s1 < e2 and s2 < e1``;
    back-to-back intervals (``e1 == s2``) do not overlap.
    """
    a_end = a_start.add(minutes=a_minutes)
    b_end = b_start.add(minutes=b_minutes)
    return a_start < b_end and b_start < a_end


def _shares_resource(appointment: Appointment, staff_id: Optional[str]) -> bool:
    if staff_id is None:
        return True
    # Unassigned bookings may still be given to anyone, so they block everyone.
    return appointment.is_unassigned or appointment.staff_id == staff_id


def find_conflicts(
    candidate_start: DateTime,
    candidate_duration_minutes: int,
    existing: Iterable[Appointment],
    exclude_id: Optional[str] = None,
    *,
    staff_id: Optional[str] = None,
) -> List[Appointment]:
    """
    Return every existing appointment that overlaps the candidate interval.

    Args:
        candidate_start: Proposed start instant
        candidate_duration_minutes: Proposed duration
        existing: Booked appointments to check against
        exclude_id: Appointment being edited, ignored in the check
        staff_id: When given, only that staff member's (and unassigned)
            appointments are considered

    Raises:
        InvalidInterval: If the candidate duration is not positive
    """
    if candidate_duration_minutes <= 0:
        raise InvalidInterval(
            f"Candidate duration must be positive, got {candidate_duration_minutes}"
        )

    candidate = TimeRange.from_duration(candidate_start, candidate_duration_minutes)
    conflicts: List[Appointment] = []

    for appointment in existing:
        if exclude_id is not None and appointment.id == exclude_id:
            continue
        if appointment.is_cancelled or not _shares_resource(appointment, staff_id):
            continue

        try:
            booked = appointment.time_range()
        except InvalidInterval as exc:
            logger.warning("Skipping appointment in conflict check: %s", exc)
            continue

        if candidate.overlaps(booked):
            conflicts.append(appointment)

    return conflicts


def has_conflict(
    candidate_start: DateTime,
    candidate_duration_minutes: int,
    existing: Iterable[Appointment],
    exclude_id: Optional[str] = None,
    *,
    staff_id: Optional[str] = None,
) -> bool:
    """
    Check whether a candidate interval overlaps any existing booking.

    Each existing appointment ends at its own ``scheduled_at + duration``.
    """
    return bool(
        find_conflicts(
            candidate_start,
            candidate_duration_minutes,
            existing,
            exclude_id,
            staff_id=staff_id,
        )
    )
