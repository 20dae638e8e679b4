"""
Domain layer - Pure scheduling logic without external dependencies.
"""

from .business_hours import earliest_open_time, is_within_business_hours, latest_close_time
from .conflicts import find_conflicts, has_conflict
from .models import (
    Appointment,
    BusinessHours,
    DayHours,
    PendingEdit,
    PositionedAppointment,
    TimeRange,
    TimeSlot,
)
from .overlap_layout import calculate_appointment_positions, overflow_count, pack_day
from .slot_grid import find_bookable_starts, generate_slots

__all__ = [
    "Appointment",
    "BusinessHours",
    "DayHours",
    "PendingEdit",
    "PositionedAppointment",
    "TimeRange",
    "TimeSlot",
    "calculate_appointment_positions",
    "earliest_open_time",
    "find_bookable_starts",
    "find_conflicts",
    "generate_slots",
    "has_conflict",
    "is_within_business_hours",
    "latest_close_time",
    "overflow_count",
    "pack_day",
]
