"""
Domain models for appointments, business hours and calendar layout.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, time
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pendulum
from pendulum import DateTime

from .exceptions import InvalidInterval

ANY_STAFF = "any"

STATUS_SCHEDULED = "scheduled"
STATUS_CANCELLED = "cancelled"

# Longest duration a stored booking may have; anything beyond is a bad record
MAX_RECORD_DURATION_MINUTES = 24 * 60

WEEKDAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


# -- Time-of-day helpers ------------------------------------------------------

def parse_time_of_day(value: "time | str") -> time:
    """
    Parse a time of day given as ``time`` or an "HH:mm" / "HH:mm:ss" string.

    Raises:
        ValueError: If the value is not a valid time of day
    """
    if isinstance(value, time):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Expected a time of day, got {value!r}")

    parts = value.strip().split(":")
    if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
        raise ValueError(f"Invalid time of day: {value!r}")

    return time(hour=int(parts[0]), minute=int(parts[1]))


def time_to_minutes(value: "time | str") -> int:
    """Convert a time of day to minutes since midnight."""
    t = parse_time_of_day(value)
    return t.hour * 60 + t.minute


def minutes_to_time(minutes: int) -> time:
    """Convert minutes since midnight to a time of day (clamped to the day)."""
    minutes = max(0, min(minutes, 23 * 60 + 59))
    return time(hour=minutes // 60, minute=minutes % 60)


def format_time_of_day(value: "time | int") -> str:
    """Format a time (or minutes since midnight) as an "HH:mm" label."""
    if isinstance(value, int):
        return f"{value // 60:02d}:{value % 60:02d}"
    return f"{value.hour:02d}:{value.minute:02d}"


# -- Intervals ----------------------------------------------------------------

@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable time range with start and end datetime.

    Invariant: start must be before end.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Start time {self.start} must be before end time {self.end}")

    @classmethod
    def from_duration(cls, start: DateTime, duration_minutes: int) -> "TimeRange":
        return cls(start=start, end=start.add(minutes=duration_minutes))

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int((self.end - self.start).total_seconds() // 60)

    def overlaps(self, other: "TimeRange") -> bool:
        """Check if this range overlaps with another (touching ends do not count)."""
        return self.start < other.end and other.start < self.end

    def intersect(self, other: "TimeRange") -> "TimeRange | None":
        """
        Calculate the intersection of two time ranges.
        Returns None if there is no overlap.
        """
        if not self.overlaps(other):
            return None

        return TimeRange(start=max(self.start, other.start), end=min(self.end, other.end))

    def __str__(self) -> str:
        return f"{self.start.format('DD.MM.YYYY HH:mm')} - {self.end.format('HH:mm')}"


def parse_instant(value: Any, timezone: str | None = None) -> DateTime:
    """
    Parse an ISO 8601 string (or datetime) into a pendulum DateTime.

    Raises:
        InvalidInterval: If the value is missing or not a datetime
    """
    if value is None or value == "":
        raise InvalidInterval("Missing start instant")

    if isinstance(value, DateTime):
        dt = value
    elif isinstance(value, datetime):
        dt = pendulum.instance(value, tz=timezone or "UTC")
    else:
        try:
            # Strings without an offset are read in the target timezone
            dt = pendulum.parse(str(value), tz=timezone or "UTC")
        except (ValueError, TypeError) as exc:
            raise InvalidInterval(f"Unparseable start instant {value!r}: {exc}") from exc

    if not isinstance(dt, DateTime):
        raise InvalidInterval(f"Start instant {value!r} is not a date-time")

    return dt.in_timezone(timezone) if timezone else dt


def parse_duration(value: Any) -> int:
    """
    Validate a duration in minutes.

    Raises:
        InvalidInterval: If the duration is not a positive whole number of
            minutes no longer than a day
    """
    if isinstance(value, bool):
        raise InvalidInterval(f"Invalid duration {value!r}")
    try:
        minutes = int(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise InvalidInterval(f"Invalid duration {value!r}") from exc
    if minutes != value and not isinstance(value, str):
        raise InvalidInterval(f"Duration must be whole minutes, got {value!r}")
    if minutes <= 0:
        raise InvalidInterval(f"Duration must be positive, got {minutes}")
    if minutes > MAX_RECORD_DURATION_MINUTES:
        raise InvalidInterval(
            f"Duration must not exceed {MAX_RECORD_DURATION_MINUTES} minutes, got {minutes}"
        )
    return minutes


def interval_end(start: DateTime, duration_minutes: int) -> DateTime:
    """
    End instant of an interval.

    Raises:
        InvalidInterval: If the end falls outside the supported date range
    """
    try:
        return start.add(minutes=duration_minutes)
    except (OverflowError, ValueError) as exc:
        raise InvalidInterval(f"Interval starting {start} runs out of range: {exc}") from exc


def interval_of(item: Any) -> Tuple[str, DateTime, int]:
    """
    Extract ``(id, start, duration_minutes)`` from an appointment-like item.

    Accepts ``Appointment`` objects, mappings, and any object exposing
    ``id``, ``scheduled_at`` and ``duration_minutes`` attributes.

    Raises:
        InvalidInterval: If the start or duration is malformed
    """
    if isinstance(item, Mapping):
        item_id = item.get("id")
        start = item.get("scheduled_at")
        duration = item.get("duration_minutes")
    else:
        item_id = getattr(item, "id", None)
        start = getattr(item, "scheduled_at", None)
        duration = getattr(item, "duration_minutes", None)

    if item_id is None:
        raise InvalidInterval("Appointment has no id")

    start = parse_instant(start)
    duration = parse_duration(duration)
    interval_end(start, duration)
    return str(item_id), start, duration


# -- Appointments -------------------------------------------------------------

@dataclass(frozen=True)
class Appointment:
    """
    A booking on the agenda.

    Appointments are immutable snapshots; edits produce a new instance via
    ``with_changes``.
    """
    id: str
    scheduled_at: DateTime
    duration_minutes: int
    staff_id: Optional[str] = None
    service_id: Optional[str] = None
    is_paid: bool = False
    is_confirmed: bool = False
    notes: str = ""
    status: str = STATUS_SCHEDULED

    @property
    def end(self) -> DateTime:
        return self.scheduled_at.add(minutes=self.duration_minutes)

    @property
    def is_cancelled(self) -> bool:
        return self.status == STATUS_CANCELLED

    @property
    def is_unassigned(self) -> bool:
        return self.staff_id in (None, "", ANY_STAFF)

    def time_range(self) -> TimeRange:
        """
        Return the occupied interval.

        Raises:
            InvalidInterval: If the duration is malformed or out of range
        """
        try:
            duration = parse_duration(self.duration_minutes)
        except InvalidInterval as exc:
            raise InvalidInterval(f"Appointment {self.id}: {exc}") from exc
        return TimeRange(start=self.scheduled_at, end=interval_end(self.scheduled_at, duration))

    def with_changes(self, **fields: Any) -> "Appointment":
        """Return a copy with the given fields replaced."""
        if "scheduled_at" in fields:
            fields["scheduled_at"] = parse_instant(fields["scheduled_at"])
        return replace(self, **fields)

    @classmethod
    def from_record(cls, record: Mapping[str, Any], timezone: str | None = None) -> "Appointment":
        """
        Build an appointment from a backend row.

        Raises:
            InvalidInterval: If the start or duration cannot be interpreted
        """
        if record.get("id") is None:
            raise InvalidInterval("Booking record has no id")

        return cls(
            id=str(record["id"]),
            scheduled_at=parse_instant(record.get("scheduled_at"), timezone),
            duration_minutes=parse_duration(record.get("duration_minutes")),
            staff_id=record.get("staff_id") or None,
            service_id=record.get("service_id") or None,
            is_paid=bool(record.get("is_paid", False)),
            is_confirmed=bool(record.get("is_confirmed", False)),
            notes=record.get("notes") or "",
            status=record.get("status") or STATUS_SCHEDULED,
        )

    def to_record(self) -> Dict[str, Any]:
        """Serialize to the backend row format."""
        return {
            "id": self.id,
            "scheduled_at": self.scheduled_at.to_iso8601_string(),
            "duration_minutes": self.duration_minutes,
            "staff_id": self.staff_id,
            "service_id": self.service_id,
            "is_paid": self.is_paid,
            "is_confirmed": self.is_confirmed,
            "notes": self.notes,
            "status": self.status,
        }


# -- Business hours -----------------------------------------------------------

@dataclass(frozen=True)
class BreakTime:
    """A pause within the opening hours of a day."""
    start: time
    end: time

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Break start {self.start} must be before break end {self.end}")


@dataclass(frozen=True)
class DayHours:
    """
    Opening hours for a single weekday.

    Invariant: when the day is open, ``open`` is before ``close``.
    """
    open: time = time(9, 0)
    close: time = time(18, 0)
    closed: bool = False
    breaks: Tuple[BreakTime, ...] = ()

    def __post_init__(self):
        if not self.closed and self.open >= self.close:
            raise ValueError(f"Opening time {self.open} must be before closing time {self.close}")

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "DayHours":
        defaults = cls()
        breaks = tuple(
            BreakTime(start=parse_time_of_day(b["start"]), end=parse_time_of_day(b["end"]))
            for b in record.get("breaks") or []
        )
        return cls(
            open=parse_time_of_day(record.get("open") or defaults.open),
            close=parse_time_of_day(record.get("close") or defaults.close),
            closed=bool(record.get("closed", False)),
            breaks=breaks,
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "open": format_time_of_day(self.open),
            "close": format_time_of_day(self.close),
            "closed": self.closed,
            "breaks": [
                {"start": format_time_of_day(b.start), "end": format_time_of_day(b.end)}
                for b in self.breaks
            ],
        }


def _default_week() -> Tuple[DayHours, ...]:
    return tuple(DayHours() for _ in range(6)) + (DayHours(closed=True),)


@dataclass(frozen=True)
class BusinessHours:
    """
    Weekly opening schedule, indexed by weekday (0=Monday, 6=Sunday).
    """
    days: Tuple[DayHours, ...] = field(default_factory=_default_week)

    def __post_init__(self):
        if len(self.days) != 7:
            raise ValueError(f"Business hours need exactly 7 days, got {len(self.days)}")

    def for_day(self, day_of_week: int) -> DayHours:
        if not 0 <= day_of_week <= 6:
            raise ValueError(f"Day of week must be between 0 and 6, got {day_of_week}")
        return self.days[day_of_week]

    def open_days(self) -> List[DayHours]:
        return [day for day in self.days if not day.closed]

    @classmethod
    def from_record(cls, record: Mapping[str, Any] | None) -> "BusinessHours":
        """
        Build business hours from the tenant settings format.

        The backend stores numeric keys "0".."6" with 0=Sunday; named keys
        ("monday", ...) are accepted as well. Missing days keep the defaults
        (09:00-18:00, Sunday closed).
        """
        days = list(_default_week())
        if not record:
            return cls(days=tuple(days))

        for key, day_record in record.items():
            if not isinstance(day_record, Mapping):
                continue
            key_str = str(key).strip().lower()
            if key_str.isdigit():
                # Sunday-based index to Monday-based weekday
                weekday = (int(key_str) - 1) % 7
            elif key_str in WEEKDAY_NAMES:
                weekday = WEEKDAY_NAMES.index(key_str)
            else:
                continue
            days[weekday] = DayHours.from_record(day_record)

        return cls(days=tuple(days))

    def to_record(self) -> Dict[str, Any]:
        """Serialize to the backend's Sunday-based numeric-key format."""
        return {str((weekday + 1) % 7): day.to_record() for weekday, day in enumerate(self.days)}


# -- Calendar grid and layout -------------------------------------------------

@dataclass(frozen=True)
class TimeSlot:
    """A single row of the agenda grid."""
    label: str
    time: time
    disabled: bool = False
    reason: Optional[str] = None
    on_break: bool = False


@dataclass(frozen=True)
class PositionedAppointment:
    """An appointment annotated with its horizontal position in the day view."""
    id: str
    scheduled_at: DateTime
    duration_minutes: int
    column_index: int
    total_columns: int
    left_percent: float
    width_percent: float
    source: Any = None
    # Shares the last visible column with appointments that did not fit
    folded: bool = False

    @property
    def end(self) -> DateTime:
        return self.scheduled_at.add(minutes=self.duration_minutes)


@dataclass
class OverlapGroup:
    """A cluster of appointments linked by a chain of overlaps."""
    members: List[PositionedAppointment]
    start: DateTime
    end: DateTime
    total_columns: int
    hidden_count: int = 0


@dataclass(frozen=True)
class PendingEdit:
    """A single field-level change to an appointment, kept for undo/redo."""
    appointment_id: str
    field: str
    old_value: Any
    new_value: Any
