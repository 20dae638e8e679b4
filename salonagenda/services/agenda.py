"""
Agenda session: the explicit state behind a calendar view.

The session coordinates fetching business hours and bookings through
adapter protocols and delegates grid, layout and conflict decisions to the
domain layer. View mode and current date are passed in as an ``AgendaView``
value instead of living in shared global state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional, Protocol, Tuple

import pendulum
from pendulum import DateTime

from ..domain.business_hours import is_date_available
from ..domain.models import (
    Appointment,
    BusinessHours,
    DayHours,
    OverlapGroup,
    PositionedAppointment,
    TimeSlot,
)
from ..domain.overlap_layout import ExcludedEntry, pack_day
from ..domain.slot_grid import DEFAULT_GRANULARITY_MINUTES, find_bookable_starts, generate_slots
from .booking_snapshot import BookingDataSource, BookingSnapshot
from .edit_controller import EditController

logger = logging.getLogger(__name__)


class BusinessHoursSource(Protocol):
    """Protocol describing where tenant business hours come from."""

    async def fetch_business_hours(self, tenant_id: str) -> Optional[BusinessHours]:
        """Return the tenant's weekly hours, or None when they are not configured."""


class StaticBusinessHoursSource:
    """Hours source that always answers with a fixed schedule (local override)."""

    def __init__(self, hours: Optional[BusinessHours]):
        self.hours = hours

    async def fetch_business_hours(self, tenant_id: str) -> Optional[BusinessHours]:
        return self.hours


class ViewMode(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


@dataclass(frozen=True)
class AgendaView:
    """What the calendar is currently showing."""
    mode: ViewMode
    current_date: date

    def date_range(self, timezone: str = "UTC") -> Tuple[DateTime, DateTime]:
        """
        Half-open instant range covered by the view.

        Weeks start on Monday.
        """
        anchor = pendulum.datetime(
            self.current_date.year, self.current_date.month, self.current_date.day, tz=timezone
        )
        if self.mode is ViewMode.DAY:
            start = anchor.start_of("day")
            return start, start.add(days=1)
        if self.mode is ViewMode.WEEK:
            start = anchor.subtract(days=anchor.weekday()).start_of("day")
            return start, start.add(weeks=1)

        start = anchor.start_of("month")
        return start, start.add(months=1)


@dataclass
class DayAgenda:
    """Everything the presentation layer needs to draw one day column."""
    day: date
    is_open: bool
    slots: List[TimeSlot]
    positioned: List[PositionedAppointment] = field(default_factory=list)
    groups: List[OverlapGroup] = field(default_factory=list)
    excluded: List[ExcludedEntry] = field(default_factory=list)


class AgendaService:
    """
    Loads a view's data and answers grid, layout and availability questions.
    """

    def __init__(
        self,
        data_source: BookingDataSource,
        hours_source: BusinessHoursSource,
        tenant_id: str,
        *,
        timezone: str = "UTC",
        granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES,
        controller_options: Optional[dict] = None,
        grid_options: Optional[dict] = None,
        max_columns: Optional[int] = None,
    ) -> None:
        self._hours_source = hours_source
        self._tenant_id = tenant_id
        self._timezone = timezone
        self._granularity = granularity_minutes
        self._grid_options = grid_options or {}
        self._max_columns = max_columns

        self._snapshot = BookingSnapshot(data_source, timezone=timezone)
        self._controller = EditController(data_source, self._snapshot, **(controller_options or {}))
        self._hours: Optional[BusinessHours] = None
        self._view: Optional[AgendaView] = None

    @property
    def controller(self) -> EditController:
        return self._controller

    @property
    def snapshot(self) -> BookingSnapshot:
        return self._snapshot

    @property
    def business_hours(self) -> Optional[BusinessHours]:
        return self._hours

    @property
    def view(self) -> Optional[AgendaView]:
        return self._view

    async def load(self, view: AgendaView) -> None:
        """
        Show a new view: fetch hours and bookings and start a fresh edit history.
        """
        self._hours = await self._hours_source.fetch_business_hours(self._tenant_id)
        if self._hours is None:
            logger.info("No business hours configured for tenant %s, using defaults", self._tenant_id)

        range_start, range_end = view.date_range(self._timezone)
        await self._snapshot.load(range_start, range_end)
        self._controller.clear_history()
        self._view = view

    def close(self) -> None:
        """Forget the edit history when the calendar goes away."""
        self._controller.clear_history()
        self._view = None

    def day_agenda(self, day: date) -> DayAgenda:
        """Build the grid and appointment layout for one day of the loaded range."""
        layout = pack_day(self._snapshot.on_day(day), self._max_columns)
        for entry in layout.excluded:
            logger.warning("Appointment left out of the %s agenda: %s", day, entry.reason)

        return DayAgenda(
            day=day,
            is_open=is_date_available(self._hours, day),
            slots=generate_slots(day, self._granularity, self._hours, **self._grid_options),
            positioned=layout.positioned,
            groups=layout.groups,
            excluded=layout.excluded,
        )

    def bookable_starts(
        self,
        day: date,
        duration_minutes: int,
        *,
        staff_id: Optional[str] = None,
        buffer_minutes: int = 0,
        buffer_before_minutes: int = 0,
        now: Optional[DateTime] = None,
        min_advance_minutes: int = 0,
        max_advance_days: Optional[int] = None,
        staff_hours: Optional[DayHours] = None,
    ) -> List[DateTime]:
        """Start times on ``day`` where a service of the given length still fits."""
        return find_bookable_starts(
            day,
            duration_minutes,
            self._hours,
            self._snapshot.appointments(),
            self._granularity,
            staff_id=staff_id,
            buffer_minutes=buffer_minutes,
            buffer_before_minutes=buffer_before_minutes,
            now=now,
            min_advance_minutes=min_advance_minutes,
            max_advance_days=max_advance_days,
            staff_hours=staff_hours,
            timezone=self._timezone,
        )

    def appointments(self) -> List[Appointment]:
        return self._snapshot.appointments()
