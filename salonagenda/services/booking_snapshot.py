"""
In-memory bookings for the visible date range.

The snapshot is read by the layout packer and the conflict engine and is
refreshed wholesale after every committed mutation. Conflict checks between
two refreshes run against possibly stale data; the backend's own overlap
constraint is the safeguard for that window and its rejections are handled
like local conflicts. Bookings that start before the range but run into it
are loaded too, so they take part in conflict checks.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Protocol, Set, Tuple

import pendulum
from pendulum import DateTime

from ..domain.exceptions import InvalidInterval, UnknownAppointment
from ..domain.models import MAX_RECORD_DURATION_MINUTES, Appointment

logger = logging.getLogger(__name__)


def _ends_after(appointment: Appointment, instant: DateTime) -> bool:
    try:
        return appointment.time_range().end > instant
    except InvalidInterval as exc:
        logger.warning("Ignoring booking before the visible range: %s", exc)
        return False


class BookingDataSource(Protocol):
    """Protocol describing the booking backend behaviour needed by the core."""

    async def fetch_bookings(self, range_start: DateTime, range_end: DateTime) -> List[Appointment]:
        """Return bookings scheduled within ``[range_start, range_end)``."""

    async def create_booking(self, fields: Mapping[str, Any]) -> Appointment:
        """Create a booking and return it."""

    async def update_booking(self, appointment_id: str, fields: Mapping[str, Any]) -> Appointment:
        """
        Apply a partial update.

        Must raise ``PersistenceRejected(is_conflict=True)`` when the backend
        detects a scheduling conflict.
        """

    async def delete_booking(self, appointment_id: str) -> None:
        """Cancel a booking."""


class BookingSnapshot:
    """
    Bookings of the currently viewed range, keyed by id.
    """

    def __init__(self, data_source: BookingDataSource, timezone: str = "UTC") -> None:
        self._data_source = data_source
        self._timezone = timezone
        self._appointments: Dict[str, Appointment] = {}
        self._range: Optional[Tuple[DateTime, DateTime]] = None
        self.pending_ids: Set[str] = set()
        self.refreshed_at: Optional[DateTime] = None

    @property
    def range(self) -> Optional[Tuple[DateTime, DateTime]]:
        return self._range

    async def load(self, range_start: DateTime, range_end: DateTime) -> None:
        """Switch to a new range and fetch its bookings."""
        self._range = (range_start, range_end)
        self.pending_ids.clear()
        await self.refresh()

    async def refresh(self) -> None:
        """Replace the snapshot with the backend's current bookings for the range."""
        if self._range is None:
            return

        range_start, range_end = self._range
        # Bookings that start before the range can still run into it
        lookback = range_start.subtract(minutes=MAX_RECORD_DURATION_MINUTES)
        fetched = await self._data_source.fetch_bookings(lookback, range_end)
        self._appointments = {
            appointment.id: appointment
            for appointment in fetched
            if appointment.scheduled_at >= range_start or _ends_after(appointment, range_start)
        }
        self.refreshed_at = pendulum.now("UTC")
        logger.debug("Snapshot refreshed with %d bookings", len(self._appointments))

    def get(self, appointment_id: str) -> Appointment:
        try:
            return self._appointments[appointment_id]
        except KeyError:
            raise UnknownAppointment(f"Appointment {appointment_id} is not loaded") from None

    def __contains__(self, appointment_id: object) -> bool:
        return appointment_id in self._appointments

    def __len__(self) -> int:
        return len(self._appointments)

    def appointments(self, include_cancelled: bool = False) -> List[Appointment]:
        return [
            appointment
            for appointment in self._appointments.values()
            if include_cancelled or not appointment.is_cancelled
        ]

    def on_day(self, day: date) -> List[Appointment]:
        """Active appointments starting on a calendar day in the snapshot's timezone."""
        return [
            appointment
            for appointment in self.appointments()
            if appointment.scheduled_at.in_timezone(self._timezone).date() == day
        ]

    def apply(self, appointment_id: str, fields: Mapping[str, Any]) -> Appointment:
        """
        Apply field changes locally (optimistic update).

        Returns:
            The appointment as it was before the change
        """
        previous = self.get(appointment_id)
        self._appointments[appointment_id] = previous.with_changes(**fields)
        return previous
