"""
In-memory booking backend for demos and tests without a hosted database.
"""

import json
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pendulum import DateTime

from ..domain.conflicts import find_conflicts
from ..domain.exceptions import InvalidInterval, PersistenceRejected
from ..domain.models import Appointment, BusinessHours, STATUS_CANCELLED

logger = logging.getLogger(__name__)


class MockBookingClient:
    """
    Mock client that simulates the booking backend.

    Without explicit data it loads bookings and business hours from
    mock_bookings.json next to this module. Like the hosted database it
    enforces an overlap constraint on writes, so stale-snapshot rejections
    can be reproduced by changing bookings behind the controller's back.
    """

    def __init__(
        self,
        bookings: Optional[List[Appointment]] = None,
        business_hours: Optional[BusinessHours] = None,
        *,
        data_file: Optional[Path] = None,
        timezone: str = "Europe/Amsterdam",
        enforce_overlap_constraint: bool = True,
    ):
        """
        Initialize the mock client.

        Args:
            bookings: Initial bookings; when None they are read from ``data_file``
            business_hours: Hours returned to every tenant
            data_file: JSON file with "bookings" and "business_hours"
            timezone: Timezone used to parse the JSON bookings
            enforce_overlap_constraint: Reject writes that overlap another booking
        """
        self.timezone = timezone
        self.enforce_overlap_constraint = enforce_overlap_constraint
        self.updates: List[Dict[str, Any]] = []
        self._fail_next: Optional[PersistenceRejected] = None

        if bookings is None:
            loaded_bookings, loaded_hours = self._load_data(
                data_file or Path(__file__).parent / "mock_bookings.json"
            )
            self._bookings = {b.id: b for b in loaded_bookings}
            self.business_hours = business_hours or loaded_hours
        else:
            self._bookings = {b.id: b for b in bookings}
            self.business_hours = business_hours

    def _load_data(self, data_file: Path):
        """Load mock bookings from JSON file."""
        if not data_file.exists():
            return [], None

        with open(data_file, "r", encoding="utf-8") as f:
            data = json.load(f)

        bookings: List[Appointment] = []
        for record in data.get("bookings", []):
            try:
                bookings.append(Appointment.from_record(record, self.timezone))
            except InvalidInterval as e:
                logger.warning("Skipping mock booking %s: %s", record.get("id"), e)

        hours = data.get("business_hours")
        return bookings, BusinessHours.from_record(hours) if hours else None

    def fail_next_update(self, *, is_conflict: bool = False) -> None:
        """Make the next update fail as if the backend refused it."""
        message = "Overlapping booking" if is_conflict else "Backend unavailable"
        self._fail_next = PersistenceRejected(message, is_conflict=is_conflict)

    def add_external_booking(self, appointment: Appointment) -> None:
        """Store a booking as if another session had created it."""
        self._bookings[appointment.id] = appointment

    def get(self, appointment_id: str) -> Appointment:
        return self._bookings[appointment_id]

    async def fetch_bookings(self, range_start: DateTime, range_end: DateTime) -> List[Appointment]:
        return sorted(
            (b for b in self._bookings.values() if range_start <= b.scheduled_at < range_end),
            key=lambda b: (b.scheduled_at, b.id),
        )

    async def create_booking(self, fields: Mapping[str, Any]) -> Appointment:
        record = {"id": uuid.uuid4().hex, **fields}
        try:
            appointment = Appointment.from_record(record, self.timezone)
        except InvalidInterval as e:
            raise PersistenceRejected(f"Invalid booking: {e}") from e

        self._check_constraint(appointment)
        self._bookings[appointment.id] = appointment
        return appointment

    async def update_booking(self, appointment_id: str, fields: Mapping[str, Any]) -> Appointment:
        self.updates.append({"id": appointment_id, "fields": dict(fields)})

        if self._fail_next is not None:
            error, self._fail_next = self._fail_next, None
            raise error

        if appointment_id not in self._bookings:
            raise PersistenceRejected(f"Booking {appointment_id} not found")

        updated = self._bookings[appointment_id].with_changes(**fields)
        self._check_constraint(updated)
        self._bookings[appointment_id] = updated
        return updated

    async def delete_booking(self, appointment_id: str) -> None:
        if appointment_id not in self._bookings:
            raise PersistenceRejected(f"Booking {appointment_id} not found")
        self._bookings[appointment_id] = self._bookings[appointment_id].with_changes(
            status=STATUS_CANCELLED
        )

    async def fetch_business_hours(self, tenant_id: str) -> Optional[BusinessHours]:
        return self.business_hours

    def _check_constraint(self, appointment: Appointment) -> None:
        if not self.enforce_overlap_constraint or appointment.is_cancelled:
            return

        overlapping = find_conflicts(
            appointment.scheduled_at,
            appointment.duration_minutes,
            self._bookings.values(),
            exclude_id=appointment.id,
        )
        if overlapping:
            raise PersistenceRejected(
                f"Booking {appointment.id} overlaps {overlapping[0].id}",
                is_conflict=True,
            )
