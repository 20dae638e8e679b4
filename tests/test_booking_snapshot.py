"""
Tests for the in-memory booking snapshot.
"""

import asyncio
from datetime import date

import pendulum
import pytest

from salonagenda.adapters.mock_booking_client import MockBookingClient
from salonagenda.domain.exceptions import UnknownAppointment
from salonagenda.domain.models import Appointment
from salonagenda.services.booking_snapshot import BookingSnapshot

TZ = "Europe/Amsterdam"


def _snapshot() -> BookingSnapshot:
    client = MockBookingClient(
        bookings=[
            Appointment(id="late", scheduled_at=pendulum.datetime(2025, 3, 10, 23, 30, tz="UTC"), duration_minutes=30),
            Appointment(id="day", scheduled_at=pendulum.datetime(2025, 3, 10, 10, 0, tz=TZ), duration_minutes=30),
            Appointment(
                id="gone",
                scheduled_at=pendulum.datetime(2025, 3, 10, 11, 0, tz=TZ),
                duration_minutes=30,
                status="cancelled",
            ),
        ]
    )
    snapshot = BookingSnapshot(client, timezone=TZ)
    start = pendulum.datetime(2025, 3, 10, tz=TZ)
    asyncio.run(snapshot.load(start, start.add(days=2)))
    return snapshot


class TestBookingSnapshot:
    """Tests for BookingSnapshot."""

    def test_refresh_before_load_is_a_no_op(self):
        snapshot = BookingSnapshot(MockBookingClient(bookings=[]))

        asyncio.run(snapshot.refresh())

        assert len(snapshot) == 0
        assert snapshot.refreshed_at is None

    def test_cancelled_bookings_are_hidden(self):
        snapshot = _snapshot()

        assert len(snapshot) == 3
        assert "gone" in snapshot
        assert sorted(a.id for a in snapshot.appointments()) == ["day", "late"]
        assert len(snapshot.appointments(include_cancelled=True)) == 3

    def test_on_day_uses_local_calendar_day(self):
        snapshot = _snapshot()

        assert [a.id for a in snapshot.on_day(date(2025, 3, 10))] == ["day"]
        assert [a.id for a in snapshot.on_day(date(2025, 3, 11))] == ["late"]

    def test_bookings_running_into_the_range_are_loaded(self):
        client = MockBookingClient(
            bookings=[
                Appointment(id="overnight", scheduled_at=pendulum.datetime(2025, 3, 9, 23, 30, tz=TZ), duration_minutes=60),
                Appointment(id="evening", scheduled_at=pendulum.datetime(2025, 3, 9, 20, 0, tz=TZ), duration_minutes=30),
            ],
            timezone=TZ,
        )
        snapshot = BookingSnapshot(client, timezone=TZ)
        start = pendulum.datetime(2025, 3, 10, tz=TZ)

        asyncio.run(snapshot.load(start, start.add(days=1)))

        assert "overnight" in snapshot
        assert "evening" not in snapshot
        assert snapshot.on_day(date(2025, 3, 10)) == []

    def test_apply_returns_previous_state(self):
        snapshot = _snapshot()

        previous = snapshot.apply("day", {"duration_minutes": 60})

        assert previous.duration_minutes == 30
        assert snapshot.get("day").duration_minutes == 60

    def test_unknown_appointment(self):
        with pytest.raises(UnknownAppointment):
            _snapshot().get("missing")
