"""
Tests for the hosted booking backend client.
"""

import asyncio
import json
from typing import Any, List, Optional

import pendulum
import pytest
import requests

from salonagenda.adapters.rest_client import RestBookingClient
from salonagenda.domain.exceptions import BackendAPIError, PersistenceRejected

TZ = "Europe/Amsterdam"


def _response(status_code: int, body: Any) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response._content = json.dumps(body).encode("utf-8")
    response.encoding = "utf-8"
    response.url = "https://example.supabase.co/rest/v1/bookings"
    return response


class FakeSession:
    """Records requests and answers with a canned response."""

    def __init__(self, response: Optional[requests.Response] = None, error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.calls: List[dict] = []

    def _answer(self, **call):
        self.calls.append(call)
        if self.error is not None:
            raise self.error
        return self.response

    def get(self, url, headers=None, params=None, timeout=None):
        return self._answer(method="GET", url=url, headers=headers, params=params)

    def request(self, method, url, headers=None, params=None, json=None, timeout=None):
        return self._answer(method=method, url=url, headers=headers, params=params, json=json)


def _client(session: FakeSession) -> RestBookingClient:
    return RestBookingClient(
        "https://example.supabase.co/",
        "secret-key",
        "tenant-1",
        timezone=TZ,
        session=session,
    )


BOOKING_ROW = {
    "id": "bk-1",
    "scheduled_at": "2025-03-10T08:00:00+00:00",
    "duration_minutes": 60,
    "staff_id": "st-anna",
    "status": "scheduled",
}


class TestReads:
    """Tests for fetching bookings and business hours."""

    def test_fetch_bookings_builds_range_query(self):
        session = FakeSession(_response(200, [BOOKING_ROW]))
        start = pendulum.datetime(2025, 3, 10, tz=TZ)

        bookings = asyncio.run(_client(session).fetch_bookings(start, start.add(days=1)))

        assert [b.id for b in bookings] == ["bk-1"]
        assert bookings[0].scheduled_at.hour == 9
        call = session.calls[0]
        assert call["url"] == "https://example.supabase.co/rest/v1/bookings"
        assert ("tenant_id", "eq.tenant-1") in call["params"]
        assert ("scheduled_at", "gte.2025-03-09T23:00:00Z") in call["params"]
        assert ("scheduled_at", "lt.2025-03-10T23:00:00Z") in call["params"]
        assert call["headers"]["apikey"] == "secret-key"
        assert call["headers"]["Authorization"] == "Bearer secret-key"

    def test_invalid_rows_are_skipped(self):
        rows = [BOOKING_ROW, {"id": "bk-2", "scheduled_at": "garbage", "duration_minutes": 30}]
        session = FakeSession(_response(200, rows))
        start = pendulum.datetime(2025, 3, 10, tz=TZ)

        bookings = _client(session).get_bookings(start, start.add(days=1))

        assert [b.id for b in bookings] == ["bk-1"]

    def test_http_error_raises_backend_error(self):
        session = FakeSession(_response(500, {"message": "boom"}))
        start = pendulum.datetime(2025, 3, 10, tz=TZ)

        with pytest.raises(BackendAPIError):
            _client(session).get_bookings(start, start.add(days=1))

    def test_connection_error_raises_backend_error(self):
        session = FakeSession(error=requests.exceptions.ConnectionError("offline"))
        start = pendulum.datetime(2025, 3, 10, tz=TZ)

        with pytest.raises(BackendAPIError, match="offline"):
            _client(session).get_bookings(start, start.add(days=1))

    def test_business_hours(self):
        body = [{"business_hours": {"0": {"closed": True}, "1": {"open": "10:00", "close": "19:00"}}}]
        session = FakeSession(_response(200, body))

        hours = asyncio.run(_client(session).fetch_business_hours("tenant-1"))

        assert hours.for_day(0).open.hour == 10
        assert hours.for_day(6).closed
        assert session.calls[0]["url"].endswith("/tenants")

    def test_missing_business_hours(self):
        session = FakeSession(_response(200, [{"business_hours": None}]))

        assert _client(session).get_business_hours("tenant-1") is None

    def test_malformed_business_hours(self):
        body = [{"business_hours": {"1": {"open": "19:00", "close": "10:00"}}}]
        session = FakeSession(_response(200, body))

        with pytest.raises(BackendAPIError):
            _client(session).get_business_hours("tenant-1")

    def test_default_session(self, monkeypatch):
        session = FakeSession(_response(200, []))
        monkeypatch.setattr(requests, "Session", lambda: session)

        client = RestBookingClient("https://example.supabase.co", "k", "tenant-1")

        assert client.session is session


class TestWrites:
    """Tests for mutations and their error mapping."""

    def test_update_serializes_instants_in_utc(self):
        session = FakeSession(_response(200, [BOOKING_ROW]))

        asyncio.run(
            _client(session).update_booking("bk-1", {"scheduled_at": pendulum.datetime(2025, 3, 10, 12, 0, tz=TZ)})
        )

        call = session.calls[0]
        assert call["method"] == "PATCH"
        assert ("id", "eq.bk-1") in call["params"]
        assert call["json"]["scheduled_at"].startswith("2025-03-10T11:00:00")

    def test_delete_cancels(self):
        session = FakeSession(_response(200, [dict(BOOKING_ROW, status="cancelled")]))

        asyncio.run(_client(session).delete_booking("bk-1"))

        assert session.calls[0]["json"] == {"status": "cancelled"}

    def test_create_adds_tenant(self):
        session = FakeSession(_response(201, [BOOKING_ROW]))

        created = asyncio.run(_client(session).create_booking({"scheduled_at": "2025-03-10T08:00:00Z", "duration_minutes": 60}))

        assert created.id == "bk-1"
        assert session.calls[0]["method"] == "POST"
        assert session.calls[0]["json"]["tenant_id"] == "tenant-1"

    @pytest.mark.parametrize(
        "status_code, body",
        [
            (409, {"message": "conflict"}),
            (400, {"code": "23P01", "message": "conflicting key value violates exclusion constraint"}),
            (400, {"code": "23505", "message": "duplicate key"}),
        ],
    )
    def test_conflicts_are_flagged(self, status_code, body):
        session = FakeSession(_response(status_code, body))

        with pytest.raises(PersistenceRejected) as excinfo:
            _client(session).patch_booking("bk-1", {"duration_minutes": 30})

        assert excinfo.value.is_conflict

    def test_other_failures_are_not_conflicts(self):
        session = FakeSession(_response(500, {"message": "boom"}))

        with pytest.raises(PersistenceRejected) as excinfo:
            _client(session).patch_booking("bk-1", {"duration_minutes": 30})

        assert not excinfo.value.is_conflict

    def test_transport_failure(self):
        session = FakeSession(error=requests.exceptions.Timeout("slow"))

        with pytest.raises(PersistenceRejected):
            asyncio.run(_client(session).update_booking("bk-1", {"duration_minutes": 30}))

    def test_missing_row(self):
        session = FakeSession(_response(200, []))

        with pytest.raises(PersistenceRejected, match="not found"):
            _client(session).patch_booking("bk-1", {"duration_minutes": 30})
