"""
Booking backend client for a hosted PostgREST-style API.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

import requests
from pendulum import DateTime

from ..domain.exceptions import BackendAPIError, InvalidInterval, PersistenceRejected
from ..domain.models import Appointment, BusinessHours, STATUS_CANCELLED

logger = logging.getLogger(__name__)

# Postgres error codes surfaced by the backend for constraint violations
EXCLUSION_VIOLATION = "23P01"
UNIQUE_VIOLATION = "23505"
CONFLICT_CODES = {EXCLUSION_VIOLATION, UNIQUE_VIOLATION}


class RestBookingClient:
    """
    Client for the hosted booking tables.

    Reads and writes go through the REST interface of the tenant database;
    blocking HTTP calls run in a worker thread so the client satisfies the
    async ``BookingDataSource`` and ``BusinessHoursSource`` protocols.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        tenant_id: str,
        *,
        timezone: str = "UTC",
        bookings_table: str = "bookings",
        tenants_table: str = "tenants",
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Project URL of the hosted backend
            api_key: API key sent as ``apikey`` and bearer token
            tenant_id: Tenant whose bookings are read and written
            timezone: Timezone appointments are converted to
            session: Optional pre-configured requests session
        """
        self.rest_url = f"{base_url.rstrip('/')}/rest/v1"
        self.tenant_id = tenant_id
        self.timezone = timezone
        self.bookings_table = bookings_table
        self.tenants_table = tenants_table
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }

    # -- BookingDataSource ----------------------------------------------------

    async def fetch_bookings(self, range_start: DateTime, range_end: DateTime) -> List[Appointment]:
        return await asyncio.to_thread(self.get_bookings, range_start, range_end)

    async def create_booking(self, fields: Mapping[str, Any]) -> Appointment:
        return await asyncio.to_thread(self.insert_booking, fields)

    async def update_booking(self, appointment_id: str, fields: Mapping[str, Any]) -> Appointment:
        return await asyncio.to_thread(self.patch_booking, appointment_id, fields)

    async def delete_booking(self, appointment_id: str) -> None:
        await asyncio.to_thread(self.patch_booking, appointment_id, {"status": STATUS_CANCELLED})

    # -- BusinessHoursSource --------------------------------------------------

    async def fetch_business_hours(self, tenant_id: str) -> Optional[BusinessHours]:
        return await asyncio.to_thread(self.get_business_hours, tenant_id)

    # -- Blocking implementation ----------------------------------------------

    def get_bookings(self, range_start: DateTime, range_end: DateTime) -> List[Appointment]:
        """
        Fetch bookings whose start lies in ``[range_start, range_end)``.

        Rows with malformed start or duration are skipped and logged.

        Raises:
            BackendAPIError: If the request fails
        """
        params = [
            ("select", "*"),
            ("tenant_id", f"eq.{self.tenant_id}"),
            ("scheduled_at", f"gte.{range_start.in_timezone('UTC').to_iso8601_string()}"),
            ("scheduled_at", f"lt.{range_end.in_timezone('UTC').to_iso8601_string()}"),
            ("order", "scheduled_at.asc"),
        ]
        rows = self._read(self.bookings_table, params)
        return self._parse_bookings(rows)

    def get_business_hours(self, tenant_id: str) -> Optional[BusinessHours]:
        """
        Fetch the tenant's business hours; None when none are stored.

        Raises:
            BackendAPIError: If the request fails or the hours are malformed
        """
        params = [("select", "business_hours,timezone"), ("id", f"eq.{tenant_id}")]
        rows = self._read(self.tenants_table, params)
        if not rows or not rows[0].get("business_hours"):
            return None

        try:
            return BusinessHours.from_record(rows[0]["business_hours"])
        except (ValueError, KeyError) as e:
            raise BackendAPIError(f"Invalid business hours for tenant {tenant_id}: {e}") from e

    def insert_booking(self, fields: Mapping[str, Any]) -> Appointment:
        payload = {"tenant_id": self.tenant_id, **self._serialize(fields)}
        response = self._write("POST", self.bookings_table, [], payload)
        return self._single_booking(response)

    def patch_booking(self, appointment_id: str, fields: Mapping[str, Any]) -> Appointment:
        params = [("id", f"eq.{appointment_id}"), ("tenant_id", f"eq.{self.tenant_id}")]
        response = self._write("PATCH", self.bookings_table, params, self._serialize(fields))
        return self._single_booking(response)

    def _read(self, table: str, params: List[tuple]) -> List[Dict[str, Any]]:
        url = f"{self.rest_url}/{table}"
        try:
            response = self.session.get(url, headers=self.headers, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            raise BackendAPIError(f"Failed to fetch {table}: {e}") from e
        except ValueError as e:
            raise BackendAPIError(f"Invalid JSON from {table}: {e}") from e

        if not isinstance(data, list):
            raise BackendAPIError(f"Unexpected response shape from {table}")
        return data

    def _write(
        self,
        method: str,
        table: str,
        params: List[tuple],
        payload: Any,
    ) -> List[Dict[str, Any]]:
        """
        Send a mutation and translate failures into ``PersistenceRejected``.

        Constraint violations reported by the database (overlap exclusion or
        uniqueness) are flagged as scheduling conflicts.
        """
        url = f"{self.rest_url}/{table}"
        try:
            response = self.session.request(
                method,
                url,
                headers=self.headers,
                params=params,
                json=payload,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise PersistenceRejected(f"Could not reach booking backend: {e}") from e

        if not response.ok:
            code = self._error_code(response)
            if response.status_code == 409 or code in CONFLICT_CODES:
                raise PersistenceRejected(
                    f"Booking backend reported a scheduling conflict ({code or response.status_code})",
                    is_conflict=True,
                )
            raise PersistenceRejected(f"Booking backend rejected the change ({response.status_code})")

        try:
            data = response.json()
        except ValueError as e:
            raise PersistenceRejected(f"Invalid JSON from booking backend: {e}") from e
        return data if isinstance(data, list) else [data]

    @staticmethod
    def _error_code(response: requests.Response) -> Optional[str]:
        try:
            body = response.json()
        except ValueError:
            return None
        return body.get("code") if isinstance(body, dict) else None

    def _single_booking(self, rows: List[Dict[str, Any]]) -> Appointment:
        if not rows:
            raise PersistenceRejected("Booking not found")
        try:
            return Appointment.from_record(rows[0], self.timezone)
        except InvalidInterval as e:
            raise PersistenceRejected(f"Backend returned an invalid booking: {e}") from e

    def _parse_bookings(self, rows: List[Dict[str, Any]]) -> List[Appointment]:
        bookings: List[Appointment] = []
        for row in rows:
            try:
                bookings.append(Appointment.from_record(row, self.timezone))
            except InvalidInterval as e:
                logger.warning("Skipping booking %s: %s", row.get("id"), e)
        return bookings

    @staticmethod
    def _serialize(fields: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            key: value.in_timezone("UTC").to_iso8601_string() if isinstance(value, DateTime) else value
            for key, value in fields.items()
        }
