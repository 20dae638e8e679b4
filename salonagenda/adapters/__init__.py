"""
Adapters layer - External integrations (hosted booking backend, key storage).
"""

from .credentials import CredentialStore
from .mock_booking_client import MockBookingClient
from .rest_client import RestBookingClient

__all__ = ["CredentialStore", "MockBookingClient", "RestBookingClient"]
