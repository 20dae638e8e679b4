"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .agenda import (
    AgendaService,
    AgendaView,
    BusinessHoursSource,
    DayAgenda,
    StaticBusinessHoursSource,
    ViewMode,
)
from .booking_snapshot import BookingDataSource, BookingSnapshot
from .edit_controller import EditController, EditOutcome, EditStatus, GesturePhase, ResizeEdge

__all__ = [
    "AgendaService",
    "AgendaView",
    "BookingDataSource",
    "BookingSnapshot",
    "BusinessHoursSource",
    "DayAgenda",
    "EditController",
    "EditOutcome",
    "EditStatus",
    "GesturePhase",
    "ResizeEdge",
    "StaticBusinessHoursSource",
    "ViewMode",
]
