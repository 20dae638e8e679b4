"""
Direct-manipulation edits (move and resize) with undo/redo.

A gesture runs through explicit phases::

    IDLE -> DRAGGING -> VALIDATING -> COMMITTING -> IDLE
                                   -> REJECTED   -> IDLE

The controller does not know about pointers, touch or keyboards; callers
feed it instants (where the appointment or its edge was dropped). Every
applied change is an ``EditCommand`` holding forward and inverse field
values, which serves both optimistic-update rollback and the undo/redo
stacks. Only one gesture or commit can be active at a time.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pendulum import DateTime

from ..domain.conflicts import find_conflicts
from ..domain.exceptions import (
    BackendAPIError,
    ConflictDetected,
    GestureInProgress,
    NoActiveGesture,
    PersistenceRejected,
    UnknownAppointment,
)
from ..domain.models import Appointment, PendingEdit
from .booking_snapshot import BookingDataSource, BookingSnapshot

logger = logging.getLogger(__name__)

RESIZE_INCREMENT_MINUTES = 15
MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 480

MESSAGE_UNAVAILABLE = "This time slot is unavailable."
MESSAGE_FAILED = "The appointment could not be updated. Please try again."
MESSAGE_GONE = "The appointment no longer exists."


class GesturePhase(Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    VALIDATING = "validating"
    COMMITTING = "committing"
    REJECTED = "rejected"


class GestureKind(Enum):
    MOVE = "move"
    RESIZE = "resize"


class ResizeEdge(str, Enum):
    TOP = "top"
    BOTTOM = "bottom"


class EditStatus(Enum):
    COMMITTED = "committed"
    REJECTED = "rejected"
    FAILED = "failed"
    CANCELLED = "cancelled"
    UNCHANGED = "unchanged"


# -- Interval arithmetic ------------------------------------------------------

def snap_to_increment(instant: DateTime, increment_minutes: int = RESIZE_INCREMENT_MINUTES) -> DateTime:
    """Round an instant to the nearest multiple of ``increment_minutes`` past midnight."""
    minutes = instant.hour * 60 + instant.minute + (instant.second + instant.microsecond / 1e6) / 60
    rounded = int(minutes / increment_minutes + 0.5) * increment_minutes

    if rounded >= 24 * 60:
        return instant.start_of("day").add(days=1)
    return instant.set(hour=rounded // 60, minute=rounded % 60, second=0, microsecond=0)


def clamp_duration(
    minutes: int,
    min_minutes: int = MIN_DURATION_MINUTES,
    max_minutes: int = MAX_DURATION_MINUTES,
) -> int:
    return max(min_minutes, min(minutes, max_minutes))


def _minutes_between(start: DateTime, end: DateTime) -> int:
    return int((end - start).total_seconds() // 60)


def move_interval(
    appointment: Appointment,
    pointer: DateTime,
    increment_minutes: int = RESIZE_INCREMENT_MINUTES,
) -> Tuple[DateTime, int]:
    """Proposed ``(start, duration)`` when an appointment is dropped at ``pointer``."""
    return snap_to_increment(pointer, increment_minutes), appointment.duration_minutes


def resize_interval(
    appointment: Appointment,
    edge: ResizeEdge,
    pointer: DateTime,
    increment_minutes: int = RESIZE_INCREMENT_MINUTES,
    min_minutes: int = MIN_DURATION_MINUTES,
    max_minutes: int = MAX_DURATION_MINUTES,
) -> Tuple[DateTime, int]:
    """
    Proposed ``(start, duration)`` when an edge is dragged to ``pointer``.

    The top edge keeps the end fixed and moves the start; the bottom edge
    keeps the start fixed. The moved boundary snaps to the nearest increment
    and the duration is clamped to ``[min_minutes, max_minutes]``.
    """
    boundary = snap_to_increment(pointer, increment_minutes)

    if ResizeEdge(edge) is ResizeEdge.TOP:
        end = appointment.end
        duration = clamp_duration(_minutes_between(boundary, end), min_minutes, max_minutes)
        return end.subtract(minutes=duration), duration

    duration = clamp_duration(
        _minutes_between(appointment.scheduled_at, boundary), min_minutes, max_minutes
    )
    return appointment.scheduled_at, duration


# -- Commands and outcomes ----------------------------------------------------

@dataclass(frozen=True)
class EditCommand:
    """
    A reversible change to one appointment, made of field-level edits.
    """
    appointment_id: str
    edits: Tuple[PendingEdit, ...]

    @classmethod
    def from_changes(cls, original: Appointment, changes: Mapping[str, Any]) -> "EditCommand":
        edits = tuple(
            PendingEdit(
                appointment_id=original.id,
                field=name,
                old_value=getattr(original, name),
                new_value=value,
            )
            for name, value in changes.items()
            if getattr(original, name) != value
        )
        return cls(appointment_id=original.id, edits=edits)

    @property
    def is_empty(self) -> bool:
        return not self.edits

    def forward_fields(self) -> Dict[str, Any]:
        return {edit.field: edit.new_value for edit in self.edits}

    def inverse_fields(self) -> Dict[str, Any]:
        return {edit.field: edit.old_value for edit in self.edits}


@dataclass(frozen=True)
class GesturePreview:
    """Ghost position shown while dragging; nothing is committed."""
    appointment_id: str
    scheduled_at: DateTime
    duration_minutes: int
    has_conflict: bool

    @property
    def end(self) -> DateTime:
        return self.scheduled_at.add(minutes=self.duration_minutes)


@dataclass
class EditOutcome:
    """Result of a drop, undo or redo as shown to the user."""
    status: EditStatus
    message: Optional[str] = None
    command: Optional[EditCommand] = None
    conflicting_ids: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status in (EditStatus.COMMITTED, EditStatus.UNCHANGED, EditStatus.CANCELLED)

    def raise_for_status(self) -> None:
        """Raise the matching scheduling error for rejected or failed edits."""
        if self.status is EditStatus.REJECTED:
            appointment_id = self.command.appointment_id if self.command else None
            raise ConflictDetected(appointment_id, self.conflicting_ids)
        if self.status is EditStatus.FAILED:
            raise PersistenceRejected(self.message or MESSAGE_FAILED)


@dataclass
class _Gesture:
    kind: GestureKind
    appointment: Appointment
    edge: Optional[ResizeEdge] = None


# -- Controller ---------------------------------------------------------------

class EditController:
    """
    Coordinates move/resize gestures, optimistic commits and undo/redo.

    The undo and redo stacks live as long as the controller's editing
    session; call ``clear_history`` when the viewed range changes or the
    view goes away.
    """

    def __init__(
        self,
        data_source: BookingDataSource,
        snapshot: BookingSnapshot,
        *,
        increment_minutes: int = RESIZE_INCREMENT_MINUTES,
        min_duration_minutes: int = MIN_DURATION_MINUTES,
        max_duration_minutes: int = MAX_DURATION_MINUTES,
    ) -> None:
        self._data_source = data_source
        self._snapshot = snapshot
        self._increment = increment_minutes
        self._min_duration = min_duration_minutes
        self._max_duration = max_duration_minutes

        self._phase = GesturePhase.IDLE
        self._gesture: Optional[_Gesture] = None
        self._undo: List[EditCommand] = []
        self._redo: List[EditCommand] = []

    @property
    def phase(self) -> GesturePhase:
        return self._phase

    @property
    def snapshot(self) -> BookingSnapshot:
        return self._snapshot

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_stack(self) -> Tuple[EditCommand, ...]:
        return tuple(self._undo)

    @property
    def redo_stack(self) -> Tuple[EditCommand, ...]:
        return tuple(self._redo)

    def clear_history(self) -> None:
        self._undo.clear()
        self._redo.clear()

    # -- Gestures -------------------------------------------------------------

    def begin_move(self, appointment_id: str) -> None:
        self._begin(GestureKind.MOVE, appointment_id)

    def begin_resize(self, appointment_id: str, edge: "ResizeEdge | str") -> None:
        self._begin(GestureKind.RESIZE, appointment_id, ResizeEdge(edge))

    def _begin(self, kind: GestureKind, appointment_id: str, edge: Optional[ResizeEdge] = None) -> None:
        self._ensure_idle()
        appointment = self._snapshot.get(appointment_id)
        self._gesture = _Gesture(kind=kind, appointment=appointment, edge=edge)
        self._phase = GesturePhase.DRAGGING

    def preview(self, pointer: DateTime) -> GesturePreview:
        """Compute the ghost position for the current pointer."""
        gesture = self._require_dragging()
        start, duration = self._propose(gesture, pointer)
        conflicts = find_conflicts(
            start, duration, self._snapshot.appointments(), exclude_id=gesture.appointment.id
        )
        return GesturePreview(
            appointment_id=gesture.appointment.id,
            scheduled_at=start,
            duration_minutes=duration,
            has_conflict=bool(conflicts),
        )

    def cancel(self) -> EditOutcome:
        """Abort the gesture without any side effect (escape key, invalid drop target)."""
        if self._phase is GesturePhase.COMMITTING:
            raise GestureInProgress("The change has already been sent and cannot be cancelled")
        self._reset()
        return EditOutcome(status=EditStatus.CANCELLED)

    async def drop(self, pointer: DateTime) -> EditOutcome:
        """
        Finish the gesture at ``pointer``: validate, then commit or reject.
        """
        gesture = self._require_dragging()
        original = gesture.appointment
        start, duration = self._propose(gesture, pointer)

        command = EditCommand.from_changes(
            original, {"scheduled_at": start, "duration_minutes": duration}
        )
        if command.is_empty:
            self._reset()
            return EditOutcome(status=EditStatus.UNCHANGED)

        self._phase = GesturePhase.VALIDATING
        conflicts = find_conflicts(
            start, duration, self._snapshot.appointments(), exclude_id=original.id
        )
        if conflicts:
            return self._reject(command, [c.id for c in conflicts])

        previous_redo = list(self._redo)
        self._undo.append(command)
        self._redo.clear()

        try:
            error = await self._dispatch(
                command.appointment_id, command.forward_fields(), command.inverse_fields()
            )
        except asyncio.CancelledError:
            self._undo.pop()
            self._redo = previous_redo
            raise
        if error is not None:
            self._undo.pop()
            self._redo = previous_redo
            return self._failure(command, error)

        logger.info("Committed %s of appointment %s", gesture.kind.value, original.id)
        return EditOutcome(status=EditStatus.COMMITTED, command=command)

    # -- Undo / redo ----------------------------------------------------------

    async def undo(self) -> EditOutcome:
        """Re-apply the old values of the most recent change."""
        return await self._replay(self._undo, self._redo, forward=False)

    async def redo(self) -> EditOutcome:
        """Re-apply the new values of the most recently undone change."""
        return await self._replay(self._redo, self._undo, forward=True)

    async def _replay(
        self,
        source: List[EditCommand],
        target: List[EditCommand],
        *,
        forward: bool,
    ) -> EditOutcome:
        self._ensure_idle()
        if not source:
            return EditOutcome(status=EditStatus.UNCHANGED)

        command = source.pop()
        fields = command.forward_fields() if forward else command.inverse_fields()
        revert = command.inverse_fields() if forward else command.forward_fields()

        try:
            current = self._snapshot.get(command.appointment_id)
        except UnknownAppointment:
            logger.warning("Dropping history entry for missing appointment %s", command.appointment_id)
            return EditOutcome(status=EditStatus.FAILED, message=MESSAGE_GONE, command=command)

        self._phase = GesturePhase.VALIDATING
        proposed = current.with_changes(**fields)
        conflicts = find_conflicts(
            proposed.scheduled_at,
            proposed.duration_minutes,
            self._snapshot.appointments(),
            exclude_id=command.appointment_id,
        )
        if conflicts:
            source.append(command)
            return self._reject(command, [c.id for c in conflicts])

        target.append(command)
        try:
            error = await self._dispatch(command.appointment_id, fields, revert)
        except asyncio.CancelledError:
            target.pop()
            source.append(command)
            raise
        if error is not None:
            target.pop()
            source.append(command)
            return self._failure(command, error)

        logger.info("%s appointment %s", "Redid" if forward else "Undid", command.appointment_id)
        return EditOutcome(status=EditStatus.COMMITTED, command=command)

    # -- Internals ------------------------------------------------------------

    async def _dispatch(
        self,
        appointment_id: str,
        fields: Mapping[str, Any],
        revert_fields: Mapping[str, Any],
    ) -> Optional[PersistenceRejected]:
        """
        Apply ``fields`` optimistically and persist them.

        Returns:
            The backend rejection if the update failed (the local state has
            been reverted), otherwise None
        """
        self._phase = GesturePhase.COMMITTING
        self._snapshot.apply(appointment_id, fields)
        self._snapshot.pending_ids.add(appointment_id)

        error: Optional[PersistenceRejected] = None
        try:
            await self._data_source.update_booking(appointment_id, dict(fields))
        except PersistenceRejected as exc:
            logger.warning("Update of appointment %s rejected: %s", appointment_id, exc)
            self._snapshot.apply(appointment_id, revert_fields)
            error = exc
        except Exception as exc:
            logger.exception("Update of appointment %s failed", appointment_id)
            self._snapshot.apply(appointment_id, revert_fields)
            error = PersistenceRejected(str(exc) or type(exc).__name__)
        except asyncio.CancelledError:
            self._snapshot.apply(appointment_id, revert_fields)
            self._reset()
            raise
        finally:
            self._snapshot.pending_ids.discard(appointment_id)

        if error is None:
            try:
                await self._snapshot.refresh()
            except BackendAPIError as exc:
                logger.warning("Could not refresh bookings after commit: %s", exc)

        self._reset()
        return error

    def _propose(self, gesture: _Gesture, pointer: DateTime) -> Tuple[DateTime, int]:
        if gesture.kind is GestureKind.MOVE:
            return move_interval(gesture.appointment, pointer, self._increment)
        return resize_interval(
            gesture.appointment,
            gesture.edge or ResizeEdge.BOTTOM,
            pointer,
            self._increment,
            self._min_duration,
            self._max_duration,
        )

    def _reject(self, command: EditCommand, conflicting_ids: List[str]) -> EditOutcome:
        self._phase = GesturePhase.REJECTED
        logger.info(
            "Rejected change to appointment %s: overlaps %s",
            command.appointment_id,
            ", ".join(conflicting_ids),
        )
        self._reset()
        return EditOutcome(
            status=EditStatus.REJECTED,
            message=MESSAGE_UNAVAILABLE,
            command=command,
            conflicting_ids=conflicting_ids,
        )

    @staticmethod
    def _failure(command: EditCommand, error: PersistenceRejected) -> EditOutcome:
        message = MESSAGE_UNAVAILABLE if error.is_conflict else MESSAGE_FAILED
        return EditOutcome(status=EditStatus.FAILED, message=message, command=command)

    def _ensure_idle(self) -> None:
        if self._phase is not GesturePhase.IDLE:
            raise GestureInProgress(f"Another edit is in progress ({self._phase.value})")

    def _require_dragging(self) -> _Gesture:
        if self._phase is not GesturePhase.DRAGGING or self._gesture is None:
            raise NoActiveGesture("No move or resize gesture has been started")
        return self._gesture

    def _reset(self) -> None:
        self._gesture = None
        self._phase = GesturePhase.IDLE
