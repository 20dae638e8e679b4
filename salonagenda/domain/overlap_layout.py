"""
Column layout for concurrent appointments in a day view.

Algorithm:
1. Sort by start, longer appointments first on equal starts, then by id
2. Sweep into overlap groups: an appointment joins the current group while it
   starts before the latest end seen in that group (transitive clustering)
3. Inside a group, place each appointment in the lowest column that is free
   again (its previous occupant ended at or before this start)
4. Every member of a group shares the group's column count, so all columns
   of a group render at the same width
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from pendulum import DateTime

from .exceptions import InvalidInterval
from .models import OverlapGroup, PositionedAppointment, interval_of

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExcludedEntry:
    """An input item left out of the layout because its interval is malformed."""
    item: Any
    reason: str


@dataclass
class DayLayout:
    """Result of packing one day's appointments."""
    positioned: List[PositionedAppointment] = field(default_factory=list)
    groups: List[OverlapGroup] = field(default_factory=list)
    excluded: List[ExcludedEntry] = field(default_factory=list)


_Entry = Tuple[str, DateTime, int, Any]


def _normalize(appointments: Iterable[Any]) -> Tuple[List[_Entry], List[ExcludedEntry]]:
    entries: List[_Entry] = []
    excluded: List[ExcludedEntry] = []

    for item in appointments:
        try:
            item_id, start, duration = interval_of(item)
        except InvalidInterval as exc:
            logger.warning("Excluding appointment from layout: %s", exc)
            excluded.append(ExcludedEntry(item=item, reason=str(exc)))
            continue
        entries.append((item_id, start, duration, item))

    entries.sort(key=lambda e: (e[1], -e[2], e[0]))
    return entries, excluded


def _cluster(entries: Sequence[_Entry]) -> List[List[_Entry]]:
    clusters: List[List[_Entry]] = []
    current: List[_Entry] = []
    current_end: DateTime | None = None

    for entry in entries:
        _, start, duration, _ = entry
        end = start.add(minutes=duration)

        if current and start < current_end:
            current.append(entry)
            current_end = max(current_end, end)
        else:
            if current:
                clusters.append(current)
            current = [entry]
            current_end = end

    if current:
        clusters.append(current)

    return clusters


def _assign_columns(cluster: Sequence[_Entry], max_columns: Optional[int] = None) -> OverlapGroup:
    column_ends: List[DateTime] = []
    assignments: List[Tuple[_Entry, int]] = []

    for entry in cluster:
        _, start, duration, _ = entry
        end = start.add(minutes=duration)

        for index, column_end in enumerate(column_ends):
            if column_end <= start:
                column_ends[index] = end
                assignments.append((entry, index))
                break
        else:
            column_ends.append(end)
            assignments.append((entry, len(column_ends) - 1))

    natural_columns = len(column_ends)
    total_columns = natural_columns
    if max_columns is not None and natural_columns > max_columns:
        total_columns = max_columns
    overflowing = total_columns < natural_columns
    last_column = total_columns - 1
    width = 100.0 / total_columns

    members = []
    for (item_id, start, duration, item), natural in assignments:
        column = min(natural, last_column)
        members.append(
            PositionedAppointment(
                id=item_id,
                scheduled_at=start,
                duration_minutes=duration,
                column_index=column,
                total_columns=total_columns,
                left_percent=column * width,
                width_percent=width,
                source=item,
                folded=overflowing and natural >= last_column,
            )
        )

    return OverlapGroup(
        members=members,
        start=min(m.scheduled_at for m in members),
        end=max(m.end for m in members),
        total_columns=total_columns,
        hidden_count=sum(1 for _, natural in assignments if natural > last_column),
    )


def pack_day(appointments: Iterable[Any], max_columns: Optional[int] = None) -> DayLayout:
    """
    Partition a day's appointments into overlap groups and assign columns.

    With ``max_columns`` a group never gets more columns than that; members
    that would land further right are folded into the last column and
    counted in ``OverlapGroup.hidden_count``.

    Items with unparseable starts or non-positive durations are reported in
    ``DayLayout.excluded`` and logged; they never abort the layout.
    """
    if max_columns is not None and max_columns < 1:
        raise ValueError(f"max_columns must be at least 1, got {max_columns}")

    entries, excluded = _normalize(appointments)
    groups = [_assign_columns(cluster, max_columns) for cluster in _cluster(entries)]

    return DayLayout(
        positioned=[member for group in groups for member in group.members],
        groups=groups,
        excluded=excluded,
    )


def calculate_appointment_positions(
    appointments: Iterable[Any],
    max_columns: Optional[int] = None,
) -> List[PositionedAppointment]:
    """
    Annotate appointments with column index, column count and percentages.

    Args:
        appointments: ``Appointment`` objects or mappings with ``id``,
            ``scheduled_at`` and ``duration_minutes``
        max_columns: Optional cap on the columns of one overlap group

    Returns:
        One positioned entry per valid input item, in input order
    """
    items = list(appointments)
    by_source = {id(member.source): member for member in pack_day(items, max_columns).positioned}
    return [by_source[id(item)] for item in items if id(item) in by_source]


def appointments_in_window(
    appointments: Iterable[Any],
    window_start: DateTime,
    window_minutes: int = 60,
) -> List[PositionedAppointment]:
    """
    Position only the appointments that overlap a grid window (e.g. one hour row).
    """
    window_end = window_start.add(minutes=window_minutes)
    layout = pack_day(appointments)

    visible = [
        member.source
        for member in layout.positioned
        if member.scheduled_at < window_end and window_start < member.end
    ]
    return calculate_appointment_positions(visible)


def overflow_count(total_appointments: int, max_visible: int) -> int:
    """Number of appointments hidden behind a "+N more" badge."""
    return max(0, total_appointments - max_visible)
