"""
Tests for the overlap-layout packer.
"""

import random

import pendulum
import pytest

from salonagenda.domain.conflicts import intervals_overlap
from salonagenda.domain.models import Appointment
from salonagenda.domain.overlap_layout import (
    appointments_in_window,
    calculate_appointment_positions,
    overflow_count,
    pack_day,
)

TZ = "Europe/Amsterdam"


def _appointment(appointment_id, start, minutes):
    return Appointment(
        id=appointment_id,
        scheduled_at=pendulum.parse(f"2025-03-10 {start}", tz=TZ),
        duration_minutes=minutes,
    )


def _by_id(positioned):
    return {p.id: p for p in positioned}


class TestPackDay:
    """Tests for column assignment within overlap groups."""

    def test_single_appointment_takes_full_width(self):
        positioned = calculate_appointment_positions([_appointment("a", "09:00", 60)])

        assert len(positioned) == 1
        assert positioned[0].column_index == 0
        assert positioned[0].total_columns == 1
        assert positioned[0].left_percent == 0
        assert positioned[0].width_percent == 100

    def test_empty_day(self):
        layout = pack_day([])

        assert layout.positioned == []
        assert layout.groups == []
        assert layout.excluded == []

    def test_transitive_group_reuses_freed_column(self):
        """A overlaps B, B overlaps C, A and C only touch."""
        layout = pack_day(
            [
                _appointment("c", "10:00", 60),
                _appointment("a", "09:00", 60),
                _appointment("b", "09:30", 60),
            ]
        )
        positions = _by_id(layout.positioned)

        assert len(layout.groups) == 1
        assert positions["a"].column_index == 0
        assert positions["b"].column_index == 1
        assert positions["c"].column_index == 0
        assert {p.total_columns for p in positions.values()} == {2}
        assert {p.width_percent for p in positions.values()} == {50}
        assert positions["b"].left_percent == 50

    def test_separate_groups_are_independent(self):
        layout = pack_day(
            [
                _appointment("a", "09:00", 60),
                _appointment("b", "09:00", 60),
                _appointment("c", "09:00", 60),
                _appointment("lunch", "12:00", 30),
            ]
        )
        positions = _by_id(layout.positioned)

        assert len(layout.groups) == 2
        assert positions["c"].total_columns == 3
        assert positions["c"].width_percent == pytest.approx(100 / 3)
        assert positions["c"].left_percent == pytest.approx(200 / 3)
        assert positions["lunch"].total_columns == 1

    def test_longer_appointment_first_on_equal_start(self):
        positions = _by_id(
            calculate_appointment_positions([_appointment("a", "09:00", 30), _appointment("b", "09:00", 90)])
        )

        assert positions["b"].column_index == 0
        assert positions["a"].column_index == 1

    def test_id_breaks_remaining_ties(self):
        positions = _by_id(
            calculate_appointment_positions([_appointment("y", "09:00", 30), _appointment("x", "09:00", 30)])
        )

        assert positions["x"].column_index == 0
        assert positions["y"].column_index == 1

    def test_layout_is_deterministic(self):
        appointments = [
            _appointment("a", "09:00", 60),
            _appointment("b", "09:15", 30),
            _appointment("c", "09:30", 90),
            _appointment("d", "10:00", 15),
            _appointment("e", "10:45", 60),
            _appointment("f", "13:00", 45),
        ]
        expected = _by_id(calculate_appointment_positions(appointments))

        shuffled = list(appointments)
        for seed in range(5):
            random.Random(seed).shuffle(shuffled)
            assert _by_id(calculate_appointment_positions(shuffled)) == expected

    def test_no_overlap_within_a_column(self):
        appointments = [
            _appointment(f"bk-{i}", f"{9 + i // 4:02d}:{(i % 4) * 15:02d}", 30 + (i % 3) * 30)
            for i in range(16)
        ]
        layout = pack_day(appointments)

        for group in layout.groups:
            for first in group.members:
                for second in group.members:
                    if first.id == second.id or first.column_index != second.column_index:
                        continue
                    assert not intervals_overlap(
                        first.scheduled_at, first.duration_minutes,
                        second.scheduled_at, second.duration_minutes,
                    )
                assert first.total_columns == group.total_columns
                assert 0 <= first.column_index < group.total_columns

    def test_malformed_items_are_excluded(self):
        layout = pack_day(
            [
                {"id": "ok", "scheduled_at": "2025-03-10T09:00:00+01:00", "duration_minutes": 30},
                {"id": "bad-start", "scheduled_at": "tomorrow-ish", "duration_minutes": 30},
                {"id": "bad-duration", "scheduled_at": "2025-03-10T10:00:00+01:00", "duration_minutes": 0},
                {"id": "endless", "scheduled_at": "2025-03-10T10:00:00+01:00", "duration_minutes": float("inf")},
                {"id": "huge", "scheduled_at": "2025-03-10T10:00:00+01:00", "duration_minutes": 10**12},
            ]
        )

        assert [p.id for p in layout.positioned] == ["ok"]
        assert len(layout.excluded) == 4
        assert layout.excluded[0].item["id"] == "bad-start"

    def test_source_item_is_kept(self):
        appointment = _appointment("a", "09:00", 60)

        positioned = calculate_appointment_positions([appointment])

        assert positioned[0].source is appointment

    def test_positions_follow_input_order(self):
        appointments = [
            _appointment("late", "11:00", 30),
            _appointment("b", "09:15", 30),
            _appointment("a", "09:00", 60),
        ]

        positioned = calculate_appointment_positions(appointments)

        assert [p.id for p in positioned] == ["late", "b", "a"]
        assert _by_id(positioned)["a"].column_index == 0
        assert _by_id(positioned)["b"].column_index == 1


class TestColumnCap:
    """Tests for limiting the number of columns in a group."""

    def _six_way(self):
        return [_appointment(f"bk-{i}", "09:00", 60 + i) for i in range(6)]

    def test_group_is_capped(self):
        layout = pack_day(self._six_way(), max_columns=3)

        group = layout.groups[0]
        assert group.total_columns == 3
        assert group.hidden_count == 3
        assert all(p.total_columns == 3 for p in group.members)
        assert all(p.width_percent == pytest.approx(100 / 3) for p in group.members)
        assert max(p.column_index for p in group.members) == 2

    def test_overflow_is_folded_into_last_column(self):
        positions = _by_id(calculate_appointment_positions(self._six_way(), max_columns=3))

        # Longest first: bk-5 takes column 0, bk-0 would have been column 5
        assert positions["bk-5"].column_index == 0
        assert not positions["bk-5"].folded
        assert positions["bk-0"].column_index == 2
        assert positions["bk-0"].folded
        assert positions["bk-3"].column_index == 2
        assert positions["bk-3"].folded
        assert positions["bk-0"].left_percent == pytest.approx(200 / 3)

    def test_small_groups_are_untouched(self):
        layout = pack_day(
            [_appointment("a", "09:00", 60), _appointment("b", "09:30", 60)], max_columns=3
        )

        assert layout.groups[0].total_columns == 2
        assert layout.groups[0].hidden_count == 0
        assert not any(p.folded for p in layout.positioned)

    def test_cap_must_be_positive(self):
        with pytest.raises(ValueError):
            pack_day([], max_columns=0)


class TestWindowAndOverflow:
    """Tests for per-row positioning and the "+N more" count."""

    def test_appointments_in_window(self):
        appointments = [
            _appointment("a", "09:00", 60),
            _appointment("b", "09:30", 60),
            _appointment("c", "10:00", 60),
        ]

        positioned = appointments_in_window(appointments, pendulum.parse("2025-03-10 09:00", tz=TZ))

        assert [p.id for p in positioned] == ["a", "b"]
        assert all(p.total_columns == 2 for p in positioned)

    def test_window_relayouts_visible_items_only(self):
        appointments = [_appointment("a", "09:00", 60), _appointment("b", "09:30", 60)]

        positioned = appointments_in_window(
            appointments, pendulum.parse("2025-03-10 10:00", tz=TZ), window_minutes=30
        )

        assert [p.id for p in positioned] == ["b"]
        assert positioned[0].total_columns == 1

    def test_overflow_count(self):
        assert overflow_count(5, 3) == 2
        assert overflow_count(3, 3) == 0
        assert overflow_count(1, 3) == 0
