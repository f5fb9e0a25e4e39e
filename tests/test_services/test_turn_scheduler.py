"""Tests for turn scheduling."""

from __future__ import annotations

import pytest

from chatbridge.models.participant import Participant
from chatbridge.services.turn_scheduler import DEADLOCK, first_turn, is_valid_turn, next_turn


def slots(*handles):
    return [Participant(slot_order=i + 1, tab_handle=h) for i, h in enumerate(handles)]


class TestNextTurn:
    @pytest.mark.parametrize("handles", [
        ("a", "b", "c"),
        ("a", None, "c"),
        (None, "b", None, None),
        ("a", None, None, "d", None),
        (None, None, "c"),
    ])
    def test_visits_every_live_index_and_never_an_empty_one(self, handles):
        participants = slots(*handles)
        live = {i for i, h in enumerate(handles) if h is not None}
        for start in range(len(handles)):
            seen = set()
            current = start
            for _ in range(2 * len(handles)):
                current = next_turn(participants, current)
                assert current is not DEADLOCK
                assert participants[current].is_filled
                seen.add(current)
            assert seen == live

    def test_skips_empty_slot(self):
        assert next_turn(slots("a", None, "c"), 0) == 2

    def test_wraps_around(self):
        assert next_turn(slots("a", "b", "c"), 2) == 0

    def test_single_live_participant_gets_turn_again(self):
        assert next_turn(slots(None, "b", None), 1) == 1

    def test_deadlock_when_all_empty(self):
        assert next_turn(slots(None, None, None), 0) is DEADLOCK

    def test_deadlock_when_no_participants(self):
        assert next_turn([], 0) is DEADLOCK


class TestFirstTurn:
    def test_lowest_live_index(self):
        assert first_turn(slots(None, None, "c", "d")) == 2

    def test_deadlock(self):
        assert first_turn(slots(None, None)) is DEADLOCK
        assert first_turn([]) is DEADLOCK


class TestIsValidTurn:
    def test_bounds_and_filled(self):
        participants = slots("a", None)
        assert is_valid_turn(participants, 0)
        assert not is_valid_turn(participants, 1)
        assert not is_valid_turn(participants, 2)
        assert not is_valid_turn(participants, -1)
