"""Turn scheduling: circular scan over participant slots, skipping empty ones."""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum

from chatbridge.models.participant import Participant


class TurnSignal(str, Enum):
    DEADLOCK = "deadlock"


DEADLOCK = TurnSignal.DEADLOCK


def next_turn(participants: Sequence[Participant], current: int) -> int | TurnSignal:
    """Return the next index after *current* holding a live tab, or DEADLOCK.

    Scans at most N slots starting at (current + 1) mod N, so the current
    participant is reachable again when it is the only live one.
    """
    n = len(participants)
    if n == 0:
        return DEADLOCK
    for step in range(1, n + 1):
        idx = (current + step) % n
        if participants[idx].is_filled:
            return idx
    return DEADLOCK


def first_turn(participants: Sequence[Participant]) -> int | TurnSignal:
    """Return the lowest index holding a live tab, or DEADLOCK."""
    for idx, participant in enumerate(participants):
        if participant.is_filled:
            return idx
    return DEADLOCK


def is_valid_turn(participants: Sequence[Participant], turn: int) -> bool:
    return 0 <= turn < len(participants) and participants[turn].is_filled
