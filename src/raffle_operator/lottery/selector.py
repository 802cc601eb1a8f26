"""Winner selection from a random word."""

from __future__ import annotations

from typing import Sequence


def select_winner_index(random_value: int, participant_count: int) -> int:
    """Map ``random_value`` onto ``[0, participant_count)``.

    Plain modulo reduction: the result is uniform only when the random range is
    a multiple of ``participant_count``. For 256-bit words and realistic pool
    sizes the bias is below 2**-200 per index and is accepted.
    """
    if participant_count <= 0:
        raise ValueError("cannot select a winner from an empty participant list")
    if random_value < 0:
        raise ValueError("random value must be unsigned")
    return random_value % participant_count


def select_winner(random_value: int, participants: Sequence[str]) -> str:
    """Return ``participants[random_value mod len(participants)]``."""
    return participants[select_winner_index(random_value, len(participants))]
