"""Draw eligibility predicate."""

from __future__ import annotations

from raffle_operator.lottery.models import Round, RoundState


class EligibilityEvaluator:
    """Decides whether a draw may start. Pure: reads the round, never mutates it."""

    def __init__(self, interval: int) -> None:
        self.interval = interval

    def is_eligible(self, round_: Round, now: int) -> bool:
        is_open = round_.state == RoundState.OPEN
        time_passed = (now - round_.last_draw_timestamp) > self.interval
        has_players = len(round_.participants) > 0
        has_balance = round_.pool_balance > 0
        return is_open and time_passed and has_players and has_balance

    def seconds_until_eligible(self, round_: Round, now: int) -> int:
        """Remaining wait on the interval condition alone (0 once it has elapsed)."""
        return max(0, round_.last_draw_timestamp + self.interval + 1 - now)
