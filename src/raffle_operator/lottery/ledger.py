"""
Entry Ledger - admits paid entries into the live round
"""

from __future__ import annotations

from typing import List

from raffle_operator.lottery.errors import InsufficientFee, RoundNotOpen
from raffle_operator.lottery.models import Round, RoundState
from raffle_operator.utils.logger import get_logger

logger = get_logger(__name__)


class EntryLedger:
    """Tracks current-round participants and the pool balance.

    The ledger does no locking of its own; the state machine calls it while
    holding the round lock.
    """

    def __init__(self, round_: Round, entrance_fee: int) -> None:
        self._round = round_
        self.entrance_fee = entrance_fee

    def enter(self, caller: str, amount: int) -> int:
        """Append ``caller`` to the round and return its entry index."""
        if amount < self.entrance_fee:
            raise InsufficientFee(amount, self.entrance_fee)
        if self._round.state != RoundState.OPEN:
            raise RoundNotOpen(self._round.state.name)

        self._round.participants.append(caller)
        self._round.pool_balance += amount
        index = len(self._round.participants) - 1
        logger.info(f"Entry accepted: {caller} paid {amount} (entry #{index}, pool={self._round.pool_balance})")
        return index

    def reset(self) -> None:
        """Clear participants and balance after a successful payout."""
        self._round.participants.clear()
        self._round.pool_balance = 0

    def snapshot(self) -> tuple[List[str], int]:
        """Copy of (participants, balance) taken before a payout."""
        return list(self._round.participants), self._round.pool_balance

    @property
    def participants(self) -> List[str]:
        return list(self._round.participants)

    @property
    def pool_balance(self) -> int:
        return self._round.pool_balance

    def __len__(self) -> int:
        return len(self._round.participants)
