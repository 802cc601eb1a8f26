"""
Raffle State Machine - owns the live round and enforces the OPEN/CALCULATING lifecycle

Every mutation of the round happens while holding ``self._lock``:

- ``enter`` appends a paid entry (OPEN only).
- ``perform_upkeep`` re-checks eligibility and issues the randomness request in
  the same critical section, so two triggers can never both start a draw.
- ``fulfill`` consumes the matching request, pays the winner and resets the
  ledger. A failed payout puts the round back to OPEN with its participants and
  balance intact so the draw can be retried.
- A payout that was broadcast but never confirmed keeps the round CALCULATING;
  ``reconcile_payout`` later completes or reverts the draw.
"""

from __future__ import annotations

import time
from threading import Lock
from dataclasses import replace
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from raffle_operator.lottery.eligibility import EligibilityEvaluator
from raffle_operator.lottery.errors import (
    AlreadyInProgress,
    PayoutPending,
    PayoutUnsettled,
    TransferFailed,
    UnknownOrStaleRequest,
    UpkeepNotNeeded,
)
from raffle_operator.lottery.event_manager import (
    DRAW_REVERTED,
    ENTRY_ACCEPTED,
    PAYOUT_UNCONFIRMED,
    REQUEST_ISSUED,
    WINNER_PICKED,
    MemoryStore,
    memory_store,
)
from raffle_operator.lottery.handshake import RandomnessHandshake, RandomnessProvider
from raffle_operator.lottery.ledger import EntryLedger
from raffle_operator.lottery.models import (
    DrawRequest,
    PendingPayout,
    RaffleConfig,
    Round,
    RoundState,
    WinnerRecord,
)
from raffle_operator.lottery.payout import PaymentGateway, PayoutExecutor
from raffle_operator.lottery.selector import select_winner
from raffle_operator.utils.common import shorten_eth_address
from raffle_operator.utils.logger import get_logger

logger = get_logger(__name__)


class RaffleStateMachine:
    """Single-writer owner of the raffle round."""

    def __init__(
        self,
        config: RaffleConfig,
        provider: RandomnessProvider,
        gateway: PaymentGateway,
        store: MemoryStore = memory_store,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self._store = store
        self._clock = clock
        self._lock = Lock()

        self._round = Round(last_draw_timestamp=self._now())
        self._ledger = EntryLedger(self._round, config.entrance_fee)
        self._eligibility = EligibilityEvaluator(config.interval)
        self._handshake = RandomnessHandshake(self._round, provider, config)
        self._payout = PayoutExecutor(gateway)

        logger.info(
            f"Raffle initialized: entrance_fee={config.entrance_fee}, interval={config.interval}s, "
            f"num_words={config.num_words}"
        )

    def _now(self) -> int:
        return int(self._clock())

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------
    def enter(self, caller: str, amount: int) -> int:
        """Admit a paid entry and return its index in the participant list."""
        with self._lock:
            index = self._ledger.enter(caller, amount)
            self._store.publish(
                ENTRY_ACCEPTED,
                f"{shorten_eth_address(caller)} entered the raffle",
                {"player": caller, "amount": amount, "index": index},
                event_time=self._now(),
            )
            self._publish_round()
            return index

    # ------------------------------------------------------------------
    # Eligibility and draw start
    # ------------------------------------------------------------------
    def check_upkeep(self, check_data: bytes = b"") -> Tuple[bool, bytes]:
        """Read-only eligibility check for the automation trigger."""
        with self._lock:
            return self._eligibility.is_eligible(self._round, self._now()), b""

    def perform_upkeep(self, perform_data: bytes = b"") -> DrawRequest:
        """Start a draw if the round is still eligible at execution time."""
        with self._lock:
            pending_payout = self._round.pending_payout
            if pending_payout is not None:
                raise PayoutUnsettled(self._round.pending_request_id, pending_payout.reference)
            if self._round.state == RoundState.CALCULATING or self._round.pending_request is not None:
                raise AlreadyInProgress(self._round.pending_request_id)

            now = self._now()
            if not self._eligibility.is_eligible(self._round, now):
                raise UpkeepNotNeeded(
                    self._round.pool_balance,
                    len(self._round.participants),
                    self._round.state.name,
                )

            draw_request = self._handshake.request(now)
            self._store.publish(
                REQUEST_ISSUED,
                f"Randomness requested for {draw_request.round_snapshot_size} entries",
                {"requestId": draw_request.request_id, "players": draw_request.round_snapshot_size},
                event_time=now,
            )
            self._publish_round()
            return draw_request

    start_draw = perform_upkeep

    # ------------------------------------------------------------------
    # Oracle callback
    # ------------------------------------------------------------------
    def fulfill(
        self,
        request_id: int,
        random_words: Sequence[int],
        *,
        strict: bool = False,
    ) -> Optional[WinnerRecord]:
        """Handle the provider's callback.

        Returns the winner record, or None when the callback does not match the
        pending request (no state change). With ``strict=True`` a mismatch
        raises UnknownOrStaleRequest instead.

        A definite payout failure reverts the draw and raises TransferFailed.
        A payout that was sent but not confirmed raises PayoutPending and keeps
        the round CALCULATING until ``reconcile_payout`` settles it.
        """
        with self._lock:
            if strict and not self._handshake.matches(request_id):
                raise UnknownOrStaleRequest(request_id, self._round.pending_request_id)

            draw_request = self._round.pending_request
            random_word = self._handshake.fulfill(request_id, random_words)
            if random_word is None:
                return None

            participants, balance = self._ledger.snapshot()
            winner = select_winner(random_word, participants)
            now = self._now()

            try:
                self._payout.payout(winner, balance)
            except PayoutPending as exc:
                self._hold_for_settlement(
                    draw_request,
                    PendingPayout(
                        winner=winner,
                        amount=balance,
                        participant_count=len(participants),
                        random_word=random_word,
                        reference=exc.reference,
                        sent_at=now,
                    ),
                )
                raise
            except TransferFailed as exc:
                self._revert_draw(request_id, winner, balance, len(participants), exc.reason)
                raise

            return self._complete_draw(request_id, winner, balance, len(participants), random_word)

    def reconcile_payout(self, succeeded: Optional[bool] = None) -> Tuple[str, Optional[WinnerRecord]]:
        """Settle a payout left unconfirmed by ``fulfill``.

        ``succeeded`` is the operator's verdict; when None the payment gateway
        is asked. Returns one of ``("idle", None)``, ``("unconfirmed", None)``,
        ``("paid", record)`` or ``("reverted", None)``.
        """
        with self._lock:
            draw_request = self._round.pending_request
            pending = draw_request.payout if draw_request else None
            if pending is None:
                return "idle", None

            if succeeded is None:
                succeeded = self._payout.confirm(pending.reference)
                if succeeded is None:
                    logger.info(f"Payout {pending.reference} for request {draw_request.request_id} still unconfirmed")
                    return "unconfirmed", None

            self._round.pending_request = None
            if succeeded:
                record = self._complete_draw(
                    draw_request.request_id,
                    pending.winner,
                    pending.amount,
                    pending.participant_count,
                    pending.random_word,
                )
                return "paid", record

            self._revert_draw(
                draw_request.request_id,
                pending.winner,
                pending.amount,
                pending.participant_count,
                f"payout {pending.reference} failed",
            )
            return "reverted", None

    def _complete_draw(
        self, request_id: int, winner: str, prize: int, participant_count: int, random_word: int
    ) -> WinnerRecord:
        now = self._now()
        self._ledger.reset()
        self._round.recent_winner = winner
        self._round.last_draw_timestamp = now
        self._round.state = RoundState.OPEN

        record = WinnerRecord(
            request_id=request_id,
            winner=winner,
            prize=prize,
            participant_count=participant_count,
            random_word=random_word,
            finished_at=now,
        )
        logger.info(f"Winner picked for request {request_id}: {winner} won {prize}")
        self._store.add_winner(record)
        self._store.publish(
            WINNER_PICKED,
            f"{shorten_eth_address(winner)} won the raffle",
            {"requestId": request_id, "winner": winner, "prize": prize},
            event_time=now,
        )
        self._publish_round()
        return record

    def _revert_draw(self, request_id: int, winner: str, amount: int, participant_count: int, reason: str) -> None:
        # Entries and balance are still in the ledger
        self._round.state = RoundState.OPEN
        logger.error(
            f"Draw for request {request_id} reverted; {participant_count} entries and "
            f"pool {amount} kept for retry: {reason}"
        )
        self._store.publish(
            DRAW_REVERTED,
            f"Payout to {shorten_eth_address(winner)} failed; draw reverted",
            {"requestId": request_id, "winner": winner, "amount": amount, "reason": reason},
            event_time=self._now(),
            severity="error",
        )
        self._publish_round()

    def _hold_for_settlement(self, draw_request: DrawRequest, pending: PendingPayout) -> None:
        self._round.pending_request = replace(draw_request, payout=pending)
        logger.error(
            f"Payout for request {draw_request.request_id} sent as {pending.reference} but unconfirmed; "
            f"round held until it is reconciled"
        )
        self._store.publish(
            PAYOUT_UNCONFIRMED,
            f"Payout to {shorten_eth_address(pending.winner)} awaiting confirmation",
            {
                "requestId": draw_request.request_id,
                "winner": pending.winner,
                "amount": pending.amount,
                "reference": pending.reference,
            },
            event_time=pending.sent_at,
            severity="error",
        )
        self._publish_round()

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------
    @property
    def entrance_fee(self) -> int:
        return self.config.entrance_fee

    @property
    def interval(self) -> int:
        return self.config.interval

    @property
    def state(self) -> RoundState:
        with self._lock:
            return self._round.state

    @property
    def recent_winner(self) -> Optional[str]:
        with self._lock:
            return self._round.recent_winner

    @property
    def last_timestamp(self) -> int:
        with self._lock:
            return self._round.last_draw_timestamp

    @property
    def pool_balance(self) -> int:
        with self._lock:
            return self._round.pool_balance

    @property
    def pending_request_id(self) -> Optional[int]:
        with self._lock:
            return self._round.pending_request_id

    @property
    def pending_payout(self) -> Optional[PendingPayout]:
        with self._lock:
            return self._round.pending_payout

    @property
    def number_of_players(self) -> int:
        with self._lock:
            return len(self._round.participants)

    def get_player(self, index: int) -> str:
        with self._lock:
            if index < 0 or index >= len(self._round.participants):
                raise IndexError(f"No participant at index {index}")
            return self._round.participants[index]

    def get_players(self) -> list[str]:
        with self._lock:
            return list(self._round.participants)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return self._serialize_round()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _serialize_round(self) -> Dict[str, Any]:
        now = self._now()
        return {
            "state": self._round.state.value,
            "stateLabel": self._round.state.name,
            "entranceFee": self.config.entrance_fee,
            "interval": self.config.interval,
            "numberOfPlayers": len(self._round.participants),
            "poolBalance": self._round.pool_balance,
            "lastTimestamp": self._round.last_draw_timestamp,
            "recentWinner": self._round.recent_winner,
            "pendingRequestId": self._round.pending_request_id,
            "pendingPayoutTx": self._round.pending_payout.reference if self._round.pending_payout else None,
            "upkeepNeeded": self._eligibility.is_eligible(self._round, now),
            "secondsUntilEligible": self._eligibility.seconds_until_eligible(self._round, now),
        }

    def _publish_round(self) -> None:
        self._store.set_round_snapshot(self._serialize_round())
