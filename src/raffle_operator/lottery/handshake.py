"""
Randomness Handshake - two-phase request/fulfillment with the randomness provider
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from raffle_operator.lottery.errors import AlreadyInProgress, RaffleError, RandomnessRequestFailed
from raffle_operator.lottery.models import DrawRequest, RaffleConfig, Round, RoundState
from raffle_operator.utils.logger import get_logger

logger = get_logger(__name__)


class RandomnessProvider(ABC):
    """Outbound side of the randomness oracle.

    Implementations return an opaque request id immediately; the random words
    are delivered later, out of band, through ``RaffleStateMachine.fulfill``.
    """

    @abstractmethod
    def request_random_words(
        self,
        gas_lane: str,
        subscription_id: int,
        request_confirmations: int,
        callback_gas_limit: int,
        num_words: int,
    ) -> int:
        ...


class RandomnessHandshake:
    """Correlates oracle callbacks with the single in-flight draw request."""

    def __init__(self, round_: Round, provider: RandomnessProvider, config: RaffleConfig) -> None:
        self._round = round_
        self._provider = provider
        self._config = config

    def request(self, now: int) -> DrawRequest:
        """Issue a provider request and move the round to CALCULATING.

        Must be called with the round lock held.
        """
        if self._round.state == RoundState.CALCULATING or self._round.pending_request is not None:
            raise AlreadyInProgress(self._round.pending_request_id)

        try:
            request_id = self._provider.request_random_words(
                self._config.gas_lane,
                self._config.subscription_id,
                self._config.request_confirmations,
                self._config.callback_gas_limit,
                self._config.num_words,
            )
        except RaffleError:
            raise
        except Exception as exc:
            raise RandomnessRequestFailed(f"Randomness request failed: {exc}") from exc

        draw_request = DrawRequest(
            request_id=int(request_id),
            issued_at=now,
            round_snapshot_size=len(self._round.participants),
        )
        self._round.pending_request = draw_request
        self._round.state = RoundState.CALCULATING
        logger.info(
            f"Randomness requested: request_id={draw_request.request_id}, "
            f"players={draw_request.round_snapshot_size}, words={self._config.num_words}"
        )
        return draw_request

    def matches(self, request_id: int) -> bool:
        """True when ``request_id`` is the pending request and still awaits its words."""
        pending = self._round.pending_request
        return pending is not None and pending.payout is None and pending.request_id == request_id

    def fulfill(self, request_id: int, random_words: Sequence[int]) -> Optional[int]:
        """Consume the pending request and return the word used for selection.

        Returns None, leaving the round untouched, when ``request_id`` is not the
        pending one or the words are unusable (none supplied, or any negative).
        """
        if not self.matches(request_id):
            logger.warning(
                f"Ignoring fulfillment for unknown or stale request {request_id} "
                f"(pending={self._round.pending_request_id})"
            )
            return None
        if not random_words:
            logger.error(f"Fulfillment for request {request_id} carried no random words; keeping request pending")
            return None
        if any(int(word) < 0 for word in random_words):
            logger.error(f"Fulfillment for request {request_id} carried negative random words; keeping request pending")
            return None
        if len(random_words) > 1:
            logger.debug(f"Request {request_id}: using first of {len(random_words)} random words")

        self._round.pending_request = None
        return int(random_words[0])
