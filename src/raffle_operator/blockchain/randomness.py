"""Randomness provider adapters."""

from __future__ import annotations

import itertools
import secrets
from threading import Lock, Timer
from typing import Any, Callable, Dict, List, Optional

from raffle_operator.blockchain.client import BlockchainClient
from raffle_operator.lottery.errors import RaffleError
from raffle_operator.lottery.handshake import RandomnessProvider
from raffle_operator.utils.logger import get_logger

logger = get_logger(__name__)

FulfillCallback = Callable[[int, List[int]], Any]


class LocalRandomnessProvider(RandomnessProvider):
    """Development oracle: 256-bit words from ``secrets``, delivered on a timer thread."""

    def __init__(self, delay: float = 1.0) -> None:
        self.delay = delay
        self._callback: Optional[FulfillCallback] = None
        self._ids = itertools.count(1)
        self._timers: Dict[int, Timer] = {}
        self._lock = Lock()

    def bind(self, callback: FulfillCallback) -> None:
        """Register the inbound handler, normally ``RaffleStateMachine.fulfill``."""
        self._callback = callback

    def request_random_words(
        self,
        gas_lane: str,
        subscription_id: int,
        request_confirmations: int,
        callback_gas_limit: int,
        num_words: int,
    ) -> int:
        if self._callback is None:
            raise RuntimeError("LocalRandomnessProvider has no fulfillment callback bound")

        request_id = next(self._ids)
        words = [secrets.randbits(256) for _ in range(num_words)]
        timer = Timer(self.delay, self._deliver, args=(request_id, words))
        timer.daemon = True
        with self._lock:
            self._timers[request_id] = timer
        timer.start()
        logger.info(f"Local randomness request {request_id} scheduled in {self.delay}s")
        return request_id

    def _deliver(self, request_id: int, words: List[int]) -> None:
        with self._lock:
            self._timers.pop(request_id, None)
        try:
            self._callback(request_id, words)
        except RaffleError as exc:
            logger.error(f"Fulfillment of local request {request_id} failed: {exc}")

    def pending_requests(self) -> List[int]:
        with self._lock:
            return sorted(self._timers)

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()


class ChainRandomnessProvider(RandomnessProvider):
    """Requests words from the on-chain VRF coordinator; answers arrive via OracleListener."""

    def __init__(self, client: BlockchainClient) -> None:
        self._client = client

    def request_random_words(
        self,
        gas_lane: str,
        subscription_id: int,
        request_confirmations: int,
        callback_gas_limit: int,
        num_words: int,
    ) -> int:
        return self._client.request_random_words(
            gas_lane,
            subscription_id,
            request_confirmations,
            callback_gas_limit,
            num_words,
        )
