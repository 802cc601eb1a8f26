"""Inbound side of the randomness oracle: polls fulfillment logs and dispatches them."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from raffle_operator.blockchain.client import BlockchainClient, FulfillmentEvent
from raffle_operator.lottery.errors import PayoutPending, RaffleError, TransferFailed
from raffle_operator.lottery.state_machine import RaffleStateMachine
from raffle_operator.utils.logger import get_logger

logger = get_logger(__name__)


class OracleListener:
    """Polls ``RandomWordsDelivered`` logs and feeds them to ``RaffleStateMachine.fulfill``.

    Delivery order and duplicates are not trusted: the state machine drops any
    request id that is not the pending one, so re-scanned blocks are harmless.
    """

    def __init__(self, client: BlockchainClient, machine: RaffleStateMachine, config: Dict[str, Any]) -> None:
        self.client = client
        self.machine = machine

        listener_cfg = config.get("oracle_listener", {})
        self._poll_interval = float(listener_cfg.get("poll_interval_sec", 2.0))
        self._start_block_offset = int(listener_cfg.get("start_block_offset", 500))

        self._from_block: Optional[int] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    async def initialize(self) -> None:
        try:
            latest = await self.client.get_latest_block()
        except Exception as exc:
            logger.warning(f"Could not read latest block, scanning from genesis: {exc}")
            latest = 0
        self._from_block = max(0, latest - self._start_block_offset)
        logger.info(f"Oracle listener will scan from block {self._from_block}")

    async def start(self) -> None:
        if self._task:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._events_loop(), name="raffle-oracle-listener")

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _events_loop(self) -> None:
        while not self._stop_event.is_set():
            await self.poll_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
                break
            except asyncio.TimeoutError:
                continue

    async def poll_once(self) -> int:
        """Fetch and dispatch new fulfillments; returns how many were dispatched."""
        if self._from_block is None:
            await self.initialize()

        try:
            events = await self.client.get_fulfillments(self._from_block)
        except Exception as exc:
            logger.error(f"Oracle listener get_fulfillments error: {exc}")
            return 0

        for evt in events:
            await self._handle_event(evt)
        self._from_block = max(self._from_block, self.client.get_last_scanned_block() + 1)
        return len(events)

    async def _handle_event(self, evt: FulfillmentEvent) -> None:
        logger.info(f"Fulfillment for request {evt.request_id} seen in block {evt.block_number}")
        try:
            await asyncio.to_thread(self.machine.fulfill, evt.request_id, evt.random_words)
        except TransferFailed as exc:
            logger.error(f"Payout failed for request {evt.request_id}: {exc}")
        except PayoutPending as exc:
            logger.error(f"Payout for request {evt.request_id} awaiting confirmation: {exc}")
        except RaffleError as exc:
            logger.error(f"Fulfillment for request {evt.request_id} rejected: {exc}")
        except Exception as exc:
            logger.exception(f"Fulfillment for request {evt.request_id} failed: {exc}")
