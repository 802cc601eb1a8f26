"""
Upkeep operator.

Periodically asks the state machine whether a draw is due and, when it is,
performs the upkeep:
- reconcile_payout() settles a payout left unconfirmed by an earlier draw
- check_upkeep() is read-only and cheap
- perform_upkeep() re-checks eligibility itself, so a stale signal is harmless
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from raffle_operator.lottery.errors import NotEligible, RaffleError
from raffle_operator.lottery.models import OperatorStatus
from raffle_operator.lottery.state_machine import RaffleStateMachine
from raffle_operator.utils.logger import get_logger

logger = get_logger(__name__)


class UpkeepOperator:
    """Automation trigger that drives draws on a fixed polling interval."""

    def __init__(self, machine: RaffleStateMachine, config: Dict[str, Any]) -> None:
        self._machine = machine
        self._config = config
        self._check_interval = float(config.get("operator", {}).get("check_interval", 5))
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self.status = OperatorStatus()

    async def start(self) -> None:
        if self._task:
            logger.warning("Upkeep operator already running")
            return
        self._stop_event.clear()
        self.status.is_running = True
        self._task = asyncio.create_task(self._run(), name="raffle-upkeep")
        logger.info(f"Upkeep operator started (every {self._check_interval}s)")

    async def stop(self) -> None:
        if not self._task:
            return
        logger.info("Stopping upkeep operator")
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.status.is_running = False
        logger.info("Upkeep operator stopped")

    def get_status(self) -> Dict[str, Any]:
        return {
            "status": "running" if self.status.is_running else "stopped",
            "check_interval": self._check_interval,
            "last_check": self.status.last_check.isoformat() if self.status.last_check else None,
            "last_draw_attempt": self.status.last_draw_attempt.isoformat() if self.status.last_draw_attempt else None,
            "draws_started": self.status.draws_started,
            "consecutive_failures": self.status.consecutive_failures,
        }

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._check_interval)
                break
            except asyncio.TimeoutError:
                continue

    async def tick(self) -> bool:
        """Run one check/perform cycle. Returns True when a draw was started."""
        self.status.record_check()
        try:
            settlement, _ = await asyncio.to_thread(self._machine.reconcile_payout)
            if settlement in ("paid", "reverted"):
                logger.info(f"Unconfirmed payout settled: {settlement}")
            upkeep_needed, perform_data = await asyncio.to_thread(self._machine.check_upkeep)
        except Exception as exc:
            logger.error(f"check_upkeep failed: {exc}")
            return False
        if not upkeep_needed:
            return False

        self.status.record_draw_attempt()
        try:
            draw_request = await asyncio.to_thread(self._machine.perform_upkeep, perform_data)
        except NotEligible as exc:
            logger.info(f"Upkeep skipped: {exc}")
            return False
        except RaffleError as exc:
            self.status.increment_failures()
            logger.error(f"Upkeep failed ({self.status.consecutive_failures} in a row): {exc}")
            return False

        self.status.reset_failures()
        self.status.draws_started += 1
        logger.info(f"Draw started with request {draw_request.request_id}")
        return True
