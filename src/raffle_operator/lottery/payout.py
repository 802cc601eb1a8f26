"""
Payout Executor - moves the pool balance to the winner

A gateway either reports a definite outcome (True, False, or an exception
raised before anything was sent) or raises PayoutPending once funds may have
left. Only definite failures are safe to revert.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from raffle_operator.lottery.errors import PayoutPending, TransferFailed
from raffle_operator.utils.logger import get_logger

logger = get_logger(__name__)


class PaymentGateway(ABC):
    """Funds-transfer primitive. Returns False or raises when rejected."""

    @abstractmethod
    def transfer(self, to_address: str, amount: int) -> bool:
        ...

    def confirm(self, reference: str) -> Optional[bool]:
        """Outcome of a transfer that raised PayoutPending; None while unknown."""
        return None


class PayoutExecutor:
    """Wraps a PaymentGateway and normalises definite failures to TransferFailed."""

    def __init__(self, gateway: PaymentGateway) -> None:
        self._gateway = gateway

    def payout(self, winner: str, amount: int) -> bool:
        try:
            ok = self._gateway.transfer(winner, amount)
        except (TransferFailed, PayoutPending):
            raise
        except Exception as exc:
            logger.error(f"Payout of {amount} to {winner} raised: {exc}")
            raise TransferFailed(winner, amount, str(exc)) from exc

        if not ok:
            logger.error(f"Payout of {amount} to {winner} was rejected")
            raise TransferFailed(winner, amount, "rejected by payment gateway")

        logger.info(f"Paid {amount} to {winner}")
        return True

    def confirm(self, reference: str) -> Optional[bool]:
        try:
            return self._gateway.confirm(reference)
        except Exception as exc:
            logger.error(f"Could not confirm payout {reference}: {exc}")
            return None
