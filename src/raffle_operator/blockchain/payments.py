"""Payment gateway adapters."""

from __future__ import annotations

from collections import defaultdict
from threading import Lock
from typing import Dict, Iterable, List, Optional, Set, Tuple

from raffle_operator.blockchain.client import BlockchainClient
from raffle_operator.lottery.payout import PaymentGateway
from raffle_operator.utils.logger import get_logger

logger = get_logger(__name__)


class InMemoryPaymentGateway(PaymentGateway):
    """Credits winners in a local balance book.

    Addresses in ``rejected`` refuse every transfer, which is how local runs
    and tests exercise the payout-failure path.
    """

    def __init__(self, rejected: Iterable[str] = ()) -> None:
        self._lock = Lock()
        self._balances: Dict[str, int] = defaultdict(int)
        self._rejected: Set[str] = {address.lower() for address in rejected}
        self.transfers: List[Tuple[str, int]] = []

    def reject(self, address: str) -> None:
        with self._lock:
            self._rejected.add(address.lower())

    def accept(self, address: str) -> None:
        with self._lock:
            self._rejected.discard(address.lower())

    def transfer(self, to_address: str, amount: int) -> bool:
        with self._lock:
            if to_address.lower() in self._rejected:
                logger.warning(f"Transfer of {amount} to {to_address} rejected")
                return False
            self._balances[to_address] += amount
            self.transfers.append((to_address, amount))
            return True

    def balance_of(self, address: str) -> int:
        with self._lock:
            return self._balances.get(address, 0)


class ChainPaymentGateway(PaymentGateway):
    """Pays winners with a native-value transaction from the operator account."""

    def __init__(self, client: BlockchainClient) -> None:
        self._client = client

    def transfer(self, to_address: str, amount: int) -> bool:
        return self._client.transfer(to_address, amount)

    def confirm(self, reference: str) -> Optional[bool]:
        return self._client.get_receipt_status(reference)
