import time
from typing import Any, Dict, List, Optional, Tuple

import pytest

from raffle_operator.blockchain.payments import InMemoryPaymentGateway
from raffle_operator.lottery.errors import PayoutPending
from raffle_operator.lottery.event_manager import ENTRY_ACCEPTED, REQUEST_ISSUED, WINNER_PICKED, MemoryStore
from raffle_operator.lottery.handshake import RandomnessProvider
from raffle_operator.lottery.models import RaffleConfig
from raffle_operator.lottery.payout import PaymentGateway
from raffle_operator.lottery.state_machine import RaffleStateMachine

ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x2222222222222222222222222222222222222222"
CAROL = "0x3333333333333333333333333333333333333333"

ENTRANCE_FEE = 100
INTERVAL = 60


class FakeClock:
    """Settable clock returning whole seconds."""

    def __init__(self, now: float = 0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedRandomnessProvider(RandomnessProvider):
    """Hands out sequential request ids and remembers every call."""

    def __init__(self, first_id: int = 1, delay: float = 0.0) -> None:
        self.requests: List[Dict[str, Any]] = []
        self.fail_with: Exception | None = None
        self.delay = delay
        self._next_id = first_id

    def request_random_words(self, gas_lane, subscription_id, request_confirmations, callback_gas_limit, num_words):
        if self.delay:
            time.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        request_id = self._next_id
        self._next_id += 1
        self.requests.append(
            {
                "request_id": request_id,
                "gas_lane": gas_lane,
                "subscription_id": subscription_id,
                "request_confirmations": request_confirmations,
                "callback_gas_limit": callback_gas_limit,
                "num_words": num_words,
            }
        )
        return request_id


class UnconfirmedPaymentGateway(PaymentGateway):
    """Broadcasts every transfer but cannot see its receipt until ``outcome`` is set."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, int, str]] = []
        self.outcome: Optional[bool] = None

    def transfer(self, to_address: str, amount: int) -> bool:
        reference = f"0x{len(self.sent) + 1:064x}"
        self.sent.append((to_address, amount, reference))
        raise PayoutPending(to_address, amount, reference, "receipt wait timed out")

    def confirm(self, reference: str) -> Optional[bool]:
        return self.outcome


@pytest.fixture
def clock():
    return FakeClock(0)


@pytest.fixture
def raffle_config():
    return RaffleConfig(entrance_fee=ENTRANCE_FEE, interval=INTERVAL, subscription_id=42, num_words=1)


@pytest.fixture
def provider():
    return ScriptedRandomnessProvider()


@pytest.fixture
def gateway():
    return InMemoryPaymentGateway()


@pytest.fixture
def store():
    return MemoryStore(feed_capacity=50, history_capacity=10)


@pytest.fixture
def machine(raffle_config, provider, gateway, store, clock):
    return RaffleStateMachine(raffle_config, provider, gateway, store=store, clock=clock)


@pytest.fixture
def recorded_events(store) -> List[Tuple[str, Dict[str, Any]]]:
    events: List[Tuple[str, Dict[str, Any]]] = []
    for event_type in (ENTRY_ACCEPTED, REQUEST_ISSUED, WINNER_PICKED):
        store.add_listener(event_type, lambda payload, evt=event_type: events.append((evt, payload)))
    return events


@pytest.fixture
def eligible_machine(machine, clock):
    """Two entries with the interval elapsed."""
    machine.enter(ALICE, ENTRANCE_FEE)
    machine.enter(BOB, ENTRANCE_FEE)
    clock.advance(INTERVAL + 1)
    return machine


@pytest.fixture
def unconfirmed_gateway():
    return UnconfirmedPaymentGateway()


@pytest.fixture
def unsettled_machine(raffle_config, provider, unconfirmed_gateway, store, clock):
    """A draw whose payout was broadcast but never confirmed."""
    machine = RaffleStateMachine(raffle_config, provider, unconfirmed_gateway, store=store, clock=clock)
    machine.enter(ALICE, ENTRANCE_FEE)
    machine.enter(BOB, ENTRANCE_FEE)
    clock.advance(INTERVAL + 1)
    request = machine.perform_upkeep()
    with pytest.raises(PayoutPending):
        machine.fulfill(request.request_id, [0])
    return machine
