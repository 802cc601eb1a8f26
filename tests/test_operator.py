import asyncio
import threading

from raffle_operator.lottery.models import RoundState
from raffle_operator.lottery.operator import UpkeepOperator
from raffle_operator.lottery.state_machine import RaffleStateMachine

from conftest import ALICE, BOB, ENTRANCE_FEE, INTERVAL, ScriptedRandomnessProvider


class GatedRandomnessProvider(ScriptedRandomnessProvider):
    """Blocks inside the request until ``release`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def request_random_words(self, *args):
        self.entered.set()
        self.release.wait(timeout=5)
        return super().request_random_words(*args)


def test_tick_waits_until_eligible(machine, provider):
    operator = UpkeepOperator(machine, {})
    machine.enter(ALICE, ENTRANCE_FEE)

    assert asyncio.run(operator.tick()) is False
    assert provider.requests == []
    assert operator.status.last_check is not None
    assert operator.status.last_draw_attempt is None


def test_tick_starts_draw(eligible_machine):
    operator = UpkeepOperator(eligible_machine, {"operator": {"check_interval": "1"}})

    assert asyncio.run(operator.tick()) is True
    assert eligible_machine.state == RoundState.CALCULATING
    assert operator.status.draws_started == 1
    assert operator.get_status()["check_interval"] == 1.0

    # Already calculating, so the next tick is a no-op
    assert asyncio.run(operator.tick()) is False
    assert operator.status.draws_started == 1


def test_tick_counts_provider_failures(eligible_machine, provider):
    operator = UpkeepOperator(eligible_machine, {})
    provider.fail_with = ConnectionError("down")

    assert asyncio.run(operator.tick()) is False
    assert asyncio.run(operator.tick()) is False
    assert operator.status.consecutive_failures == 2

    provider.fail_with = None
    assert asyncio.run(operator.tick()) is True
    assert operator.status.consecutive_failures == 0


def test_start_and_stop(machine, clock):
    machine.enter(ALICE, ENTRANCE_FEE)
    clock.advance(INTERVAL + 1)
    operator = UpkeepOperator(machine, {"operator": {"check_interval": 0.01}})

    async def scenario():
        await operator.start()
        assert operator.get_status()["status"] == "running"
        for _ in range(100):
            if operator.status.draws_started:
                break
            await asyncio.sleep(0.01)
        await operator.stop()

    asyncio.run(scenario())

    assert operator.status.draws_started == 1
    assert operator.get_status()["status"] == "stopped"
    assert machine.state == RoundState.CALCULATING


def test_tick_keeps_event_loop_running_while_machine_is_busy(raffle_config, gateway, store, clock):
    provider = GatedRandomnessProvider()
    machine = RaffleStateMachine(raffle_config, provider, gateway, store=store, clock=clock)
    machine.enter(ALICE, ENTRANCE_FEE)
    machine.enter(BOB, ENTRANCE_FEE)
    clock.advance(INTERVAL + 1)
    operator = UpkeepOperator(machine, {})

    # perform_upkeep holds the raffle lock until the provider is released
    worker = threading.Thread(target=machine.perform_upkeep)
    worker.start()
    assert provider.entered.wait(timeout=5)
    safety = threading.Timer(2.0, provider.release.set)
    safety.start()

    async def scenario():
        tick = asyncio.create_task(operator.tick())
        for _ in range(10):
            await asyncio.sleep(0.01)
        assert not provider.release.is_set()
        assert not tick.done()
        provider.release.set()
        return await tick

    try:
        assert asyncio.run(scenario()) is False
    finally:
        provider.release.set()
        safety.cancel()
        worker.join(timeout=5)

    assert machine.state == RoundState.CALCULATING
    assert len(provider.requests) == 1


def test_tick_settles_unconfirmed_payout(unsettled_machine, unconfirmed_gateway):
    operator = UpkeepOperator(unsettled_machine, {})

    assert asyncio.run(operator.tick()) is False
    assert unsettled_machine.state == RoundState.CALCULATING

    unconfirmed_gateway.outcome = True
    assert asyncio.run(operator.tick()) is False
    assert unsettled_machine.state == RoundState.OPEN
    assert unsettled_machine.recent_winner == ALICE
    assert len(unconfirmed_gateway.sent) == 1
