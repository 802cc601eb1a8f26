import threading

from raffle_operator.blockchain.payments import InMemoryPaymentGateway
from raffle_operator.lottery.errors import AlreadyInProgress, RoundNotOpen
from raffle_operator.lottery.event_manager import MemoryStore
from raffle_operator.lottery.models import RoundState
from raffle_operator.lottery.state_machine import RaffleStateMachine

from conftest import ALICE, BOB, ENTRANCE_FEE, INTERVAL, FakeClock, ScriptedRandomnessProvider


def _run_concurrently(count, target):
    barrier = threading.Barrier(count)
    results = []
    results_lock = threading.Lock()

    def worker(i):
        barrier.wait()
        try:
            outcome = target(i)
        except Exception as exc:
            outcome = exc
        with results_lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    return results


def _eligible_machine(raffle_config, provider, gateway=None):
    clock = FakeClock(0)
    gateway = gateway or InMemoryPaymentGateway()
    machine = RaffleStateMachine(raffle_config, provider, gateway, store=MemoryStore(), clock=clock)
    machine.enter(ALICE, ENTRANCE_FEE)
    machine.enter(BOB, ENTRANCE_FEE)
    clock.advance(INTERVAL + 1)
    return machine


def test_concurrent_draw_triggers_issue_one_request(raffle_config):
    # The slow provider keeps the first caller inside the critical section
    provider = ScriptedRandomnessProvider(delay=0.05)
    machine = _eligible_machine(raffle_config, provider)

    results = _run_concurrently(2, lambda _: machine.perform_upkeep())

    started = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, AlreadyInProgress)]
    assert len(started) == 1
    assert len(rejected) == 1
    assert len(provider.requests) == 1
    assert machine.state == RoundState.CALCULATING


def test_concurrent_entries_are_all_counted(machine):
    results = _run_concurrently(20, lambda i: machine.enter(f"0x{i:040x}", ENTRANCE_FEE))

    assert sorted(results) == list(range(20))
    assert machine.number_of_players == 20
    assert machine.pool_balance == 20 * ENTRANCE_FEE


def test_duplicate_fulfillments_pay_once(raffle_config):
    gateway = InMemoryPaymentGateway()
    machine = _eligible_machine(raffle_config, ScriptedRandomnessProvider(), gateway)
    request = machine.perform_upkeep()

    results = _run_concurrently(5, lambda _: machine.fulfill(request.request_id, [1]))

    assert len([r for r in results if r is not None]) == 1
    assert gateway.transfers == [(BOB, 2 * ENTRANCE_FEE)]


def test_entries_racing_a_draw_never_join_it(raffle_config):
    provider = ScriptedRandomnessProvider(delay=0.02)
    machine = _eligible_machine(raffle_config, provider)

    def act(i):
        if i == 0:
            return machine.perform_upkeep()
        return machine.enter(f"0x{i:040x}", ENTRANCE_FEE)

    results = _run_concurrently(6, act)
    request = next(r for r in results if hasattr(r, "request_id"))
    accepted = [r for r in results if isinstance(r, int)]

    assert not any(isinstance(r, Exception) and not isinstance(r, RoundNotOpen) for r in results)
    assert request.round_snapshot_size == 2 + len(accepted)
    assert machine.number_of_players == request.round_snapshot_size
