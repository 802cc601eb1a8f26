import pytest

from raffle_operator.lottery.errors import InsufficientFee, RoundNotOpen
from raffle_operator.lottery.ledger import EntryLedger
from raffle_operator.lottery.models import Round, RoundState

from conftest import ALICE, BOB


def test_pool_balance_is_entries_times_fee():
    ledger = EntryLedger(Round(), entrance_fee=100)
    for i in range(7):
        ledger.enter(f"0x{i:040x}", 100)

    assert len(ledger) == 7
    assert ledger.pool_balance == 700


def test_overpayment_is_kept_in_pool():
    ledger = EntryLedger(Round(), entrance_fee=100)
    ledger.enter(ALICE, 150)
    assert ledger.pool_balance == 150


def test_insufficient_fee_rejected_without_side_effects():
    ledger = EntryLedger(Round(), entrance_fee=100)
    with pytest.raises(InsufficientFee) as exc_info:
        ledger.enter(ALICE, 99)

    assert exc_info.value.amount == 99
    assert ledger.participants == []
    assert ledger.pool_balance == 0


def test_entry_rejected_when_round_calculating():
    round_ = Round()
    ledger = EntryLedger(round_, entrance_fee=100)
    ledger.enter(ALICE, 100)
    round_.state = RoundState.CALCULATING

    with pytest.raises(RoundNotOpen):
        ledger.enter(BOB, 100)
    assert ledger.participants == [ALICE]
    assert ledger.pool_balance == 100


def test_fee_is_checked_before_state():
    round_ = Round(state=RoundState.CALCULATING)
    ledger = EntryLedger(round_, entrance_fee=100)
    with pytest.raises(InsufficientFee):
        ledger.enter(ALICE, 1)


def test_repeat_entries_keep_insertion_order():
    ledger = EntryLedger(Round(), entrance_fee=100)
    assert ledger.enter(ALICE, 100) == 0
    assert ledger.enter(BOB, 100) == 1
    assert ledger.enter(ALICE, 100) == 2
    assert ledger.participants == [ALICE, BOB, ALICE]


def test_reset_clears_participants_and_balance():
    ledger = EntryLedger(Round(), entrance_fee=100)
    ledger.enter(ALICE, 100)
    ledger.reset()
    assert ledger.participants == []
    assert ledger.pool_balance == 0
