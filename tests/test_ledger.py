from dataclasses import dataclass, field

import pytest

from leveraged_vaults.errors import InvalidAmount, ReentrancyError
from leveraged_vaults.ledger import Ledger, ManualClock, transactional


@dataclass
class CounterState:
    value: int = 0
    history: list[int] = field(default_factory=list)


class Counter:
    def __init__(self, ledger: Ledger) -> None:
        self.ledger = ledger
        self.state = CounterState()
        self.callback = None
        ledger.register(self)

    @transactional
    def bump(self, amount: int) -> int:
        self.state.value += amount
        self.state.history.append(amount)
        if self.callback is not None:
            self.callback()
        if amount < 0:
            raise InvalidAmount("negative bump")
        return self.state.value


@pytest.fixture
def ledger():
    return Ledger(ManualClock(100))


def test_failed_operation_leaves_no_trace(ledger):
    counter = Counter(ledger)
    counter.bump(3)

    with pytest.raises(InvalidAmount):
        counter.bump(-1)

    assert counter.state.value == 3
    assert counter.state.history == [3]


def test_atomic_restores_every_participant(ledger):
    a, b = Counter(ledger), Counter(ledger)
    with pytest.raises(RuntimeError):
        with ledger.atomic():
            a.bump(1)
            b.bump(2)
            raise RuntimeError("boom")

    assert (a.state.value, b.state.value) == (0, 0)
    assert a.state.history == [] and b.state.history == []
    assert not ledger.in_transaction


def test_nested_blocks_join_the_outer_transaction(ledger):
    counter = Counter(ledger)
    with ledger.atomic():
        counter.bump(5)
        with pytest.raises(InvalidAmount):
            counter.bump(-1)
        # The inner failure is only rolled back if the outer block fails too.
        assert counter.state.value == 4

    assert counter.state.history == [5, -1]


def test_call_static_returns_result_and_discards_changes(ledger):
    counter = Counter(ledger)
    counter.bump(2)

    assert ledger.call_static(counter.bump, 3) == 5
    assert counter.state.value == 2
    assert counter.state.history == [2]


def test_call_static_refuses_to_run_inside_transaction(ledger):
    counter = Counter(ledger)
    with ledger.atomic():
        with pytest.raises(RuntimeError):
            ledger.call_static(counter.bump, 1)


def test_reentrant_call_is_rejected_and_guard_released(ledger):
    counter = Counter(ledger)
    counter.callback = lambda: counter.bump(1)

    with pytest.raises(ReentrancyError):
        counter.bump(1)
    assert counter.state.value == 0

    counter.callback = None
    assert counter.bump(1) == 1


def test_manual_clock_only_moves_forward():
    clock = ManualClock(10)
    assert clock.advance(5) == 15
    with pytest.raises(ValueError):
        clock.advance(-1)


def test_register_requires_state(ledger):
    with pytest.raises(TypeError):
        ledger.register(object())
