"""Clock, transactions and reentrancy protection.

Every stateful component keeps its mutable data in a single `state` dataclass and registers itself
with a `Ledger`. `Ledger.atomic()` snapshots all registered states before the outermost call and
restores them if anything raises, which gives each public operation all-or-nothing semantics even
when it has already moved tokens or touched the lending market.
"""

import copy
import functools
import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, Protocol, TypeVar

from leveraged_vaults.errors import ReentrancyError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class Clock(Protocol):
    def now(self) -> int: ...


class SystemClock:
    """Wall-clock seconds."""

    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Clock advanced explicitly; used by tests and the simulator."""

    def __init__(self, start: int = 0) -> None:
        self._now = start

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("cannot move time backwards")
        self._now += seconds
        return self._now


class _StaticCallResult(Exception):
    def __init__(self, value: Any) -> None:
        super().__init__("static call rollback")
        self.value = value


class Ledger:
    """Registry of stateful participants plus the transaction manager."""

    def __init__(self, clock: Clock | None = None) -> None:
        self.clock: Clock = clock or SystemClock()
        self._participants: list[Any] = []
        self._depth = 0

    def now(self) -> int:
        return self.clock.now()

    def register(self, participant: Any) -> Any:
        """Track `participant.state` for rollback."""
        if not hasattr(participant, "state"):
            raise TypeError(f"{type(participant).__name__} has no `state` to snapshot")
        self._participants.append(participant)
        return participant

    @property
    def participants(self) -> tuple[Any, ...]:
        return tuple(self._participants)

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Run a block all-or-nothing. Nested blocks join the outermost one."""
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        snapshot = [(p, copy.deepcopy(p.state)) for p in self._participants]
        self._depth = 1
        try:
            yield
        except BaseException as ex:
            for participant, saved in snapshot:
                participant.state = saved
            if not isinstance(ex, _StaticCallResult):
                logger.debug("transaction rolled back: %s: %s", type(ex).__name__, ex)
            raise
        finally:
            self._depth = 0

    def call_static(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Execute `fn` and return its result, then discard every state change it made."""
        if self._depth:
            raise RuntimeError("call_static cannot run inside an open transaction")
        try:
            with self.atomic():
                raise _StaticCallResult(fn(*args, **kwargs))
        except _StaticCallResult as done:
            return done.value


def nonreentrant(method: F) -> F:
    """Reject re-entry into any guarded method of the same object until the first call returns."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        if getattr(self, "_entered", False):
            raise ReentrancyError(f"{type(self).__name__}.{method.__name__}: reentrant call")
        self._entered = True
        try:
            return method(self, *args, **kwargs)
        finally:
            self._entered = False

    return wrapper  # type: ignore[return-value]


def transactional(method: F) -> F:
    """`nonreentrant` plus an atomic block on `self.ledger`."""
    guarded = nonreentrant(method)

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.ledger.atomic():
            return guarded(self, *args, **kwargs)

    return wrapper  # type: ignore[return-value]
