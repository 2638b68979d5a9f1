"""Allocation registry: strategy weights, reported balances and withdrawal order.

Pure bookkeeping owned by the vault. It holds no funds.
"""

import logging
from collections.abc import Iterable

from leveraged_vaults.constants import TOTAL_BASIS_POINTS
from leveraged_vaults.errors import AllocationCapExceeded, BoundViolation, StateViolation, UnknownStrategy
from leveraged_vaults.formatters import normalize_address
from leveraged_vaults.ledger import Ledger
from leveraged_vaults.models import RegistryState, StrategyParams

logger = logging.getLogger(__name__)


def _check_bps(alloc_bps: int) -> None:
    if not 0 <= alloc_bps <= TOTAL_BASIS_POINTS:
        raise BoundViolation(f"allocation must be within 0..{TOTAL_BASIS_POINTS} BPS, got {alloc_bps}")


class AllocationRegistry:
    def __init__(self, ledger: Ledger) -> None:
        self.ledger = ledger
        self.state = RegistryState()
        ledger.register(self)

    @property
    def total_alloc_bps(self) -> int:
        return self.state.total_alloc_bps

    @property
    def total_allocated(self) -> int:
        return self.state.total_allocated

    def __contains__(self, strategy: str) -> bool:
        return normalize_address(strategy) in self.state.entries

    def __len__(self) -> int:
        return len(self.state.entries)

    def get(self, strategy: str) -> StrategyParams:
        try:
            return self.state.entries[normalize_address(strategy)]
        except KeyError:
            raise UnknownStrategy(f"{strategy} is not a registered strategy") from None

    def add(self, strategy: str, alloc_bps: int, now: int) -> StrategyParams:
        """Register a strategy at the end of the withdrawal order."""
        key = normalize_address(strategy)
        if key in self.state.entries:
            raise StateViolation(f"{key} is already registered")
        _check_bps(alloc_bps)
        if self.state.total_alloc_bps + alloc_bps > TOTAL_BASIS_POINTS:
            raise AllocationCapExceeded(
                f"total allocation {self.state.total_alloc_bps} + {alloc_bps} exceeds {TOTAL_BASIS_POINTS} BPS"
            )
        params = StrategyParams(strategy=key, alloc_bps=alloc_bps, activation=now, last_report=now)
        self.state.entries[key] = params
        self.state.withdrawal_order.append(key)
        self.state.total_alloc_bps += alloc_bps
        logger.info("strategy %s added with %d BPS", key, alloc_bps)
        return params

    def update_alloc_bps(self, strategy: str, alloc_bps: int) -> None:
        params = self.get(strategy)
        _check_bps(alloc_bps)
        new_total = self.state.total_alloc_bps - params.alloc_bps + alloc_bps
        if new_total > TOTAL_BASIS_POINTS:
            raise AllocationCapExceeded(f"total allocation would be {new_total} BPS")
        self.state.total_alloc_bps = new_total
        params.alloc_bps = alloc_bps
        logger.info("strategy %s allocation set to %d BPS", params.strategy, alloc_bps)

    def remove(self, strategy: str) -> StrategyParams:
        params = self.get(strategy)
        if params.allocated:
            raise StateViolation(f"{params.strategy} still holds {params.allocated} of allocated capital")
        del self.state.entries[params.strategy]
        self.state.withdrawal_order.remove(params.strategy)
        self.state.total_alloc_bps -= params.alloc_bps
        logger.info("strategy %s removed", params.strategy)
        return params

    def strategies_in_withdrawal_order(self) -> list[str]:
        return list(self.state.withdrawal_order)

    def set_withdrawal_order(self, order: Iterable[str]) -> None:
        """Replace the pull order with a permutation of the registered strategies."""
        keys = [normalize_address(s) for s in order]
        if len(keys) != len(set(keys)) or set(keys) != set(self.state.entries):
            raise BoundViolation("withdrawal order must be a permutation of the registered strategies")
        self.state.withdrawal_order = keys

    def increase_allocated(self, strategy: str, amount: int) -> None:
        params = self.get(strategy)
        params.allocated += amount
        self.state.total_allocated += amount

    def decrease_allocated(self, strategy: str, amount: int) -> None:
        params = self.get(strategy)
        if amount > params.allocated:
            raise StateViolation(f"cannot release {amount}; {params.strategy} has {params.allocated} allocated")
        params.allocated -= amount
        self.state.total_allocated -= amount

    def record_gain(self, strategy: str, gain: int) -> None:
        self.get(strategy).gains += gain

    def report_loss(self, strategy: str, loss: int) -> int:
        """Write `loss` off the strategy's allocation and shrink its weight in proportion.

        Returns the number of BPS removed from the strategy.
        """
        params = self.get(strategy)
        if loss > params.allocated:
            raise StateViolation(f"reported loss {loss} exceeds allocation {params.allocated}")
        bps_change = 0
        if self.state.total_allocated:
            bps_change = min(loss * self.state.total_alloc_bps // self.state.total_allocated, params.alloc_bps)
        if bps_change:
            params.alloc_bps -= bps_change
            self.state.total_alloc_bps -= bps_change
        params.losses += loss
        params.allocated -= loss
        self.state.total_allocated -= loss
        logger.info("strategy %s reported loss %d (-%d BPS)", params.strategy, loss, bps_change)
        return bps_change

    def mark_reported(self, strategy: str, now: int) -> None:
        self.get(strategy).last_report = now
