"""Vault accounting engine.

Share/asset conversion, deposit and withdrawal flows, time-decayed locked profit and the
strategy reporting surface. Idle assets are the asset balance held at the vault address and shares
live in a `Token` minted and burned only by the vault.

Share price is `(total_assets - locked_profit_now) / total_supply`, 1:1 at zero supply. Conversions
round in favor of the pool: shares minted and assets paid out round down, shares burned and assets
charged round up.
"""

import logging
from typing import TYPE_CHECKING

from leveraged_vaults.access import AccessControl, Operation
from leveraged_vaults.asset import Token
from leveraged_vaults.constants import (
    DEFAULT_LOCKED_PROFIT_DEGRADATION,
    DEGRADATION_COEFFICIENT,
    MAX_UINT256,
    TOTAL_BASIS_POINTS,
)
from leveraged_vaults.errors import (
    AuthorizationError,
    BoundViolation,
    CapExceeded,
    InsufficientBalance,
    InvalidAmount,
    LiquidityShortfall,
    ShutdownActive,
    StateViolation,
    UnknownStrategy,
)
from leveraged_vaults.formatters import Rounding, derive_address, mul_div, normalize_address
from leveraged_vaults.ledger import Ledger, transactional
from leveraged_vaults.models import StrategyParams, VaultState
from leveraged_vaults.registry import AllocationRegistry

if TYPE_CHECKING:
    from leveraged_vaults.strategy import LeverageStrategy

logger = logging.getLogger(__name__)


class Vault:
    def __init__(
        self,
        ledger: Ledger,
        asset: Token,
        access: AccessControl,
        *,
        name: str = "Leveraged Vault",
        symbol: str | None = None,
        address: str | None = None,
        tvl_cap: int = MAX_UINT256,
        locked_profit_degradation: int = DEFAULT_LOCKED_PROFIT_DEGRADATION,
    ) -> None:
        if locked_profit_degradation > DEGRADATION_COEFFICIENT:
            raise BoundViolation("locked profit degradation cannot exceed 1e18")
        self.ledger = ledger
        self.asset = asset
        self.access = access
        self.name = name
        symbol = symbol or f"lv{asset.symbol}"
        self.address = normalize_address(address) if address else derive_address(f"vault:{symbol}")
        self.share = Token(ledger, symbol, asset.decimals, address=self.address, minter=self.address)
        self.registry = AllocationRegistry(ledger)
        self._strategies: dict[str, "LeverageStrategy"] = {}
        self.state = VaultState(
            last_report=ledger.now(),
            locked_profit_degradation=locked_profit_degradation,
            tvl_cap=tvl_cap,
        )
        ledger.register(self)

    @property
    def symbol(self) -> str:
        return self.share.symbol

    @property
    def decimals(self) -> int:
        return self.asset.decimals

    # Accounting views

    def total_idle(self) -> int:
        return self.asset.balance_of(self.address)

    def total_assets(self) -> int:
        """Idle assets plus every strategy's last reported allocation."""
        return self.total_idle() + self.registry.total_allocated

    def total_supply(self) -> int:
        return self.share.total_supply

    def balance_of(self, holder: str) -> int:
        return self.share.balance_of(holder)

    def locked_profit(self) -> int:
        """Locked profit after the decay accrued since the last report."""
        elapsed = self.ledger.now() - self.state.last_report
        locked_funds_ratio = elapsed * self.state.locked_profit_degradation
        if locked_funds_ratio < DEGRADATION_COEFFICIENT:
            locked = self.state.locked_profit
            return locked - (locked_funds_ratio * locked) // DEGRADATION_COEFFICIENT
        return 0

    def free_funds(self) -> int:
        return max(self.total_assets() - self.locked_profit(), 0)

    def share_price(self) -> int:
        """Assets per one whole share, in asset units."""
        return self.convert_to_assets(10**self.decimals)

    def _to_shares(self, assets: int, rounding: Rounding) -> int:
        supply = self.total_supply()
        if supply == 0:
            return assets
        free = self.free_funds()
        if free == 0:
            raise StateViolation("shares outstanding but no free funds; share price undefined")
        return mul_div(assets, supply, free, rounding)

    def _to_assets(self, shares: int, rounding: Rounding) -> int:
        supply = self.total_supply()
        if supply == 0:
            return shares
        free = self.free_funds()
        if free == 0:
            raise StateViolation("shares outstanding but no free funds; share price undefined")
        return mul_div(shares, free, supply, rounding)

    def _conversion_blocked(self) -> bool:
        return self.total_supply() > 0 and self.free_funds() == 0

    def convert_to_shares(self, assets: int) -> int:
        return self._to_shares(assets, Rounding.DOWN)

    def convert_to_assets(self, shares: int) -> int:
        return self._to_assets(shares, Rounding.DOWN)

    def preview_deposit(self, assets: int) -> int:
        return self._to_shares(assets, Rounding.DOWN)

    def preview_mint(self, shares: int) -> int:
        return self._to_assets(shares, Rounding.UP)

    def preview_withdraw(self, assets: int) -> int:
        return self._to_shares(assets, Rounding.UP)

    def preview_redeem(self, shares: int) -> int:
        return self._to_assets(shares, Rounding.DOWN)

    def max_deposit(self, holder: str) -> int:
        if self.state.emergency_shutdown:
            return 0
        if self.state.tvl_cap == MAX_UINT256:
            return MAX_UINT256
        return max(self.state.tvl_cap - self.total_assets(), 0)

    def max_mint(self, holder: str) -> int:
        max_assets = self.max_deposit(holder)
        if max_assets == MAX_UINT256:
            return MAX_UINT256
        if self._conversion_blocked():
            return 0
        return self.preview_deposit(max_assets)

    def max_withdraw(self, owner: str) -> int:
        if self._conversion_blocked():
            return 0
        return self.preview_redeem(self.balance_of(owner))

    def max_redeem(self, owner: str) -> int:
        return self.balance_of(owner)

    # Depositor operations

    @transactional
    def deposit(self, caller: str, assets: int, receiver: str | None = None) -> int:
        """Deposit `assets` and mint shares (rounded down) to `receiver`."""
        self.access.check(caller, Operation.DEPOSIT)
        if assets <= 0:
            raise InvalidAmount("deposit amount must be > 0")
        shares = self.preview_deposit(assets)
        self._pull_deposit(caller, receiver or caller, assets, shares)
        return shares

    @transactional
    def mint(self, caller: str, shares: int, receiver: str | None = None) -> int:
        """Mint exactly `shares` to `receiver`, charging assets rounded up."""
        self.access.check(caller, Operation.MINT)
        if shares <= 0:
            raise InvalidAmount("mint amount must be > 0")
        assets = self.preview_mint(shares)
        self._pull_deposit(caller, receiver or caller, assets, shares)
        return assets

    def _pull_deposit(self, caller: str, receiver: str, assets: int, shares: int) -> None:
        if self.state.emergency_shutdown:
            raise ShutdownActive("deposits are disabled during emergency shutdown")
        if assets <= 0 or shares <= 0:
            raise InvalidAmount(f"deposit of {assets} would mint {shares} shares")
        if self.total_assets() + assets > self.state.tvl_cap:
            raise CapExceeded(f"deposit of {assets} exceeds TVL cap {self.state.tvl_cap}")
        self.asset.transfer_from(self.address, caller, self.address, assets)
        self.share.mint(self.address, receiver, shares)
        logger.info("deposit: %s assets -> %s shares for %s", assets, shares, receiver)

    @transactional
    def withdraw(self, caller: str, assets: int, receiver: str | None = None, owner: str | None = None) -> int:
        """Withdraw `assets` for `owner`'s shares (rounded up). Returns the shares burned."""
        self.access.check(caller, Operation.WITHDRAW)
        if assets <= 0:
            raise InvalidAmount("withdraw amount must be > 0")
        shares = self.preview_withdraw(assets)
        _, burned = self._withdraw(caller, receiver or caller, owner or caller, assets, shares)
        return burned

    @transactional
    def redeem(self, caller: str, shares: int, receiver: str | None = None, owner: str | None = None) -> int:
        """Burn `shares` for assets (rounded down). Returns the assets paid out."""
        self.access.check(caller, Operation.REDEEM)
        return self._redeem(caller, shares, receiver or caller, owner or caller)

    @transactional
    def redeem_all(self, caller: str) -> int:
        """Redeem the caller's whole share balance to the caller."""
        self.access.check(caller, Operation.REDEEM)
        return self._redeem(caller, self.balance_of(caller), caller, caller)

    def _redeem(self, caller: str, shares: int, receiver: str, owner: str) -> int:
        if shares <= 0:
            raise InvalidAmount("redeem amount must be > 0")
        assets = self.preview_redeem(shares)
        if assets == 0:
            raise InvalidAmount(f"redeeming {shares} shares yields no assets")
        paid, _ = self._withdraw(caller, receiver, owner, assets, shares)
        return paid

    def _withdraw(self, caller: str, receiver: str, owner: str, assets: int, shares: int) -> tuple[int, int]:
        owner_balance = self.balance_of(owner)
        if shares > owner_balance:
            raise InsufficientBalance(f"{owner} holds {owner_balance} shares, needs {shares}")

        supply_before = self.total_supply()
        free_before = self.free_funds()
        if assets > self.total_idle():
            self._free_from_strategies(assets)
            idle = self.total_idle()
            if idle == 0:
                raise LiquidityShortfall(f"no liquidity recoverable for a withdrawal of {assets}")
            if assets > idle:
                # Partial fill: pay out what is free, burn only what it is worth at the prior price.
                logger.warning("partial withdrawal: %s of %s assets available", idle, assets)
                assets = idle
                shares = min(shares, mul_div(assets, supply_before, free_before, Rounding.UP))

        if normalize_address(caller) != normalize_address(owner):
            self.share.spend_allowance(owner, caller, shares)
        self.share.burn(self.address, owner, shares)
        self.asset.transfer(self.address, receiver, assets)
        logger.info("withdraw: %s shares -> %s assets from %s to %s", shares, assets, owner, receiver)
        return assets, shares

    def _free_from_strategies(self, target: int) -> None:
        """Pull from strategies in withdrawal order until idle covers `target` or every strategy was asked."""
        for key in self.registry.strategies_in_withdrawal_order():
            idle = self.total_idle()
            if idle >= target:
                break
            params = self.registry.get(key)
            amount = min(target - idle, params.allocated)
            if amount == 0:
                continue
            loss = self._strategies[key].withdraw(self.address, amount)
            withdrawn = self.total_idle() - idle
            if loss:
                self.registry.report_loss(key, loss)
            self.registry.decrease_allocated(key, withdrawn)
            logger.debug("pulled %s from strategy %s (loss %s)", withdrawn, key, loss)

    # Strategy-facing operations

    def _require_strategy(self, caller: str) -> StrategyParams:
        try:
            return self.registry.get(caller)
        except UnknownStrategy:
            raise AuthorizationError(f"{caller} is not a registered strategy") from None

    def available_capital(self, strategy: str) -> int:
        """Credit available to `strategy` (positive) or the amount it owes back (negative)."""
        params = self.registry.get(strategy)
        if self.registry.total_alloc_bps == 0 or self.state.emergency_shutdown:
            return -params.allocated

        total = self.total_assets()
        strategy_max = total * params.alloc_bps // TOTAL_BASIS_POINTS
        if params.allocated > strategy_max:
            return -(params.allocated - strategy_max)

        vault_max = total * self.registry.total_alloc_bps // TOTAL_BASIS_POINTS
        if self.registry.total_allocated >= vault_max:
            return 0
        available = min(strategy_max - params.allocated, vault_max - self.registry.total_allocated)
        return min(available, self.total_idle())

    @transactional
    def report(self, caller: str, roi: int, repayment: int) -> int:
        """Settle a strategy's harvest: book gain or loss, repay debt or extend credit.

        Returns what the strategy still owes the vault.
        """
        params = self._require_strategy(caller)
        key = params.strategy
        gain = loss = 0
        if roi < 0:
            loss = -roi
            self.registry.report_loss(key, loss)
        else:
            gain = roi
            self.registry.record_gain(key, gain)

        available = self.available_capital(key)
        debt = credit = 0
        if available < 0:
            debt = -available
            repayment = min(debt, repayment)
            if repayment:
                self.registry.decrease_allocated(key, repayment)
                debt -= repayment
        else:
            credit = available
            repayment = 0
            if credit:
                self.registry.increase_allocated(key, credit)

        free_want_in_strategy = repayment + gain
        if credit > free_want_in_strategy:
            self.asset.transfer(self.address, key, credit - free_want_in_strategy)
        elif credit < free_want_in_strategy:
            self.asset.transfer_from(self.address, key, self.address, free_want_in_strategy - credit)

        self._book_profit(gain, loss)
        self.registry.mark_reported(key, self.ledger.now())
        logger.info(
            "report from %s: gain=%s loss=%s repayment=%s credit=%s debt=%s", key, gain, loss, repayment, credit, debt
        )
        if self.state.emergency_shutdown:
            return self._strategies[key].balance_of()
        return debt

    def _book_profit(self, gain: int, loss: int) -> None:
        locked_before_loss = self.locked_profit() + gain
        self.state.locked_profit = max(locked_before_loss - loss, 0)
        self.state.last_report = self.ledger.now()

    @transactional
    def request_credit(self, caller: str) -> int:
        """Send the caller strategy whatever capital its allocation currently allows."""
        params = self._require_strategy(caller)
        credit = max(self.available_capital(params.strategy), 0)
        if credit:
            self.registry.increase_allocated(params.strategy, credit)
            self.asset.transfer(self.address, params.strategy, credit)
            logger.info("credit of %s sent to strategy %s", credit, params.strategy)
        return credit

    @transactional
    def revoke_allocation(self, caller: str) -> None:
        """Let a strategy zero its own allocation weight."""
        params = self._require_strategy(caller)
        self.registry.update_alloc_bps(params.strategy, 0)

    # Administration

    @transactional
    def add_strategy(self, caller: str, strategy: "LeverageStrategy", alloc_bps: int) -> None:
        self.access.check(caller, Operation.ADD_STRATEGY)
        if strategy.vault is not self:
            raise StateViolation(f"strategy {strategy.address} belongs to another vault")
        if self.state.emergency_shutdown:
            raise ShutdownActive("cannot add strategies during emergency shutdown")
        self.registry.add(strategy.address, alloc_bps, self.ledger.now())
        self._strategies[strategy.address] = strategy

    @transactional
    def update_strategy_alloc_bps(self, caller: str, strategy: str, alloc_bps: int) -> None:
        self.access.check(caller, Operation.UPDATE_STRATEGY_ALLOC_BPS)
        self.registry.update_alloc_bps(strategy, alloc_bps)

    @transactional
    def revoke_strategy(self, caller: str, strategy: str) -> int:
        """Fully unwind and remove `strategy`. Returns the assets it sent back."""
        self.access.check(caller, Operation.REVOKE_STRATEGY)
        params = self.registry.get(strategy)
        key = params.strategy
        returned = self._strategies[key].retire_strat(self.address)
        allocated = params.allocated
        if returned >= allocated:
            gain = returned - allocated
            if gain:
                self.registry.record_gain(key, gain)
            self.registry.decrease_allocated(key, allocated)
            self._book_profit(gain, 0)
        else:
            loss = allocated - returned
            self.registry.report_loss(key, loss)
            self.registry.decrease_allocated(key, returned)
            self._book_profit(0, loss)
        self.registry.remove(key)
        del self._strategies[key]
        logger.info("strategy %s revoked; %s returned against %s allocated", key, returned, allocated)
        return returned

    @transactional
    def set_withdrawal_order(self, caller: str, order: list[str]) -> None:
        self.access.check(caller, Operation.SET_WITHDRAWAL_ORDER)
        self.registry.set_withdrawal_order(order)

    @transactional
    def set_emergency_shutdown(self, caller: str, active: bool) -> None:
        """Halting needs guardian; resuming needs admin."""
        op = Operation.EMERGENCY_SHUTDOWN_ON if active else Operation.EMERGENCY_SHUTDOWN_OFF
        self.access.check(caller, op)
        self.state.emergency_shutdown = active
        logger.warning("emergency shutdown %s by %s", "enabled" if active else "disabled", caller)

    @transactional
    def update_tvl_cap(self, caller: str, tvl_cap: int) -> None:
        self.access.check(caller, Operation.UPDATE_TVL_CAP)
        if tvl_cap < 0:
            raise InvalidAmount("TVL cap must be >= 0")
        self.state.tvl_cap = tvl_cap
        logger.info("TVL cap set to %s", tvl_cap)

    def remove_tvl_cap(self, caller: str) -> None:
        self.update_tvl_cap(caller, MAX_UINT256)

    @transactional
    def set_locked_profit_degradation(self, caller: str, degradation: int) -> None:
        """Change the unlock rate. Profit already unlocked stays unlocked."""
        self.access.check(caller, Operation.SET_LOCKED_PROFIT_DEGRADATION)
        if not 0 <= degradation <= DEGRADATION_COEFFICIENT:
            raise BoundViolation(f"degradation must be within 0..{DEGRADATION_COEFFICIENT}")
        self.state.locked_profit = self.locked_profit()
        self.state.last_report = self.ledger.now()
        self.state.locked_profit_degradation = degradation

    def strategy(self, address: str) -> "LeverageStrategy":
        key = self.registry.get(address).strategy
        return self._strategies[key]

    def strategies(self) -> list["LeverageStrategy"]:
        return [self._strategies[k] for k in self.registry.strategies_in_withdrawal_order()]
