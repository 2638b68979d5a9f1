"""Leverage strategy engine.

A strategy supplies the vault's want token to a lending market and loops borrow -> supply until the
position's LTV reaches its target. Harvests claim market rewards, swap them to want, charge fees on
the gross profit and report the result to the vault. Every loop over the market is bounded: normal
rebalances by `LeverageParams.max_steps`, full unwinds by `MAX_UNWIND_STEPS`. Running out of steps
defers the remaining adjustment to the next call.
"""

import logging
from collections.abc import Sequence
from dataclasses import replace

from leveraged_vaults.access import AccessControl, Operation
from leveraged_vaults.constants import (
    HARVEST_LOG_SIZE,
    MAX_STRATEGIST_FEE_BPS,
    MAX_TOTAL_FEE_BPS,
    MAX_UINT256,
    MAX_UNWIND_STEPS,
    SECONDS_PER_YEAR,
    TOTAL_BASIS_POINTS,
)
from leveraged_vaults.errors import (
    AuthorizationError,
    InsufficientHistory,
    InvalidAmount,
    InvalidFee,
    InvalidLtvBounds,
    StateViolation,
    StrategyPaused,
    StrategyRetired,
)
from leveraged_vaults.formatters import Rounding, ceil_div, derive_address, mul_div, normalize_address
from leveraged_vaults.interfaces import LendingMarket, SwapRouter
from leveraged_vaults.ledger import Ledger, transactional
from leveraged_vaults.models import (
    FeeConfig,
    FeeSplit,
    HarvestReport,
    HarvestSample,
    LeverageParams,
    StrategyPosition,
    StrategyStatus,
)
from leveraged_vaults.vault import Vault

logger = logging.getLogger(__name__)


def validate_leverage_params(params: LeverageParams) -> None:
    if not 0 <= params.target_ltv_bps < params.max_ltv_bps <= TOTAL_BASIS_POINTS:
        raise InvalidLtvBounds(
            f"need 0 <= target ({params.target_ltv_bps}) < max ({params.max_ltv_bps}) <= {TOTAL_BASIS_POINTS}"
        )
    if params.step_size < 1 or params.max_steps < 1:
        raise InvalidAmount("leverage step size and step count must be >= 1")


def validate_fees(fees: FeeConfig) -> None:
    if not 0 <= fees.total_fee_bps <= MAX_TOTAL_FEE_BPS:
        raise InvalidFee(f"total fee must be within 0..{MAX_TOTAL_FEE_BPS} BPS")
    if fees.call_fee_bps < 0 or fees.treasury_fee_bps < 0:
        raise InvalidFee("fee split must be non-negative")
    if fees.call_fee_bps + fees.treasury_fee_bps != TOTAL_BASIS_POINTS:
        raise InvalidFee(f"call fee + treasury fee must equal {TOTAL_BASIS_POINTS} BPS")
    if not 0 <= fees.strategist_fee_bps <= MAX_STRATEGIST_FEE_BPS:
        raise InvalidFee(f"strategist fee must be within 0..{MAX_STRATEGIST_FEE_BPS} BPS")


def split_fee(fee: int, fees: FeeConfig) -> FeeSplit:
    """Divide `fee` between caller, treasury and strategists. Rounding dust goes to the treasury."""
    caller = fee * fees.call_fee_bps // TOTAL_BASIS_POINTS
    treasury_part = fee * fees.treasury_fee_bps // TOTAL_BASIS_POINTS
    strategist = treasury_part * fees.strategist_fee_bps // TOTAL_BASIS_POINTS
    return FeeSplit(caller=caller, treasury=fee - caller - strategist, strategist=strategist)


def _withdrawable(supplied: int, borrowed: int, ltv_bps: int) -> int:
    """Collateral that can leave the position while keeping LTV at or below `ltv_bps`."""
    if borrowed == 0:
        return supplied
    if ltv_bps == 0:
        return 0
    return max(supplied - ceil_div(borrowed * TOTAL_BASIS_POINTS, ltv_bps), 0)


class LeverageStrategy:
    def __init__(
        self,
        ledger: Ledger,
        vault: Vault,
        market: LendingMarket,
        router: SwapRouter,
        access: AccessControl,
        *,
        treasury: str,
        strategist_remitter: str,
        address: str | None = None,
        label: str = "leverage",
        reward_path: Sequence[str] | None = None,
        leverage: LeverageParams | None = None,
        fees: FeeConfig | None = None,
    ) -> None:
        leverage = leverage or LeverageParams()
        fees = fees or FeeConfig()
        validate_leverage_params(leverage)
        validate_fees(fees)

        self.ledger = ledger
        self.vault = vault
        self.asset = vault.asset
        self.market = market
        self.router = router
        self.access = access
        self.label = label
        self.address = normalize_address(address) if address else derive_address(f"strategy:{label}:{vault.symbol}")
        self.treasury = normalize_address(treasury)
        self.strategist_remitter = normalize_address(strategist_remitter)
        self.reward_path = list(reward_path or [market.reward_token.address, self.asset.address])
        self.state = StrategyPosition(leverage=leverage, fees=fees, last_harvest=ledger.now())
        ledger.register(self)

        self.asset.approve(self.address, vault.address, MAX_UINT256)
        self.asset.approve(self.address, market.address, MAX_UINT256)
        market.reward_token.approve(self.address, router.address, MAX_UINT256)

    # Views

    @property
    def status(self) -> StrategyStatus:
        return self.state.status

    def position(self) -> tuple[int, int]:
        """(supplied, borrowed), read live from the market."""
        return self.market.current_supplied(self.address), self.market.current_borrowed(self.address)

    def balance_of_want(self) -> int:
        return self.asset.balance_of(self.address)

    def balance_of_pool(self) -> int:
        supplied, borrowed = self.position()
        return supplied - borrowed

    def balance_of(self) -> int:
        """Idle want plus the net value of the market position."""
        return self.balance_of_want() + self.balance_of_pool()

    def calculate_ltv(self) -> int:
        supplied, borrowed = self.position()
        return self._ltv(supplied, borrowed)

    @staticmethod
    def _ltv(supplied: int, borrowed: int) -> int:
        if supplied == 0:
            return 0
        return borrowed * TOTAL_BASIS_POINTS // supplied

    def allocated(self) -> int:
        return self.vault.registry.get(self.address).allocated

    def average_apr_across_last_n_harvests(self, n: int) -> int:
        """Mean annualized return of the last `n` harvest samples, in BPS."""
        if n < 1:
            raise InvalidAmount("n must be >= 1")
        log = self.state.harvest_log
        if len(log) < n:
            raise InsufficientHistory(f"requested {n} harvests, only {len(log)} logged")
        aprs = [
            s.profit * TOTAL_BASIS_POINTS * SECONDS_PER_YEAR // (s.principal * s.elapsed) for s in log[-n:]
        ]
        return sum(aprs) // n

    def preview_harvest(self, caller: str) -> int:
        """Caller fee a harvest would pay right now. Leaves no trace."""
        return self.ledger.call_static(self.harvest, caller)

    # Vault-facing operations

    def _require_vault(self, caller: str) -> None:
        if normalize_address(caller) != self.vault.address:
            raise AuthorizationError(f"{caller} is not the vault")

    def _require_active(self) -> None:
        if self.state.status is StrategyStatus.RETIRED:
            raise StrategyRetired(f"strategy {self.address} is retired")

    @transactional
    def withdraw(self, caller: str, amount: int) -> int:
        """Send up to `amount` of want to the vault and rebalance the rest. Returns the realized loss."""
        self._require_vault(caller)
        if amount <= 0:
            raise InvalidAmount("withdraw amount must be > 0")
        allocated = self.allocated()
        value_before = self.balance_of()
        freed = self._liquidate_position(amount)
        if freed:
            self.asset.transfer(self.address, self.vault.address, freed)
        if self._rebalances_on_withdraw():
            self._rebalance(lever_up=self._can_lever_up())
        self._settle_status()
        loss = min(amount - freed, max(allocated - value_before, 0))
        logger.info("strategy %s withdrew %s of %s (loss %s)", self.label, freed, amount, loss)
        return loss

    @transactional
    def retire_strat(self, caller: str) -> int:
        """Unwind everything and hand all want to the vault. Returns the amount sent."""
        self._require_vault(caller)
        if self.state.status is StrategyStatus.RETIRED:
            return 0
        self._liquidate_all()
        supplied, borrowed = self.position()
        if supplied or borrowed:
            raise StateViolation(f"unwind incomplete: supplied={supplied} borrowed={borrowed}")
        amount = self.balance_of_want()
        if amount:
            self.asset.transfer(self.address, self.vault.address, amount)
        self.state.status = StrategyStatus.RETIRED
        logger.info("strategy %s retired, returned %s", self.label, amount)
        return amount

    # Maintainer operations

    @transactional
    def deposit(self, caller: str) -> None:
        """Pull available credit from the vault, supply it and lever up."""
        self.access.check(caller, Operation.STRATEGY_DEPOSIT)
        self._require_active()
        if self.state.paused:
            raise StrategyPaused(f"strategy {self.address} is paused")
        if self.state.emergency_exit:
            raise StateViolation("strategy is in emergency exit")
        self.vault.request_credit(self.address)
        self._supply_idle(0)
        self._rebalance()

    @transactional
    def harvest(self, caller: str) -> int:
        """Realize and report profit, then redeploy. Returns the caller's fee."""
        self.access.check(caller, Operation.HARVEST)
        self._require_active()
        now = self.ledger.now()
        debt = max(-self.vault.available_capital(self.address), 0)
        principal = self.allocated()
        rewards = 0
        gross = 0
        fees = FeeSplit()

        if self.state.emergency_exit:
            freed = self._liquidate_all()
            roi = freed - debt
            repayment = min(debt, freed)
        else:
            rewards = self._claim_and_swap()
            gross = self.balance_of() - self.allocated()
            if gross > 0:
                fees = self._charge_fees(caller, gross)
            allocated = self.allocated()
            roi = max(self.balance_of() - allocated, -allocated)
            to_free = debt + max(roi, 0)
            freed = self._liquidate_position(to_free) if to_free else 0
            repayment = min(debt, freed)
            if roi > 0:
                # Profit still locked in the position is reported on a later harvest.
                roi = min(roi, freed - repayment)

        debt = self.vault.report(self.address, roi, repayment)

        if self.state.emergency_exit:
            self.state.status = StrategyStatus.EMERGENCY_UNWOUND
        else:
            if self._can_lever_up():
                self._supply_idle(debt)
            self._rebalance(lever_up=self._can_lever_up(), reserve=debt)
        self._settle_status()

        self._log_harvest(now, roi, principal)
        self.state.last_harvest_report = HarvestReport(
            timestamp=now,
            rewards_swapped=rewards,
            gross_profit=gross,
            fees=fees,
            roi=roi,
            repayment=repayment,
            debt=debt,
            ltv_bps=self.calculate_ltv(),
        )
        logger.info(
            "harvest %s: rewards=%s gross=%s fees=%s roi=%s repayment=%s ltv=%s",
            self.label, rewards, gross, fees.total, roi, repayment, self.calculate_ltv(),
        )
        return fees.caller

    @transactional
    def rebalance(self, caller: str) -> StrategyStatus:
        """Move LTV toward the target band. Lever-up is skipped while paused."""
        self.access.check(caller, Operation.REBALANCE)
        self._require_active()
        self._rebalance(lever_up=self._can_lever_up())
        self._settle_status()
        return self.state.status

    # Guardian / admin operations

    @transactional
    def panic(self, caller: str) -> int:
        """Unwind the whole position into idle want and pause. Returns the want held."""
        self.access.check(caller, Operation.PANIC)
        self._require_active()
        freed = self._liquidate_all()
        self.state.paused = True
        self.state.status = StrategyStatus.EMERGENCY_UNWOUND
        logger.warning("strategy %s panicked: %s want idle, position %s", self.label, freed, self.position())
        return freed

    @transactional
    def set_emergency_exit(self, caller: str) -> None:
        self.access.check(caller, Operation.SET_EMERGENCY_EXIT)
        self._require_active()
        self.state.emergency_exit = True
        self.vault.revoke_allocation(self.address)
        logger.warning("strategy %s set to emergency exit by %s", self.label, caller)

    @transactional
    def pause(self, caller: str) -> None:
        self.access.check(caller, Operation.PAUSE)
        self._require_active()
        self.state.paused = True

    @transactional
    def unpause(self, caller: str) -> None:
        self.access.check(caller, Operation.UNPAUSE)
        self._require_active()
        self.state.paused = False

    @transactional
    def set_leverage_params(
        self, caller: str, target_ltv_bps: int, max_ltv_bps: int, step_size: int, max_steps: int
    ) -> None:
        self.access.check(caller, Operation.SET_LEVERAGE_PARAMS)
        params = LeverageParams(target_ltv_bps, max_ltv_bps, step_size, max_steps)
        validate_leverage_params(params)
        self.state.leverage = params
        logger.info("strategy %s leverage params: %s", self.label, params)

    @transactional
    def update_total_fee(self, caller: str, total_fee_bps: int) -> None:
        self._set_fees(caller, total_fee_bps=total_fee_bps)

    @transactional
    def update_fees(self, caller: str, call_fee_bps: int, treasury_fee_bps: int) -> None:
        self._set_fees(caller, call_fee_bps=call_fee_bps, treasury_fee_bps=treasury_fee_bps)

    @transactional
    def update_strategist_fee(self, caller: str, strategist_fee_bps: int) -> None:
        self._set_fees(caller, strategist_fee_bps=strategist_fee_bps)

    def _set_fees(self, caller: str, **changes: int) -> None:
        self.access.check(caller, Operation.UPDATE_FEES)
        fees = replace(self.state.fees, **changes)
        validate_fees(fees)
        self.state.fees = fees
        logger.info("strategy %s fees: %s", self.label, fees)

    @transactional
    def update_harvest_log_cadence(self, caller: str, cadence: int) -> None:
        self.access.check(caller, Operation.UPDATE_HARVEST_LOG_CADENCE)
        if cadence < 0:
            raise InvalidAmount("cadence must be >= 0")
        self.state.harvest_log_cadence = cadence

    # Internals

    def _can_lever_up(self) -> bool:
        return not (self.state.paused or self.state.emergency_exit)

    def _rebalances_on_withdraw(self) -> bool:
        return self.state.status not in (StrategyStatus.RETIRED, StrategyStatus.EMERGENCY_UNWOUND)

    def _supply_idle(self, reserve: int) -> None:
        """Supply idle want above `reserve` to the market."""
        want = self.balance_of_want()
        if want > reserve:
            self.market.supply(self.address, want - reserve)

    def _settle_status(self) -> None:
        if self.state.status in (StrategyStatus.RETIRED, StrategyStatus.EMERGENCY_UNWOUND):
            return
        supplied, borrowed = self.position()
        if supplied == 0 and borrowed == 0:
            self.state.status = StrategyStatus.IDLE

    def _target_borrow(self, supplied: int, borrowed: int, rounding: Rounding) -> int:
        """Debt that puts the position exactly at the target LTV for its current net value."""
        target = self.state.leverage.target_ltv_bps
        real = max(supplied - borrowed, 0)
        return mul_div(real, target, TOTAL_BASIS_POINTS - target, rounding)

    def _repay_from_idle(self, limit: int, reserve: int = 0) -> int:
        supplied, borrowed = self.position()
        amount = min(self.balance_of_want() - reserve, borrowed, limit)
        if amount > 0:
            self.market.repay(self.address, amount)
        return max(amount, 0)

    def _rebalance(self, *, lever_up: bool = True, reserve: int = 0) -> None:
        """Step LTV toward the target, at most `max_steps` market round trips.

        Idle want above `reserve` repays debt before any collateral is withdrawn.
        """
        params = self.state.leverage
        collateral_factor = self.market.collateral_factor_bps()
        supplied, borrowed = self.position()
        ltv = self._ltv(supplied, borrowed)
        if supplied == 0:
            self._settle_status()
            return
        if params.target_ltv_bps <= ltv <= params.max_ltv_bps or (ltv < params.target_ltv_bps and not lever_up):
            self.state.status = StrategyStatus.DEPLOYED
            return

        going_up = ltv < params.target_ltv_bps
        for _ in range(params.max_steps):
            supplied, borrowed = self.position()
            if going_up:
                goal = self._target_borrow(supplied, borrowed, Rounding.UP)
                if borrowed >= goal:
                    break
                max_ltv_headroom = MAX_UINT256
                if params.max_ltv_bps < TOTAL_BASIS_POINTS:
                    max_ltv_headroom = max(
                        (supplied * params.max_ltv_bps - borrowed * TOTAL_BASIS_POINTS)
                        // (TOTAL_BASIS_POINTS - params.max_ltv_bps),
                        0,
                    )
                collateral_headroom = max(
                    (supplied * collateral_factor - borrowed * TOTAL_BASIS_POINTS) // TOTAL_BASIS_POINTS, 0
                )
                step = min(goal - borrowed, params.step_size, max_ltv_headroom, collateral_headroom)
                if step <= 0:
                    logger.warning("strategy %s cannot lever further at LTV %s", self.label, self._ltv(supplied, borrowed))
                    break
                self.market.borrow(self.address, step)
                self.market.supply(self.address, step)
            else:
                goal = self._target_borrow(supplied, borrowed, Rounding.DOWN)
                if borrowed <= goal:
                    break
                if self._repay_from_idle(borrowed - goal, reserve):
                    continue
                step = min(borrowed - goal, params.step_size, _withdrawable(supplied, borrowed, collateral_factor))
                if step <= 0:
                    logger.warning("strategy %s cannot delever at LTV %s", self.label, self._ltv(supplied, borrowed))
                    break
                self.market.withdraw_collateral(self.address, step)
                self.market.repay(self.address, step)
        else:
            supplied, borrowed = self.position()
            goal = self._target_borrow(supplied, borrowed, Rounding.UP if going_up else Rounding.DOWN)
            if (going_up and borrowed < goal) or (not going_up and borrowed > goal):
                self.state.status = StrategyStatus.REBALANCING
                logger.info("strategy %s leverage deferred at LTV %s", self.label, self._ltv(supplied, borrowed))
                return
        self.state.status = StrategyStatus.DEPLOYED

    def _liquidate_all(self) -> int:
        """Repay all debt and withdraw all collateral. Returns idle want afterwards."""
        collateral_factor = self.market.collateral_factor_bps()
        for _ in range(MAX_UNWIND_STEPS):
            supplied, borrowed = self.position()
            if borrowed:
                if self._repay_from_idle(borrowed):
                    continue
                step = _withdrawable(supplied, borrowed, collateral_factor)
                if step <= 0:
                    break
                self.market.withdraw_collateral(self.address, step)
            elif supplied:
                self.market.withdraw_collateral(self.address, supplied)
            else:
                break
        supplied, borrowed = self.position()
        if supplied or borrowed:
            logger.warning("strategy %s unwind incomplete: supplied=%s borrowed=%s", self.label, supplied, borrowed)
        return self.balance_of_want()

    def _liquidate_position(self, amount: int) -> int:
        """Make up to `amount` of want idle. Returns min(idle want, amount)."""
        want = self.balance_of_want()
        if want >= amount:
            return amount
        if amount >= self.balance_of():
            self._liquidate_all()
        else:
            self._free_collateral(amount - want)
        return min(self.balance_of_want(), amount)

    def _free_collateral(self, needed: int) -> None:
        """Delever and withdraw `needed` collateral, never leaving LTV above the maximum.

        Bounded by `max_steps`; when the steps run out before the target is reached, whatever the
        maximum LTV still allows is withdrawn so the request is served first.
        """
        params = self.state.leverage
        collateral_factor = self.market.collateral_factor_bps()
        start = self.balance_of_want()
        for _ in range(params.max_steps):
            remaining = needed - (self.balance_of_want() - start)
            if remaining <= 0:
                return
            supplied, borrowed = self.position()
            real_after = max(supplied - borrowed - remaining, 0)
            target = params.target_ltv_bps
            goal = mul_div(real_after, target, TOTAL_BASIS_POINTS - target)
            if borrowed > goal:
                step = min(borrowed - goal, params.step_size, _withdrawable(supplied, borrowed, collateral_factor))
                if step <= 0:
                    break
                self.market.withdraw_collateral(self.address, step)
                self.market.repay(self.address, step)
            else:
                step = min(remaining, _withdrawable(supplied, borrowed, params.max_ltv_bps))
                if step <= 0:
                    break
                self.market.withdraw_collateral(self.address, step)
        remaining = needed - (self.balance_of_want() - start)
        if remaining > 0:
            # Out of steps short of the target: serve what the max LTV still allows.
            supplied, borrowed = self.position()
            step = min(remaining, _withdrawable(supplied, borrowed, params.max_ltv_bps))
            if step > 0:
                self.market.withdraw_collateral(self.address, step)
                remaining -= step
        if remaining > 0:
            logger.info("strategy %s freed %s of %s requested", self.label, needed - remaining, needed)

    def _claim_and_swap(self) -> int:
        self.market.claim_rewards(self.address)
        reward_balance = self.market.reward_token.balance_of(self.address)
        if reward_balance == 0:
            return 0
        return self.router.swap_exact_in(self.address, self.reward_path, reward_balance, 0)

    def _charge_fees(self, caller: str, gross_profit: int) -> FeeSplit:
        fee = gross_profit * self.state.fees.total_fee_bps // TOTAL_BASIS_POINTS
        if fee == 0:
            return FeeSplit()
        fee = self._liquidate_position(fee)
        split = split_fee(fee, self.state.fees)
        for recipient, amount in (
            (caller, split.caller),
            (self.treasury, split.treasury),
            (self.strategist_remitter, split.strategist),
        ):
            if amount:
                self.asset.transfer(self.address, recipient, amount)
        return split

    def _log_harvest(self, now: int, profit: int, principal: int) -> None:
        elapsed = now - self.state.last_harvest
        self.state.last_harvest = now
        if elapsed <= 0 or principal <= 0:
            return
        log = self.state.harvest_log
        cadence = self.state.harvest_log_cadence
        if log and cadence and now - log[-1].timestamp < cadence:
            return
        log.append(HarvestSample(timestamp=now, profit=profit, principal=principal, elapsed=elapsed))
        del log[:-HARVEST_LOG_SIZE]
