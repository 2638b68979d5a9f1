"""In-memory lending market and swap router.

The market is a single-asset money market: accounts supply the want token as collateral, borrow
the same token against it up to the collateral factor, and earn reward-token emissions on both
sides of the position. Interest and rewards accrue lazily, per account, from the ledger clock.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from leveraged_vaults.asset import Token
from leveraged_vaults.constants import (
    DEFAULT_BORROW_APR_BPS,
    DEFAULT_COLLATERAL_FACTOR_BPS,
    DEFAULT_SUPPLY_APR_BPS,
    SECONDS_PER_YEAR,
    TOTAL_BASIS_POINTS,
)
from leveraged_vaults.errors import BoundViolation, InsufficientBalance, InvalidAmount
from leveraged_vaults.formatters import derive_address, normalize_address
from leveraged_vaults.ledger import Ledger

logger = logging.getLogger(__name__)

PRICE_PRECISION = 10**18


@dataclass
class MarketAccount:
    supplied: int = 0
    borrowed: int = 0
    unclaimed_rewards: int = 0
    last_accrual: int = 0


@dataclass
class MarketState:
    accounts: dict[str, MarketAccount] = field(default_factory=dict)
    collateral_factor_bps: int = DEFAULT_COLLATERAL_FACTOR_BPS
    supply_apr_bps: int = DEFAULT_SUPPLY_APR_BPS
    borrow_apr_bps: int = DEFAULT_BORROW_APR_BPS
    # Reward tokens emitted per year per unit of supplied + borrowed, in BPS.
    reward_apr_bps: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MarketState":
        return cls(
            accounts={k: MarketAccount(**v) for k, v in data["accounts"].items()},
            collateral_factor_bps=int(data["collateral_factor_bps"]),
            supply_apr_bps=int(data["supply_apr_bps"]),
            borrow_apr_bps=int(data["borrow_apr_bps"]),
            reward_apr_bps=int(data["reward_apr_bps"]),
        )


def _accrue(amount: int, apr_bps: int, elapsed: int) -> int:
    return amount * apr_bps * elapsed // (TOTAL_BASIS_POINTS * SECONDS_PER_YEAR)


class InMemoryLendingMarket:
    """Money market for one want token. Liquidity is whatever want the market address holds."""

    def __init__(
        self,
        ledger: Ledger,
        want: Token,
        reward_token: Token,
        *,
        address: str | None = None,
        collateral_factor_bps: int = DEFAULT_COLLATERAL_FACTOR_BPS,
        supply_apr_bps: int = DEFAULT_SUPPLY_APR_BPS,
        borrow_apr_bps: int = DEFAULT_BORROW_APR_BPS,
        reward_apr_bps: int = 0,
    ) -> None:
        if not 0 < collateral_factor_bps < TOTAL_BASIS_POINTS:
            raise BoundViolation(f"collateral factor must be in (0, {TOTAL_BASIS_POINTS}) BPS")
        self.ledger = ledger
        self.want = want
        self._reward_token = reward_token
        self.address = normalize_address(address) if address else derive_address(f"market:{want.symbol}")
        self.state = MarketState(
            collateral_factor_bps=collateral_factor_bps,
            supply_apr_bps=supply_apr_bps,
            borrow_apr_bps=borrow_apr_bps,
            reward_apr_bps=reward_apr_bps,
        )
        ledger.register(self)

    @property
    def reward_token(self) -> Token:
        return self._reward_token

    def collateral_factor_bps(self) -> int:
        return self.state.collateral_factor_bps

    def set_rates(
        self,
        *,
        supply_apr_bps: int | None = None,
        borrow_apr_bps: int | None = None,
        reward_apr_bps: int | None = None,
    ) -> None:
        """Change rates going forward. Accrual up to now uses the old rates."""
        for key in list(self.state.accounts):
            self._touch(key)
        if supply_apr_bps is not None:
            self.state.supply_apr_bps = supply_apr_bps
        if borrow_apr_bps is not None:
            self.state.borrow_apr_bps = borrow_apr_bps
        if reward_apr_bps is not None:
            self.state.reward_apr_bps = reward_apr_bps

    # Views

    def current_supplied(self, account: str) -> int:
        return self._projected(normalize_address(account)).supplied

    def current_borrowed(self, account: str) -> int:
        return self._projected(normalize_address(account)).borrowed

    def pending_rewards(self, account: str) -> int:
        return self._projected(normalize_address(account)).unclaimed_rewards

    def available_liquidity(self) -> int:
        return self.want.balance_of(self.address)

    # Mutations

    def supply(self, caller: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidAmount("supply amount must be > 0")
        acct = self._touch(caller)
        self.want.transfer_from(self.address, caller, self.address, amount)
        acct.supplied += amount
        logger.debug("market supply %s by %s", amount, caller)

    def borrow(self, caller: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidAmount("borrow amount must be > 0")
        acct = self._touch(caller)
        new_borrowed = acct.borrowed + amount
        if new_borrowed * TOTAL_BASIS_POINTS > acct.supplied * self.state.collateral_factor_bps:
            raise BoundViolation(
                f"borrow of {amount} exceeds collateral factor {self.state.collateral_factor_bps} BPS"
            )
        self.want.transfer(self.address, caller, amount)
        acct.borrowed = new_borrowed
        logger.debug("market borrow %s by %s", amount, caller)

    def repay(self, caller: str, amount: int) -> None:
        """Repay up to `amount` of debt; repaying more than is owed repays the whole debt."""
        if amount <= 0:
            raise InvalidAmount("repay amount must be > 0")
        acct = self._touch(caller)
        paid = min(amount, acct.borrowed)
        if paid:
            self.want.transfer_from(self.address, caller, self.address, paid)
            acct.borrowed -= paid
        logger.debug("market repay %s by %s", paid, caller)

    def withdraw_collateral(self, caller: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidAmount("withdraw amount must be > 0")
        acct = self._touch(caller)
        if amount > acct.supplied:
            raise InsufficientBalance(f"withdraw {amount} exceeds supplied {acct.supplied}")
        remaining = acct.supplied - amount
        if acct.borrowed * TOTAL_BASIS_POINTS > remaining * self.state.collateral_factor_bps:
            raise BoundViolation("withdrawal would leave the position undercollateralized")
        self.want.transfer(self.address, caller, amount)
        acct.supplied = remaining
        logger.debug("market withdraw %s by %s", amount, caller)

    def claim_rewards(self, caller: str) -> int:
        acct = self._touch(caller)
        amount = acct.unclaimed_rewards
        if amount:
            acct.unclaimed_rewards = 0
            self._reward_token.mint(self.address, caller, amount)
        return amount

    def apply_loss(self, account: str, amount: int) -> int:
        """Write down an account's collateral, e.g. a socialized bad-debt event. Returns the cut."""
        acct = self._touch(account)
        cut = min(amount, acct.supplied)
        acct.supplied -= cut
        logger.info("market wrote down %s of collateral for %s", cut, account)
        return cut

    def _projected(self, key: str) -> MarketAccount:
        acct = self.state.accounts.get(key)
        if acct is None:
            return MarketAccount(last_accrual=self.ledger.now())
        elapsed = max(self.ledger.now() - acct.last_accrual, 0)
        return MarketAccount(
            supplied=acct.supplied + _accrue(acct.supplied, self.state.supply_apr_bps, elapsed),
            borrowed=acct.borrowed + _accrue(acct.borrowed, self.state.borrow_apr_bps, elapsed),
            unclaimed_rewards=acct.unclaimed_rewards
            + _accrue(acct.supplied + acct.borrowed, self.state.reward_apr_bps, elapsed),
            last_accrual=self.ledger.now(),
        )

    def _touch(self, account: str) -> MarketAccount:
        key = normalize_address(account)
        acct = self._projected(key)
        self.state.accounts[key] = acct
        return acct


@dataclass
class RouterState:
    # "tokenIn->tokenOut" -> amount of tokenOut per 1e18 units of tokenIn
    rates: dict[str, int] = field(default_factory=dict)


class FixedPriceRouter:
    """Swaps at configured rates, paying out of the router's own token reserves."""

    def __init__(self, ledger: Ledger, tokens: Sequence[Token], *, address: str | None = None) -> None:
        self.ledger = ledger
        self.tokens = {t.address: t for t in tokens}
        self.address = normalize_address(address) if address else derive_address("router")
        self.state = RouterState()
        ledger.register(self)

    @staticmethod
    def _pair(token_in: str, token_out: str) -> str:
        return f"{normalize_address(token_in)}->{normalize_address(token_out)}"

    def set_rate(self, token_in: str, token_out: str, rate: int) -> None:
        """Set the price of `token_in` in `token_out`, scaled by 1e18."""
        if rate <= 0:
            raise InvalidAmount("rate must be > 0")
        self.state.rates[self._pair(token_in, token_out)] = rate

    def quote(self, path: Sequence[str], amount_in: int) -> int:
        if len(path) < 2:
            raise InvalidAmount("swap path needs at least two tokens")
        amount = amount_in
        for token_in, token_out in zip(path, path[1:]):
            rate = self.state.rates.get(self._pair(token_in, token_out))
            if rate is None:
                raise InvalidAmount(f"no route {token_in} -> {token_out}")
            amount = amount * rate // PRICE_PRECISION
        return amount

    def swap_exact_in(self, caller: str, path: Sequence[str], amount_in: int, min_amount_out: int) -> int:
        if amount_in <= 0:
            raise InvalidAmount("amount_in must be > 0")
        amount_out = self.quote(path, amount_in)
        if amount_out < min_amount_out:
            raise BoundViolation(f"swap output {amount_out} below minimum {min_amount_out}")
        token_in = self.tokens[normalize_address(path[0])]
        token_out = self.tokens[normalize_address(path[-1])]
        token_in.transfer_from(self.address, caller, self.address, amount_in)
        token_out.transfer(self.address, caller, amount_out)
        logger.debug("swapped %s %s for %s %s", amount_in, token_in.symbol, amount_out, token_out.symbol)
        return amount_out
