"""Shared fixtures: a vault wired to an in-memory lending market and swap router."""

import pytest

from leveraged_vaults.access import AccessControl
from leveraged_vaults.asset import Token
from leveraged_vaults.constants import MAX_UINT256
from leveraged_vaults.ledger import Ledger, ManualClock
from leveraged_vaults.market import PRICE_PRECISION, FixedPriceRouter, InMemoryLendingMarket
from leveraged_vaults.models import FeeConfig, LeverageParams
from leveraged_vaults.simulation import account
from leveraged_vaults.strategy import LeverageStrategy
from leveraged_vaults.vault import Vault

UNIT = 10**6
START = 1_700_000_000
LIQUIDITY = 10**9 * UNIT


class Env:
    """One vault, one market, one router and an account per role."""

    super_admin = account("super_admin")
    admin = account("admin")
    guardian = account("guardian")
    strategist = account("strategist")
    keeper = account("keeper")
    treasury = account("treasury")
    remitter = account("strategist_remitter")
    alice = account("alice")
    bob = account("bob")

    def __init__(self, *, reward_apr_bps: int = 0, tvl_cap: int = MAX_UINT256) -> None:
        self.clock = ManualClock(START)
        self.ledger = Ledger(self.clock)
        self.access = AccessControl(
            self.ledger,
            super_admins=[self.super_admin],
            admins=[self.admin],
            guardians=[self.guardian],
            strategists=[self.strategist],
        )
        self.asset = Token(self.ledger, "USDC", 6)
        self.reward_token = Token(self.ledger, "rUSDC", 6)
        self.market = InMemoryLendingMarket(self.ledger, self.asset, self.reward_token, reward_apr_bps=reward_apr_bps)
        self.router = FixedPriceRouter(self.ledger, [self.asset, self.reward_token])
        self.router.set_rate(self.reward_token.address, self.asset.address, PRICE_PRECISION)
        self.asset.mint(self.market.address, self.market.address, LIQUIDITY)
        self.asset.mint(self.router.address, self.router.address, LIQUIDITY)
        self.vault = Vault(self.ledger, self.asset, self.access, tvl_cap=tvl_cap)

    def add_strategy(
        self,
        label: str = "leverage",
        alloc_bps: int = 90_00,
        *,
        leverage: LeverageParams | None = None,
        fees: FeeConfig | None = None,
        router: FixedPriceRouter | None = None,
    ) -> LeverageStrategy:
        strategy = LeverageStrategy(
            self.ledger,
            self.vault,
            self.market,
            router or self.router,
            self.access,
            treasury=self.treasury,
            strategist_remitter=self.remitter,
            label=label,
            leverage=leverage,
            fees=fees,
        )
        self.vault.add_strategy(self.admin, strategy, alloc_bps)
        return strategy

    def fund(self, holder: str, amount: int) -> None:
        self.asset.mint(holder, holder, amount)
        self.asset.approve(holder, self.vault.address, MAX_UINT256)

    def deposit(self, holder: str, amount: int) -> int:
        self.fund(holder, amount)
        return self.vault.deposit(holder, amount)

    def donate(self, amount: int) -> None:
        """Send assets straight to the vault without minting shares."""
        self.asset.mint(self.vault.address, self.vault.address, amount)

    def advance(self, seconds: int) -> int:
        return self.clock.advance(seconds)


@pytest.fixture
def env() -> Env:
    return Env()


@pytest.fixture
def make_env():
    return Env


@pytest.fixture
def vault(env):
    return env.vault


@pytest.fixture
def strategy(env):
    return env.add_strategy()


@pytest.fixture
def deployed(env, strategy):
    """Strategy holding 900 of a 1000 deposit at the default 78% target LTV."""
    env.deposit(env.alice, 1_000 * UNIT)
    strategy.harvest(env.keeper)
    return strategy
