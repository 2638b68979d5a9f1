"""Deterministic simulation of a vault and its leverage strategies.

`build_world` wires the in-memory collaborators from a `SimulationConfig`; `run_simulation` advances a
manual clock period by period, harvests every strategy and validates invariants as it goes.
"""

import logging
import sys
from dataclasses import dataclass, field

from tqdm import tqdm

from leveraged_vaults.access import AccessControl
from leveraged_vaults.analytics import VaultAnalytics, calculate_vault_analytics
from leveraged_vaults.asset import Token
from leveraged_vaults.config import SimulationConfig
from leveraged_vaults.constants import MAX_UINT256
from leveraged_vaults.cooldown import UpgradeCooldown
from leveraged_vaults.errors import VaultError
from leveraged_vaults.formatters import derive_address
from leveraged_vaults.ledger import Ledger, ManualClock
from leveraged_vaults.market import FixedPriceRouter, InMemoryLendingMarket
from leveraged_vaults.strategy import LeverageStrategy
from leveraged_vaults.validation import validate_share_price_progression, validate_vault
from leveraged_vaults.vault import Vault

logger = logging.getLogger(__name__)

ROLE_ACCOUNTS = ("super_admin", "admin", "guardian", "strategist", "keeper", "treasury", "strategist_remitter")


def account(name: str) -> str:
    """Deterministic address for a named simulation account."""
    return derive_address(f"account:{name}")


@dataclass
class World:
    clock: ManualClock
    ledger: Ledger
    access: AccessControl
    asset: Token
    reward_token: Token
    market: InMemoryLendingMarket
    router: FixedPriceRouter
    vault: Vault
    strategies: list[LeverageStrategy] = field(default_factory=list)
    cooldowns: dict[str, UpgradeCooldown] = field(default_factory=dict)
    accounts: dict[str, str] = field(default_factory=dict)

    def fund(self, holder: str, amount: int) -> None:
        self.asset.mint(holder, holder, amount)


@dataclass(frozen=True)
class PeriodResult:
    period: int
    timestamp: int
    share_price: int
    total_assets: int
    locked_profit: int
    caller_fees: int
    ltv_bps: dict[str, int]
    issues: tuple[str, ...] = ()


@dataclass(frozen=True)
class SimulationResult:
    config: SimulationConfig
    initial_share_price: int
    periods: tuple[PeriodResult, ...]
    analytics: VaultAnalytics

    @property
    def issues(self) -> list[str]:
        return [issue for p in self.periods for issue in p.issues]


def build_world(config: SimulationConfig, *, start: int = 0, deposit: bool = True) -> World:
    """Create tokens, market, router, vault and strategies, then make the configured deposits."""
    clock = ManualClock(start)
    ledger = Ledger(clock)
    accounts = {name: account(name) for name in ROLE_ACCOUNTS}
    access = AccessControl(
        ledger,
        super_admins=[accounts["super_admin"]],
        admins=[accounts["admin"]],
        guardians=[accounts["guardian"]],
        strategists=[accounts["strategist"]],
    )
    unit = config.unit
    asset = Token(ledger, config.asset_symbol, config.asset_decimals)
    reward_token = Token(ledger, f"r{config.asset_symbol}", config.asset_decimals)
    market = InMemoryLendingMarket(
        ledger,
        asset,
        reward_token,
        collateral_factor_bps=config.market.collateral_factor_bps,
        supply_apr_bps=config.market.supply_apr_bps,
        borrow_apr_bps=config.market.borrow_apr_bps,
        reward_apr_bps=config.market.reward_apr_bps,
    )
    router = FixedPriceRouter(ledger, [asset, reward_token])
    router.set_rate(reward_token.address, asset.address, config.market.reward_price)
    asset.mint(market.address, market.address, config.market.liquidity_units * unit)
    asset.mint(router.address, router.address, config.market.liquidity_units * unit)

    tvl_cap = MAX_UINT256 if config.tvl_cap_units is None else config.tvl_cap_units * unit
    vault = Vault(
        ledger,
        asset,
        access,
        name=f"{config.asset_symbol} Leveraged Vault",
        tvl_cap=tvl_cap,
        locked_profit_degradation=config.locked_profit_degradation,
    )
    world = World(
        clock=clock,
        ledger=ledger,
        access=access,
        asset=asset,
        reward_token=reward_token,
        market=market,
        router=router,
        vault=vault,
        accounts=accounts,
    )

    for sc in config.strategies:
        strategy = LeverageStrategy(
            ledger,
            vault,
            market,
            router,
            access,
            treasury=accounts["treasury"],
            strategist_remitter=accounts["strategist_remitter"],
            label=sc.label,
            leverage=sc.leverage,
            fees=sc.fees,
        )
        vault.add_strategy(accounts["admin"], strategy, sc.alloc_bps)
        world.strategies.append(strategy)
        world.cooldowns[sc.label] = UpgradeCooldown(ledger, access, strategy)

    if deposit:
        for dc in config.deposits:
            holder = account(dc.depositor)
            world.accounts.setdefault(dc.depositor, holder)
            amount = dc.units * unit
            world.fund(holder, amount)
            asset.approve(holder, vault.address, amount)
            vault.deposit(holder, amount)
            logger.debug("%s deposited %s", dc.depositor, amount)

    return world


def harvest_all(world: World) -> tuple[int, list[str]]:
    """Harvest every strategy once. Failed harvests are reported, not retried."""
    fees = 0
    issues: list[str] = []
    keeper = world.accounts["keeper"]
    for strategy in world.strategies:
        try:
            fees += strategy.harvest(keeper)
        except VaultError as ex:
            issues.append(f"harvest of {strategy.label} failed: {type(ex).__name__}: {ex}")
    return fees, issues


def run_simulation(
    config: SimulationConfig, *, world: World | None = None, progress: bool = True
) -> SimulationResult:
    """Advance `config.periods` periods, harvesting each strategy once per period."""
    world = world or build_world(config)
    vault = world.vault
    initial_price = vault.share_price()
    prev_price = initial_price
    results: list[PeriodResult] = []

    with tqdm(
        range(1, config.periods + 1),
        desc="🌾 Simulating harvests",
        unit="period",
        file=sys.stderr,
        disable=not progress,
    ) as pbar:
        for period in pbar:
            world.clock.advance(config.period_seconds)
            fees, issues = harvest_all(world)
            issues.extend(validate_vault(vault, warn_only=True))
            price = vault.share_price()
            issues.extend(
                validate_share_price_progression(
                    prev_price, price, prev_label=f"period {period - 1}", cur_label=f"period {period}"
                )
            )
            for issue in issues:
                tqdm.write(f"⚠️  {issue}", file=sys.stderr)

            results.append(
                PeriodResult(
                    period=period,
                    timestamp=world.clock.now(),
                    share_price=price,
                    total_assets=vault.total_assets(),
                    locked_profit=vault.locked_profit(),
                    caller_fees=fees,
                    ltv_bps={s.label: s.calculate_ltv() for s in world.strategies},
                    issues=tuple(issues),
                )
            )
            pbar.set_postfix(price=price, tvl=vault.total_assets())
            prev_price = price

    return SimulationResult(
        config=config,
        initial_share_price=initial_price,
        periods=tuple(results),
        analytics=calculate_vault_analytics(vault),
    )
