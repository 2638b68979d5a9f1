"""Invariant checks for vaults and strategies."""

from leveraged_vaults.constants import TOTAL_BASIS_POINTS
from leveraged_vaults.formatters import short_address
from leveraged_vaults.strategy import LeverageStrategy
from leveraged_vaults.vault import Vault


def _flag(issues: list[str], msg: str, warn_only: bool) -> None:
    issues.append(msg)
    if not warn_only:
        raise ValueError(msg)


def validate_vault(vault: Vault, *, warn_only: bool = False) -> list[str]:
    """
    Validate vault accounting invariants.

    Returns list of validation warnings/errors. If warn_only=False, raises ValueError on the first one.
    """
    issues: list[str] = []
    registry = vault.registry
    entries = registry.state.entries
    name = vault.symbol

    # 1. totalAllocated mirrors the per-strategy allocations
    allocated_sum = sum(p.allocated for p in entries.values())
    if allocated_sum != registry.total_allocated:
        _flag(
            issues,
            f"Vault {name}: allocation mismatch: total_allocated={registry.total_allocated} != Σ allocated={allocated_sum}",
            warn_only,
        )

    # 2. Allocation weights never exceed 100%
    bps_sum = sum(p.alloc_bps for p in entries.values())
    if bps_sum != registry.total_alloc_bps or bps_sum > TOTAL_BASIS_POINTS:
        _flag(
            issues,
            f"Vault {name}: allocation weights inconsistent: Σ={bps_sum} BPS, recorded={registry.total_alloc_bps} BPS",
            warn_only,
        )

    # 3. Withdrawal order is a permutation of the registered strategies
    order = registry.state.withdrawal_order
    if sorted(order) != sorted(entries):
        _flag(issues, f"Vault {name}: withdrawal order does not match registered strategies", warn_only)

    # 4. Share supply equals the sum of holder balances
    holders_sum = sum(vault.share.holders().values())
    if holders_sum != vault.total_supply():
        _flag(issues, f"Vault {name}: share supply {vault.total_supply()} != Σ balances {holders_sum}", warn_only)

    # 5. Decayed locked profit never exceeds the booked amount or total assets
    locked = vault.locked_profit()
    if locked > vault.state.locked_profit or locked > vault.total_assets():
        _flag(
            issues,
            f"Vault {name}: locked profit {locked} exceeds booked {vault.state.locked_profit} or total assets",
            warn_only,
        )

    for strategy in vault.strategies():
        issues.extend(validate_strategy(strategy, warn_only=warn_only))

    return issues


def validate_strategy(strategy: LeverageStrategy, *, warn_only: bool = False) -> list[str]:
    """Validate one strategy's position."""
    issues: list[str] = []
    label = f"{strategy.label} ({short_address(strategy.address)})"
    supplied, borrowed = strategy.position()
    leverage = strategy.state.leverage

    if borrowed > supplied:
        _flag(issues, f"Strategy {label}: insolvent position: borrowed={borrowed} > supplied={supplied}", warn_only)

    ltv = strategy.calculate_ltv()
    if ltv > leverage.max_ltv_bps:
        _flag(issues, f"Strategy {label}: LTV {ltv} BPS above maximum {leverage.max_ltv_bps} BPS", warn_only)

    if strategy.state.emergency_exit and strategy.vault.registry.get(strategy.address).alloc_bps:
        _flag(issues, f"Strategy {label}: emergency exit set but allocation not revoked", warn_only)

    return issues


def validate_share_price_progression(
    prev_price: int, cur_price: int, *, prev_label: str, cur_label: str, warn_only: bool = True
) -> list[str]:
    """
    Share price should not fall between periods unless a loss was reported.

    Returns list of warnings. By default, only warns (doesn't raise).
    """
    issues: list[str] = []
    if cur_price < prev_price:
        _flag(issues, f"Share price decreased: {prev_price} ({prev_label}) → {cur_price} ({cur_label})", warn_only)
    return issues
