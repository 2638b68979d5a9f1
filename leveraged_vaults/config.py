"""Simulation configuration parsing."""

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from leveraged_vaults.constants import (
    CONFIG_ENV_VAR,
    DEFAULT_ASSET_DECIMALS,
    DEFAULT_BORROW_APR_BPS,
    DEFAULT_CALL_FEE_BPS,
    DEFAULT_COLLATERAL_FACTOR_BPS,
    DEFAULT_LEVERAGE_STEP_SIZE,
    DEFAULT_LOCKED_PROFIT_DEGRADATION,
    DEFAULT_MAX_LEVERAGE_STEPS,
    DEFAULT_MAX_LTV_BPS,
    DEFAULT_STRATEGIST_FEE_BPS,
    DEFAULT_SUPPLY_APR_BPS,
    DEFAULT_TARGET_LTV_BPS,
    DEFAULT_TOTAL_FEE_BPS,
    DEFAULT_TREASURY_FEE_BPS,
)
from leveraged_vaults.formatters import as_int
from leveraged_vaults.models import FeeConfig, LeverageParams


@dataclass(frozen=True)
class MarketConfig:
    collateral_factor_bps: int = DEFAULT_COLLATERAL_FACTOR_BPS
    supply_apr_bps: int = DEFAULT_SUPPLY_APR_BPS
    borrow_apr_bps: int = DEFAULT_BORROW_APR_BPS
    reward_apr_bps: int = 2_00
    # Want paid per 1e18 reward units.
    reward_price: int = 10**18
    liquidity_units: int = 1_000_000


@dataclass(frozen=True)
class StrategyConfig:
    label: str = "leverage"
    alloc_bps: int = 90_00
    target_ltv_bps: int = DEFAULT_TARGET_LTV_BPS
    max_ltv_bps: int = DEFAULT_MAX_LTV_BPS
    step_size: int = DEFAULT_LEVERAGE_STEP_SIZE
    max_steps: int = DEFAULT_MAX_LEVERAGE_STEPS
    total_fee_bps: int = DEFAULT_TOTAL_FEE_BPS
    call_fee_bps: int = DEFAULT_CALL_FEE_BPS
    treasury_fee_bps: int = DEFAULT_TREASURY_FEE_BPS
    strategist_fee_bps: int = DEFAULT_STRATEGIST_FEE_BPS

    @property
    def leverage(self) -> LeverageParams:
        return LeverageParams(self.target_ltv_bps, self.max_ltv_bps, self.step_size, self.max_steps)

    @property
    def fees(self) -> FeeConfig:
        return FeeConfig(self.total_fee_bps, self.call_fee_bps, self.treasury_fee_bps, self.strategist_fee_bps)


@dataclass(frozen=True)
class DepositConfig:
    depositor: str = "depositor"
    units: int = 1_000


@dataclass(frozen=True)
class SimulationConfig:
    asset_symbol: str = "USDC"
    asset_decimals: int = DEFAULT_ASSET_DECIMALS
    # None means uncapped.
    tvl_cap_units: int | None = 10_000
    locked_profit_degradation: int = DEFAULT_LOCKED_PROFIT_DEGRADATION
    periods: int = 30
    period_seconds: int = 24 * 60 * 60
    market: MarketConfig = field(default_factory=MarketConfig)
    strategies: tuple[StrategyConfig, ...] = (StrategyConfig(),)
    deposits: tuple[DepositConfig, ...] = (DepositConfig(),)

    @property
    def unit(self) -> int:
        return 10**self.asset_decimals


def _build(cls, data: dict[str, Any], *, where: str):
    """Instantiate a flat config dataclass from `data`, converting numeric fields with `as_int`."""
    if not isinstance(data, dict):
        raise ValueError(f"{where}: expected a JSON object")
    known = {f.name: f for f in fields(cls)}
    unknown = set(data) - set(known)
    if unknown:
        raise ValueError(f"{where}: unknown keys {sorted(unknown)}")
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        default = getattr(cls(), key)
        if isinstance(default, str):
            kwargs[key] = str(value)
        elif value is None:
            kwargs[key] = None
        else:
            kwargs[key] = as_int(value)
    return cls(**kwargs)


def parse_config(data: dict[str, Any]) -> SimulationConfig:
    """Parse a JSON-decoded simulation config. Missing keys take defaults."""
    if not isinstance(data, dict):
        raise ValueError("Unexpected config format (expected JSON object)")
    top = {k: v for k, v in data.items() if k not in ("market", "strategies", "deposits")}
    base = _build(SimulationConfig, top, where="config")

    market = _build(MarketConfig, data.get("market", {}), where="market")
    strategies = tuple(
        _build(StrategyConfig, s, where=f"strategies[{i}]") for i, s in enumerate(data.get("strategies", [{}]))
    )
    deposits = tuple(
        _build(DepositConfig, d, where=f"deposits[{i}]") for i, d in enumerate(data.get("deposits", [{}]))
    )

    labels = [s.label for s in strategies]
    if len(labels) != len(set(labels)):
        raise ValueError(f"strategy labels must be unique: {labels}")
    if base.periods < 0 or base.period_seconds <= 0:
        raise ValueError("periods must be >= 0 and period_seconds > 0")

    return SimulationConfig(
        asset_symbol=base.asset_symbol,
        asset_decimals=base.asset_decimals,
        tvl_cap_units=base.tvl_cap_units,
        locked_profit_degradation=base.locked_profit_degradation,
        periods=base.periods,
        period_seconds=base.period_seconds,
        market=market,
        strategies=strategies,
        deposits=deposits,
    )


def load_config(path: str | Path | None = None) -> SimulationConfig:
    """Load a config file; falls back to $LEVERAGED_VAULTS_CONFIG, then to defaults."""
    path = path or os.getenv(CONFIG_ENV_VAR)
    if not path:
        return SimulationConfig()
    with Path(path).open("r", encoding="utf-8") as f:
        return parse_config(json.load(f))
