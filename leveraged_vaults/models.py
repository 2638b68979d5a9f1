"""Data models for vault, registry and strategy state."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from leveraged_vaults.constants import (
    DEFAULT_CALL_FEE_BPS,
    DEFAULT_HARVEST_LOG_CADENCE,
    DEFAULT_LEVERAGE_STEP_SIZE,
    DEFAULT_LOCKED_PROFIT_DEGRADATION,
    DEFAULT_MAX_LEVERAGE_STEPS,
    DEFAULT_MAX_LTV_BPS,
    DEFAULT_STRATEGIST_FEE_BPS,
    DEFAULT_TARGET_LTV_BPS,
    DEFAULT_TOTAL_FEE_BPS,
    DEFAULT_TREASURY_FEE_BPS,
    MAX_UINT256,
)


class StrategyStatus(str, Enum):
    """Lifecycle of a strategy's leveraged position."""

    IDLE = "idle"
    DEPLOYED = "deployed"
    # Leverage adjustment ran out of steps; the remainder is deferred to the next call.
    REBALANCING = "rebalancing"
    EMERGENCY_UNWOUND = "emergency_unwound"
    RETIRED = "retired"


@dataclass
class VaultState:
    """Mutable vault bookkeeping. Idle assets and share balances live in the token ledgers."""

    locked_profit: int = 0
    last_report: int = 0
    locked_profit_degradation: int = DEFAULT_LOCKED_PROFIT_DEGRADATION
    tvl_cap: int = MAX_UINT256
    emergency_shutdown: bool = False


@dataclass
class StrategyParams:
    """Allocation registry entry for one strategy."""

    strategy: str
    alloc_bps: int
    activation: int
    # Last reported balance: what the vault believes the strategy holds on its behalf.
    allocated: int = 0
    gains: int = 0
    losses: int = 0
    last_report: int = 0


@dataclass
class RegistryState:
    entries: dict[str, StrategyParams] = field(default_factory=dict)
    withdrawal_order: list[str] = field(default_factory=list)
    total_alloc_bps: int = 0
    total_allocated: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RegistryState":
        return cls(
            entries={k: StrategyParams(**v) for k, v in data["entries"].items()},
            withdrawal_order=list(data["withdrawal_order"]),
            total_alloc_bps=int(data["total_alloc_bps"]),
            total_allocated=int(data["total_allocated"]),
        )


@dataclass(frozen=True)
class LeverageParams:
    target_ltv_bps: int = DEFAULT_TARGET_LTV_BPS
    max_ltv_bps: int = DEFAULT_MAX_LTV_BPS
    # Largest amount borrowed or repaid in one step.
    step_size: int = DEFAULT_LEVERAGE_STEP_SIZE
    max_steps: int = DEFAULT_MAX_LEVERAGE_STEPS


@dataclass(frozen=True)
class FeeConfig:
    total_fee_bps: int = DEFAULT_TOTAL_FEE_BPS
    call_fee_bps: int = DEFAULT_CALL_FEE_BPS
    treasury_fee_bps: int = DEFAULT_TREASURY_FEE_BPS
    strategist_fee_bps: int = DEFAULT_STRATEGIST_FEE_BPS


@dataclass(frozen=True)
class FeeSplit:
    """Harvest fee amounts actually paid out."""

    caller: int = 0
    treasury: int = 0
    strategist: int = 0

    @property
    def total(self) -> int:
        return self.caller + self.treasury + self.strategist


@dataclass(frozen=True)
class HarvestSample:
    """One harvest-log entry: profit realized over `elapsed` seconds on `principal`."""

    timestamp: int
    profit: int
    principal: int
    elapsed: int


@dataclass(frozen=True)
class HarvestReport:
    """Outcome of a single harvest, kept for reporting."""

    timestamp: int
    rewards_swapped: int
    gross_profit: int
    fees: FeeSplit
    roi: int
    repayment: int
    debt: int
    ltv_bps: int


@dataclass
class StrategyPosition:
    """Strategy-local state. Supplied collateral and debt are read live from the lending market."""

    leverage: LeverageParams = field(default_factory=LeverageParams)
    fees: FeeConfig = field(default_factory=FeeConfig)
    status: StrategyStatus = StrategyStatus.IDLE
    paused: bool = False
    emergency_exit: bool = False
    harvest_log: list[HarvestSample] = field(default_factory=list)
    harvest_log_cadence: int = DEFAULT_HARVEST_LOG_CADENCE
    last_harvest: int = 0
    last_harvest_report: HarvestReport | None = None
    implementation_version: int = 1

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StrategyPosition":
        last = data.get("last_harvest_report")
        if last is not None:
            last = HarvestReport(**{**last, "fees": FeeSplit(**last["fees"])})
        return cls(
            leverage=LeverageParams(**data["leverage"]),
            fees=FeeConfig(**data["fees"]),
            status=StrategyStatus(data["status"]),
            paused=bool(data["paused"]),
            emergency_exit=bool(data["emergency_exit"]),
            harvest_log=[HarvestSample(**s) for s in data["harvest_log"]],
            harvest_log_cadence=int(data["harvest_log_cadence"]),
            last_harvest=int(data["last_harvest"]),
            last_harvest_report=last,
            implementation_version=int(data["implementation_version"]),
        )


@dataclass
class CooldownState:
    # None means no cooldown has been initiated.
    initiated_at: int | None = None


@dataclass(frozen=True)
class Implementation:
    """Versioned strategy implementation applied through the upgrade cooldown."""

    version: int
    label: str = ""
