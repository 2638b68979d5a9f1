"""Analytics for leveraged vaults.

Metrics for monitoring a running vault:
- Position risk per strategy (LTV, health factor, distance to the LTV ceiling)
- Returns (trailing APR from the harvest log)
- Capital efficiency (allocation drift, utilization, locked profit)
"""

from dataclasses import dataclass
from decimal import Decimal

from leveraged_vaults.constants import MAX_UINT256, TOTAL_BASIS_POINTS
from leveraged_vaults.formatters import format_bp, format_units
from leveraged_vaults.models import StrategyStatus
from leveraged_vaults.strategy import LeverageStrategy
from leveraged_vaults.vault import Vault

# Window used for the trailing APR shown in summaries.
DEFAULT_APR_WINDOW = 5


@dataclass(frozen=True)
class StrategyMetrics:
    """Risk and return metrics for one strategy."""

    strategy: str
    label: str
    status: StrategyStatus
    supplied: int
    borrowed: int
    net_value: int
    allocated: int
    alloc_bps: int
    # Risk metrics
    ltv_bps: int
    target_ltv_bps: int
    max_ltv_bps: int
    distance_to_max_bps: int
    health_factor: float | None  # supplied * collateral factor / borrowed
    leverage: float  # supplied / net value
    # Returns
    trailing_apr_bps: int | None
    unrealized_profit: int
    # Classification
    risk_tier: str  # "low", "medium", "high"


@dataclass(frozen=True)
class VaultAnalytics:
    """Vault-wide analytics."""

    total_assets: int
    total_idle: int
    total_allocated: int
    total_supply: int
    share_price: int
    locked_profit: int
    locked_ratio: float  # locked profit / total assets
    utilization: float  # allocated / total assets
    tvl_cap_usage: float | None
    total_alloc_bps: int
    emergency_shutdown: bool
    strategies: tuple[StrategyMetrics, ...]
    avg_health_factor: float | None
    high_risk_strategy_count: int


def classify_risk(health_factor: float | None, distance_to_max_bps: int) -> str:
    if health_factor is None:
        return "low"
    if health_factor < 1.02 or distance_to_max_bps < 0:
        return "high"
    if health_factor < 1.10 or distance_to_max_bps < 20:
        return "medium"
    return "low"


def calculate_strategy_metrics(strategy: LeverageStrategy, *, apr_window: int = DEFAULT_APR_WINDOW) -> StrategyMetrics:
    """Calculate risk and return metrics for a single strategy."""
    supplied, borrowed = strategy.position()
    net_value = strategy.balance_of()
    params = strategy.vault.registry.get(strategy.address)
    leverage = strategy.state.leverage
    ltv = strategy.calculate_ltv()

    health_factor = None
    if borrowed > 0:
        collateral_factor = strategy.market.collateral_factor_bps()
        health_factor = float(Decimal(supplied) * collateral_factor / TOTAL_BASIS_POINTS / Decimal(borrowed))

    position_value = supplied - borrowed
    leverage_ratio = supplied / position_value if position_value > 0 else 0.0

    trailing_apr = None
    samples = len(strategy.state.harvest_log)
    if samples:
        trailing_apr = strategy.average_apr_across_last_n_harvests(min(apr_window, samples))

    distance = leverage.max_ltv_bps - ltv
    return StrategyMetrics(
        strategy=strategy.address,
        label=strategy.label,
        status=strategy.status,
        supplied=supplied,
        borrowed=borrowed,
        net_value=net_value,
        allocated=params.allocated,
        alloc_bps=params.alloc_bps,
        ltv_bps=ltv,
        target_ltv_bps=leverage.target_ltv_bps,
        max_ltv_bps=leverage.max_ltv_bps,
        distance_to_max_bps=distance,
        health_factor=health_factor,
        leverage=leverage_ratio,
        trailing_apr_bps=trailing_apr,
        unrealized_profit=net_value - params.allocated,
        risk_tier=classify_risk(health_factor, distance),
    )


def calculate_vault_analytics(vault: Vault) -> VaultAnalytics:
    """Calculate vault-wide analytics across all registered strategies."""
    total_assets = vault.total_assets()
    total_allocated = vault.registry.total_allocated
    locked = vault.locked_profit()
    metrics = tuple(calculate_strategy_metrics(s) for s in vault.strategies())

    health_factors = [m.health_factor for m in metrics if m.health_factor is not None]
    avg_hf = sum(health_factors) / len(health_factors) if health_factors else None

    tvl_cap = vault.state.tvl_cap
    cap_usage = None
    if 0 < tvl_cap != MAX_UINT256:
        cap_usage = total_assets / tvl_cap

    share_price = 0
    if not (vault.total_supply() and vault.free_funds() == 0):
        share_price = vault.share_price()

    return VaultAnalytics(
        total_assets=total_assets,
        total_idle=vault.total_idle(),
        total_allocated=total_allocated,
        total_supply=vault.total_supply(),
        share_price=share_price,
        locked_profit=locked,
        locked_ratio=locked / total_assets if total_assets > 0 else 0.0,
        utilization=total_allocated / total_assets if total_assets > 0 else 0.0,
        tvl_cap_usage=cap_usage,
        total_alloc_bps=vault.registry.total_alloc_bps,
        emergency_shutdown=vault.state.emergency_shutdown,
        strategies=metrics,
        avg_health_factor=avg_hf,
        high_risk_strategy_count=sum(1 for m in metrics if m.risk_tier == "high"),
    )


def format_analytics_summary(analytics: VaultAnalytics, *, decimals: int, symbol: str) -> str:
    """Format analytics as a text summary for console output."""

    def units(value: int) -> str:
        return format_units(value, decimals, symbol=symbol, decimals=4)

    lines = [
        "",
        "=" * 70,
        "📊 ANALYTICS SUMMARY",
        "=" * 70,
        "",
        "💰 TVL & CAPITAL",
        f"   Total Assets: {units(analytics.total_assets)}",
        f"   Idle: {units(analytics.total_idle)} | Allocated: {units(analytics.total_allocated)}",
        f"   Utilization: {analytics.utilization * 100:.1f}% (target {format_bp(analytics.total_alloc_bps)})",
        f"   TVL Cap Usage: {analytics.tvl_cap_usage * 100:.1f}%"
        if analytics.tvl_cap_usage is not None
        else "   TVL Cap Usage: uncapped",
        "",
        "🔒 PROFIT LOCKING",
        f"   Share Price: {units(analytics.share_price)}",
        f"   Locked Profit: {units(analytics.locked_profit)} ({analytics.locked_ratio * 100:.3f}% of assets)",
        "",
        "⚠️  RISK METRICS",
        f"   Avg Health Factor: {analytics.avg_health_factor:.3f}"
        if analytics.avg_health_factor
        else "   Avg Health Factor: N/A",
        f"   High Risk Strategies: {analytics.high_risk_strategy_count}",
        f"   Emergency Shutdown: {'Yes' if analytics.emergency_shutdown else 'No'}",
        "",
    ]
    for m in analytics.strategies:
        apr = format_bp(m.trailing_apr_bps) if m.trailing_apr_bps is not None else "n/a"
        hf = f"{m.health_factor:.3f}" if m.health_factor is not None else "n/a"
        lines.extend(
            [
                f"🏗️  STRATEGY {m.label} ({m.status.value})",
                f"   LTV: {format_bp(m.ltv_bps)} (target {format_bp(m.target_ltv_bps)}, max {format_bp(m.max_ltv_bps)})",
                f"   Leverage: {m.leverage:.2f}x | Health: {hf} | Risk: {m.risk_tier}",
                f"   Trailing APR: {apr} | Unrealized: {units(m.unrealized_profit)}",
                "",
            ]
        )
    return "\n".join(lines)
