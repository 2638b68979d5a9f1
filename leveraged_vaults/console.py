"""Console output formatting."""

from leveraged_vaults.formatters import delta_indicator, format_bp, format_units, short_address
from leveraged_vaults.simulation import SimulationResult, World
from leveraged_vaults.vault import Vault


def _units(vault: Vault, value: int, *, decimals: int = 4, approx: bool = False) -> str:
    return format_units(value, vault.decimals, symbol=vault.asset.symbol, decimals=decimals, approx=approx)


def print_vault_state(world: World) -> None:
    """Print the vault, its registry and every strategy position."""
    vault = world.vault
    status = "🛑 SHUTDOWN" if vault.state.emergency_shutdown else "🟢 Active"
    print("=" * 70)
    print(f"🏦 {vault.name} ({vault.symbol})")
    print(f"   Address: {vault.address}  •  t={world.clock.now()}")
    print(f"   Status: {status}")
    print("=" * 70)
    print(f"   💰 Total Assets:   {_units(vault, vault.total_assets())}")
    print(f"   💤 Idle:           {_units(vault, vault.total_idle())}")
    print(f"   📤 Allocated:      {_units(vault, vault.registry.total_allocated)}")
    print(f"   🧾 Share Supply:   {format_units(vault.total_supply(), vault.decimals, symbol=vault.symbol, decimals=4)}")
    print(f"   🔒 Locked Profit:  {_units(vault, vault.locked_profit(), decimals=6)}")
    print(f"   🧢 TVL Cap:        {_units(vault, vault.state.tvl_cap)}")

    for strategy in vault.strategies():
        params = vault.registry.get(strategy.address)
        supplied, borrowed = strategy.position()
        leverage = strategy.state.leverage
        flags = []
        if strategy.state.paused:
            flags.append("⏸️ paused")
        if strategy.state.emergency_exit:
            flags.append("🚨 emergency exit")
        print(f"\n🏗️  Strategy: {strategy.label} ({short_address(strategy.address)})")
        print(f"   Status: {strategy.status.value}" + (f"  •  {', '.join(flags)}" if flags else ""))
        print("   " + "─" * 50)
        print(f"   • Allocation:   {format_bp(params.alloc_bps)}  ({_units(vault, params.allocated)} allocated)")
        print(f"   • Supplied:     {_units(vault, supplied)}")
        print(f"   • Borrowed:     {_units(vault, borrowed)}")
        print(
            f"   • LTV:          {format_bp(strategy.calculate_ltv())} "
            f"(target {format_bp(leverage.target_ltv_bps)}, max {format_bp(leverage.max_ltv_bps)})"
        )
        print(f"   • Gains/Losses: {_units(vault, params.gains)} / {_units(vault, params.losses)}")
        print(f"   • Harvest log:  {len(strategy.state.harvest_log)} samples")
    print("")


def print_simulation_report(result: SimulationResult, world: World) -> None:
    """Print a per-period table followed by the end state."""
    vault = world.vault
    print("\n📅 HARVEST PERIODS")
    print("─" * 70)
    prev = result.initial_share_price
    for p in result.periods:
        ltvs = " ".join(f"{label}={format_bp(ltv)}" for label, ltv in p.ltv_bps.items())
        marker = "⚠️ " if p.issues else "  "
        print(
            f"{marker}#{p.period:<4} {delta_indicator(prev, p.share_price)} "
            f"price={_units(vault, p.share_price, decimals=6)}  "
            f"tvl={_units(vault, p.total_assets, decimals=2)}  "
            f"locked={_units(vault, p.locked_profit, decimals=4)}  {ltvs}"
        )
        prev = p.share_price
    if result.periods:
        first = result.initial_share_price
        last = result.periods[-1].share_price
        change = (last - first) * 100 / first if first else 0
        print("─" * 70)
        print(f"   Share price: {_units(vault, first, decimals=6)} → {_units(vault, last, decimals=6)} ({change:+.4f}%)")
        print(f"   Keeper fees earned: {_units(vault, sum(p.caller_fees for p in result.periods), decimals=6)}")
    if result.issues:
        print(f"   ⚠️  {len(result.issues)} validation warning(s); see stderr")
    print("")
    print_vault_state(world)
