from leveraged_vaults.config import SimulationConfig, StrategyConfig
from leveraged_vaults.models import StrategyStatus
from leveraged_vaults.simulation import build_world, harvest_all, run_simulation

UNIT = 10**6


def test_build_world_deposits_and_registers_strategies():
    config = SimulationConfig(
        strategies=(StrategyConfig(label="a", alloc_bps=40_00), StrategyConfig(label="b", alloc_bps=40_00)),
    )
    world = build_world(config)

    assert world.vault.total_assets() == 1_000 * UNIT
    assert world.vault.balance_of(world.accounts["depositor"]) == 1_000 * UNIT
    assert [s.label for s in world.vault.strategies()] == ["a", "b"]
    assert set(world.cooldowns) == {"a", "b"}
    assert world.vault.state.tvl_cap == 10_000 * UNIT


def test_run_simulation_grows_share_price():
    config = SimulationConfig(periods=5)
    result = run_simulation(config, progress=False)

    assert len(result.periods) == 5
    assert result.issues == []
    prices = [result.initial_share_price] + [p.share_price for p in result.periods]
    assert prices == sorted(prices)
    assert prices[-1] > prices[0]
    assert sum(p.caller_fees for p in result.periods) > 0
    assert all(78_00 <= p.ltv_bps["leverage"] <= 78_40 for p in result.periods)
    assert result.analytics.strategies[0].trailing_apr_bps > 0


def test_failed_harvest_is_reported_not_raised():
    config = SimulationConfig(periods=1)
    world = build_world(config)
    strategy = world.strategies[0]
    world.vault.revoke_strategy(world.accounts["admin"], strategy.address)
    assert strategy.status is StrategyStatus.RETIRED

    fees, issues = harvest_all(world)

    assert fees == 0
    assert len(issues) == 1
    assert "StrategyRetired" in issues[0]
