import pytest

from leveraged_vaults.analytics import (
    calculate_strategy_metrics,
    calculate_vault_analytics,
    classify_risk,
    format_analytics_summary,
)
from leveraged_vaults.models import StrategyStatus

UNIT = 10**6


@pytest.mark.parametrize(
    "health_factor,distance,expected",
    [
        (None, 100, "low"),
        (1.50, 500, "low"),
        (1.05, 40, "medium"),
        (1.50, 10, "medium"),
        (1.01, 40, "high"),
        (1.50, -1, "high"),
    ],
)
def test_classify_risk(health_factor, distance, expected):
    assert classify_risk(health_factor, distance) == expected


def test_strategy_metrics_for_levered_position(deployed):
    m = calculate_strategy_metrics(deployed)

    assert m.status is StrategyStatus.DEPLOYED
    assert m.net_value == 900 * UNIT
    assert m.allocated == 900 * UNIT
    assert m.ltv_bps == 78_00
    assert m.distance_to_max_bps == 40
    assert m.health_factor == pytest.approx(80 / 78, rel=1e-6)
    assert m.leverage == pytest.approx(1 / 0.22, rel=1e-6)
    assert m.risk_tier == "medium"
    assert m.trailing_apr_bps is None
    assert m.unrealized_profit == 0


def test_strategy_metrics_without_debt(strategy):
    m = calculate_strategy_metrics(strategy)
    assert m.health_factor is None
    assert m.leverage == 0.0
    assert m.risk_tier == "low"


def test_vault_analytics_and_summary(env, vault, deployed):
    a = calculate_vault_analytics(vault)

    assert a.total_assets == 1_000 * UNIT
    assert a.total_idle == 100 * UNIT
    assert a.utilization == pytest.approx(0.9)
    assert a.tvl_cap_usage is None
    assert a.share_price == UNIT
    assert a.high_risk_strategy_count == 0
    assert len(a.strategies) == 1

    text = format_analytics_summary(a, decimals=6, symbol="USDC")
    assert "ANALYTICS SUMMARY" in text
    assert "Total Assets: 1000 USDC" in text
    assert "STRATEGY leverage (deployed)" in text
    assert "TVL Cap Usage: uncapped" in text


def test_vault_analytics_with_cap(env, vault):
    vault.update_tvl_cap(env.admin, 1_000 * UNIT)
    env.deposit(env.alice, 250 * UNIT)
    assert calculate_vault_analytics(vault).tvl_cap_usage == pytest.approx(0.25)
