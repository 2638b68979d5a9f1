import pytest

from leveraged_vaults.validation import validate_share_price_progression, validate_strategy, validate_vault

UNIT = 10**6


def test_healthy_vault_has_no_issues(env, vault, deployed):
    env.deposit(env.bob, 10 * UNIT)
    assert validate_vault(vault) == []


def test_allocation_mismatch(vault, deployed):
    vault.registry.state.total_allocated += 1

    with pytest.raises(ValueError, match="allocation mismatch"):
        validate_vault(vault)
    issues = validate_vault(vault, warn_only=True)
    assert len(issues) == 1


def test_share_supply_mismatch(env, vault):
    env.deposit(env.alice, 10 * UNIT)
    vault.share.state.total_supply += 1
    issues = validate_vault(vault, warn_only=True)
    assert any("share supply" in i for i in issues)


def test_ltv_above_maximum_is_flagged(env, deployed):
    # Lower the ceiling without rebalancing.
    deployed.set_leverage_params(env.strategist, 50_00, 60_00, 10**30, 10)
    issues = validate_strategy(deployed, warn_only=True)
    assert len(issues) == 1
    assert "above maximum" in issues[0]


def test_emergency_exit_with_allocation_is_flagged(env, vault, deployed):
    deployed.state.emergency_exit = True
    with pytest.raises(ValueError, match="emergency exit"):
        validate_strategy(deployed)


def test_share_price_progression():
    assert validate_share_price_progression(100, 101, prev_label="p0", cur_label="p1") == []
    issues = validate_share_price_progression(101, 100, prev_label="p0", cur_label="p1")
    assert len(issues) == 1
    with pytest.raises(ValueError):
        validate_share_price_progression(101, 100, prev_label="p0", cur_label="p1", warn_only=False)
