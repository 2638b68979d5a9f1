import pytest

from leveraged_vaults.access import AUTHORIZATION_MATRIX, Operation, Role, is_authorized, required_role
from leveraged_vaults.errors import AuthorizationError
from leveraged_vaults.simulation import account


def test_every_operation_has_a_required_role():
    assert set(AUTHORIZATION_MATRIX) == set(Operation)


@pytest.mark.parametrize(
    "operation,role",
    [
        (Operation.DEPOSIT, Role.UNASSIGNED),
        (Operation.REDEEM, Role.UNASSIGNED),
        (Operation.HARVEST, Role.UNASSIGNED),
        (Operation.UPDATE_STRATEGY_ALLOC_BPS, Role.STRATEGIST),
        (Operation.SET_LEVERAGE_PARAMS, Role.STRATEGIST),
        (Operation.INITIATE_UPGRADE_COOLDOWN, Role.STRATEGIST),
        (Operation.EMERGENCY_SHUTDOWN_ON, Role.GUARDIAN),
        (Operation.PANIC, Role.GUARDIAN),
        (Operation.SET_EMERGENCY_EXIT, Role.GUARDIAN),
        (Operation.EMERGENCY_SHUTDOWN_OFF, Role.ADMIN),
        (Operation.ADD_STRATEGY, Role.ADMIN),
        (Operation.REVOKE_STRATEGY, Role.ADMIN),
        (Operation.UPDATE_FEES, Role.ADMIN),
        (Operation.UNPAUSE, Role.ADMIN),
        (Operation.UPGRADE, Role.SUPER_ADMIN),
    ],
)
def test_required_role(operation, role):
    assert required_role(operation) is role
    assert is_authorized(role, operation)
    if role > Role.UNASSIGNED:
        assert not is_authorized(Role(role - 1), operation)


@pytest.mark.parametrize("operation", list(Operation))
def test_super_admin_may_do_everything(operation):
    assert is_authorized(Role.SUPER_ADMIN, operation)


def test_check_uses_granted_tier(env):
    env.access.check(env.guardian, Operation.PANIC)
    env.access.check(env.admin, Operation.PANIC)
    with pytest.raises(AuthorizationError):
        env.access.check(env.strategist, Operation.PANIC)
    assert env.access.role_of(account("nobody")) is Role.UNASSIGNED


def test_grant_and_revoke_role(env):
    env.access.grant_role(env.admin, env.bob, Role.STRATEGIST)
    assert env.access.role_of(env.bob) is Role.STRATEGIST

    env.access.revoke_role(env.admin, env.bob)
    assert env.access.role_of(env.bob) is Role.UNASSIGNED


def test_grant_role_cannot_exceed_own_tier(env):
    with pytest.raises(AuthorizationError):
        env.access.grant_role(env.admin, env.bob, Role.SUPER_ADMIN)
    with pytest.raises(AuthorizationError):
        env.access.revoke_role(env.admin, env.super_admin)
    with pytest.raises(AuthorizationError):
        env.access.grant_role(env.guardian, env.bob, Role.STRATEGIST)

    assert env.access.role_of(env.bob) is Role.UNASSIGNED
    assert env.access.role_of(env.super_admin) is Role.SUPER_ADMIN


def test_shutdown_needs_guardian_and_resume_needs_admin(env):
    vault = env.vault
    with pytest.raises(AuthorizationError):
        vault.set_emergency_shutdown(env.strategist, True)

    vault.set_emergency_shutdown(env.guardian, True)
    assert vault.state.emergency_shutdown

    with pytest.raises(AuthorizationError):
        vault.set_emergency_shutdown(env.guardian, False)
    vault.set_emergency_shutdown(env.admin, False)
    assert not vault.state.emergency_shutdown


def test_admin_operations_reject_lower_tiers(env, strategy):
    with pytest.raises(AuthorizationError):
        env.vault.update_tvl_cap(env.guardian, 1)
    with pytest.raises(AuthorizationError):
        env.vault.revoke_strategy(env.guardian, strategy.address)
    with pytest.raises(AuthorizationError):
        env.vault.add_strategy(env.strategist, strategy, 100)

    env.vault.update_strategy_alloc_bps(env.strategist, strategy.address, 50_00)
    assert env.vault.registry.get(strategy.address).alloc_bps == 50_00
