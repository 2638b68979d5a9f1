import pytest

from leveraged_vaults.constants import MAX_UINT256, SECONDS_PER_YEAR
from leveraged_vaults.errors import AuthorizationError, BoundViolation, InsufficientBalance, InvalidAmount
from leveraged_vaults.market import PRICE_PRECISION
from leveraged_vaults.simulation import account

UNIT = 10**6
BORROWER = account("borrower")


@pytest.fixture
def borrower(env):
    env.asset.mint(BORROWER, BORROWER, 1_000 * UNIT)
    env.asset.approve(BORROWER, env.market.address, MAX_UINT256)
    env.market.supply(BORROWER, 1_000 * UNIT)
    return BORROWER


def test_borrow_is_capped_by_collateral_factor(env, borrower):
    env.market.borrow(borrower, 800 * UNIT)
    with pytest.raises(BoundViolation):
        env.market.borrow(borrower, 1)
    assert env.asset.balance_of(borrower) == 800 * UNIT


def test_withdraw_cannot_leave_position_undercollateralized(env, borrower):
    env.market.borrow(borrower, 400 * UNIT)
    with pytest.raises(BoundViolation):
        env.market.withdraw_collateral(borrower, 500 * UNIT + 1)
    with pytest.raises(InsufficientBalance):
        env.market.withdraw_collateral(borrower, 1_001 * UNIT)
    env.market.withdraw_collateral(borrower, 500 * UNIT)
    assert env.market.current_supplied(borrower) == 500 * UNIT


def test_repay_is_capped_at_debt(env, borrower):
    env.market.borrow(borrower, 100 * UNIT)
    env.market.repay(borrower, 150 * UNIT)
    assert env.market.current_borrowed(borrower) == 0
    assert env.asset.balance_of(borrower) == 0


def test_interest_and_rewards_accrue_lazily(make_env):
    env = make_env(reward_apr_bps=2_00)
    env.asset.mint(BORROWER, BORROWER, 1_000 * UNIT)
    env.asset.approve(BORROWER, env.market.address, MAX_UINT256)
    env.market.supply(BORROWER, 1_000 * UNIT)
    env.market.borrow(BORROWER, 500 * UNIT)

    env.advance(SECONDS_PER_YEAR)

    assert env.market.current_supplied(BORROWER) == 1_040 * UNIT
    assert env.market.current_borrowed(BORROWER) == 515 * UNIT
    assert env.market.pending_rewards(BORROWER) == 30 * UNIT
    assert env.market.claim_rewards(BORROWER) == 30 * UNIT
    assert env.reward_token.balance_of(BORROWER) == 30 * UNIT
    assert env.market.pending_rewards(BORROWER) == 0


def test_apply_loss_writes_down_collateral(env, borrower):
    assert env.market.apply_loss(borrower, 2_000 * UNIT) == 1_000 * UNIT
    assert env.market.current_supplied(borrower) == 0


def test_zero_amounts_rejected(env, borrower):
    for op in (env.market.supply, env.market.borrow, env.market.repay, env.market.withdraw_collateral):
        with pytest.raises(InvalidAmount):
            op(borrower, 0)


def test_router_quotes_and_enforces_minimum(env):
    env.reward_token.mint(BORROWER, BORROWER, 10 * UNIT)
    env.reward_token.approve(BORROWER, env.router.address, MAX_UINT256)
    path = [env.reward_token.address, env.asset.address]
    env.router.set_rate(env.reward_token.address, env.asset.address, PRICE_PRECISION // 2)

    assert env.router.quote(path, 10 * UNIT) == 5 * UNIT
    with pytest.raises(BoundViolation):
        env.router.swap_exact_in(BORROWER, path, 10 * UNIT, 5 * UNIT + 1)
    assert env.router.swap_exact_in(BORROWER, path, 10 * UNIT, 5 * UNIT) == 5 * UNIT
    assert env.asset.balance_of(BORROWER) == 5 * UNIT
    with pytest.raises(InvalidAmount):
        env.router.quote([env.asset.address, env.reward_token.address], UNIT)


def test_token_transfers_and_minter(env):
    share = env.vault.share
    with pytest.raises(AuthorizationError):
        share.mint(BORROWER, BORROWER, 1)
    with pytest.raises(InsufficientBalance):
        env.asset.transfer(BORROWER, env.alice, 1)

    env.asset.mint(BORROWER, BORROWER, 10)
    env.asset.approve(BORROWER, env.alice, 4)
    with pytest.raises(InsufficientBalance):
        env.asset.transfer_from(env.alice, BORROWER, env.alice, 5)
    env.asset.transfer_from(env.alice, BORROWER, env.bob, 4)
    assert env.asset.balance_of(env.bob) == 4
    assert env.asset.allowance(BORROWER, env.alice) == 0


def test_rate_change_applies_from_now_on(env, borrower):
    env.advance(SECONDS_PER_YEAR // 2)
    env.market.set_rates(supply_apr_bps=0)
    assert env.market.current_supplied(borrower) == 1_020 * UNIT

    env.advance(SECONDS_PER_YEAR // 2)
    assert env.market.current_supplied(borrower) == 1_020 * UNIT


def test_borrowing_drains_available_liquidity(env, borrower):
    before = env.market.available_liquidity()
    env.market.borrow(borrower, 300 * UNIT)
    assert env.market.available_liquidity() == before - 300 * UNIT
    env.market.repay(borrower, 100 * UNIT)
    assert env.market.available_liquidity() == before - 200 * UNIT
