from leveraged_vaults.constants import DEGRADATION_COEFFICIENT

UNIT = 10**6
HOUR = 60 * 60
DAY = 24 * HOUR


def _profitable_harvest(env, strategy) -> int:
    env.advance(DAY)
    strategy.harvest(env.keeper)
    return strategy.state.last_harvest_report.roi


def test_share_price_rises_while_profit_unlocks(env, vault, deployed):
    roi = _profitable_harvest(env, deployed)
    assert roi > 0
    assert vault.locked_profit() == roi

    prices = [vault.preview_redeem(UNIT)]
    for _ in range(5):
        env.advance(HOUR)
        prices.append(vault.preview_redeem(UNIT))

    assert all(a < b for a, b in zip(prices, prices[1:]))
    assert 0 < vault.locked_profit() < roi


def test_harvest_does_not_move_share_price(env, vault, deployed):
    env.advance(DAY)
    before = vault.preview_redeem(UNIT)
    deployed.harvest(env.keeper)
    assert vault.preview_redeem(UNIT) == before


def test_locked_profit_fully_released_after_window(env, vault, deployed):
    _profitable_harvest(env, deployed)
    env.advance(DEGRADATION_COEFFICIENT // vault.state.locked_profit_degradation + 1)

    assert vault.locked_profit() == 0
    assert vault.free_funds() == vault.total_assets()


def test_max_degradation_unlocks_after_one_second(env, vault, deployed):
    vault.set_locked_profit_degradation(env.admin, DEGRADATION_COEFFICIENT)
    roi = _profitable_harvest(env, deployed)
    assert vault.locked_profit() == roi

    env.advance(1)
    assert vault.locked_profit() == 0


def test_changing_degradation_keeps_released_profit_released(env, vault, deployed):
    _profitable_harvest(env, deployed)
    env.advance(3 * HOUR)
    locked = vault.locked_profit()

    vault.set_locked_profit_degradation(env.admin, 0)
    assert vault.locked_profit() == locked

    env.advance(DAY)
    assert vault.locked_profit() == locked


def test_loss_is_absorbed_by_locked_profit_first(env, vault, deployed):
    locked = _profitable_harvest(env, deployed)
    price = vault.preview_redeem(UNIT)
    loss = locked // 2

    env.market.apply_loss(deployed.address, loss)
    deployed.harvest(env.keeper)

    assert vault.locked_profit() == locked - loss
    assert vault.preview_redeem(UNIT) == price
