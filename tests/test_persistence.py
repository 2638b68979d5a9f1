import json

import pytest

from leveraged_vaults.config import SimulationConfig, StrategyConfig
from leveraged_vaults.persistence import (
    clear_state,
    export_state,
    get_state_dir,
    load_snapshot,
    restore_state,
    save_snapshot,
)
from leveraged_vaults.simulation import build_world, run_simulation


@pytest.fixture(autouse=True)
def cache_home(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def config():
    return SimulationConfig(periods=3)


def _summary(world):
    vault = world.vault
    return {
        "total_assets": vault.total_assets(),
        "supply": vault.total_supply(),
        "locked": vault.locked_profit(),
        "positions": [s.position() for s in world.strategies],
        "status": [s.status for s in world.strategies],
        "log": [len(s.state.harvest_log) for s in world.strategies],
    }


def test_export_restore_round_trip(config):
    world = build_world(config)
    run_simulation(config, world=world, progress=False)
    data = json.loads(json.dumps(export_state(world.ledger)))

    fresh = build_world(config, deposit=False)
    restore_state(fresh.ledger, data)
    fresh.clock.advance(data["timestamp"] - fresh.clock.now())

    assert _summary(fresh) == _summary(world)
    assert export_state(fresh.ledger) == export_state(world.ledger)


def test_restore_rejects_mismatched_snapshots(config):
    world = build_world(config)
    data = export_state(world.ledger)

    with pytest.raises(ValueError, match="version"):
        restore_state(world.ledger, {**data, "version": "0"})

    two_strategies = SimulationConfig(strategies=(StrategyConfig(), StrategyConfig(label="b", alloc_bps=5_00)))
    with pytest.raises(ValueError, match="participants"):
        restore_state(build_world(two_strategies).ledger, data)


def test_snapshot_files(cache_home, config):
    assert load_snapshot("missing") is None

    data = export_state(build_world(config).ledger)
    path = save_snapshot("first", data)
    assert path.parent == get_state_dir()
    assert path.parent.parent == cache_home
    assert load_snapshot("first") == json.loads(json.dumps(data))

    path.write_text("[]", encoding="utf-8")
    with pytest.raises(ValueError, match="corrupt"):
        load_snapshot("first")


def test_clear_state(cache_home, capsys):
    clear_state()
    assert "nothing to clear" in capsys.readouterr().err

    save_snapshot("x", {"participants": {}})
    clear_state()
    assert "cleared" in capsys.readouterr().err
    assert not (cache_home / ".leveraged_vaults_state").exists()
