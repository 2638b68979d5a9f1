import json

import pytest

from leveraged_vaults import _clear_state_entry_point
from leveraged_vaults.cli import main
from leveraged_vaults.config import SimulationConfig, load_config, parse_config
from leveraged_vaults.constants import CONFIG_ENV_VAR, MAX_UINT256


@pytest.fixture(autouse=True)
def cache_home(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    return tmp_path / "cache"


def test_empty_config_is_default():
    assert parse_config({}) == SimulationConfig()


def test_parse_config_converts_numbers():
    config = parse_config(
        {
            "periods": "0x10",
            "tvl_cap_units": None,
            "market": {"supply_apr_bps": "500"},
            "strategies": [{"label": "a", "alloc_bps": 4_000}, {"label": "b", "max_steps": "3"}],
            "deposits": [{"depositor": "carol", "units": 5}],
        }
    )
    assert config.periods == 16
    assert config.tvl_cap_units is None
    assert config.market.supply_apr_bps == 500
    assert [s.label for s in config.strategies] == ["a", "b"]
    assert config.strategies[1].leverage.max_steps == 3
    assert config.strategies[1].leverage.step_size == MAX_UINT256
    assert config.deposits[0].depositor == "carol"


@pytest.mark.parametrize(
    "data,message",
    [
        ([], "JSON object"),
        ({"unknown": 1}, "unknown keys"),
        ({"market": {"collateral": 1}}, "market"),
        ({"strategies": [{"label": "x"}, {"label": "x"}]}, "unique"),
        ({"periods": -1}, "periods"),
        ({"period_seconds": 0}, "period_seconds"),
    ],
)
def test_parse_config_errors(data, message):
    with pytest.raises(ValueError, match=message):
        parse_config(data)


def test_load_config_from_environment(tmp_path, monkeypatch):
    path = tmp_path / "sim.json"
    path.write_text(json.dumps({"periods": 7}), encoding="utf-8")

    assert load_config() == SimulationConfig()
    monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
    assert load_config().periods == 7
    assert load_config(path).periods == 7


def test_simulate_prints_report(capsys):
    assert main(["simulate", "--periods", "2", "--no-progress"]) == 0

    out = capsys.readouterr().out
    assert "HARVEST PERIODS" in out
    assert "ANALYTICS SUMMARY" in out
    assert "USDC Leveraged Vault" in out


def test_simulate_rejects_bad_arguments(tmp_path, capsys):
    assert main(["simulate", "--periods", "-1", "--no-progress"]) == 2
    assert main(["simulate", "--config", str(tmp_path / "missing.json")]) == 2
    assert "Error" in capsys.readouterr().err


def test_save_and_inspect_snapshot(cache_home, capsys):
    assert main(["simulate", "--periods", "2", "--no-progress", "--save", "run1"]) == 0
    assert (cache_home / ".leveraged_vaults_state" / "run1.json").exists()
    capsys.readouterr()

    assert main(["inspect", "run1"]) == 0
    out = capsys.readouterr().out
    assert "USDC Leveraged Vault" in out
    assert "Strategy: leverage" in out

    assert main(["inspect", "nope"]) == 1


def test_inspect_with_mismatched_config(tmp_path, capsys):
    assert main(["simulate", "--periods", "1", "--no-progress", "--save", "run2"]) == 0
    config = tmp_path / "two.json"
    config.write_text(json.dumps({"strategies": [{"label": "a", "alloc_bps": 10}, {"label": "b", "alloc_bps": 10}]}))

    assert main(["inspect", "run2", "--config", str(config)]) == 2
    assert "does not match" in capsys.readouterr().err


def test_clear_state_entry_point(cache_home, capsys):
    assert main(["simulate", "--periods", "1", "--no-progress", "--save", "run3"]) == 0
    with pytest.raises(SystemExit) as exc:
        _clear_state_entry_point()
    assert exc.value.code == 0
    assert not cache_home.joinpath(".leveraged_vaults_state").exists()
