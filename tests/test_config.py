from decimal import Decimal

from ostrich_races import config


def test_nested_keys_come_from_the_balance_file():
    assert config.get_config("race.tick_ms") == 16
    assert config.get_config("exotics.superfecta") == 200


def test_missing_key_falls_back_to_default():
    assert config.get_config("race.no_such_key", 42) == 42
    assert config.get_config("race.tick_ms.deeper", "x") == "x"


def test_money_values_are_exact_decimals():
    assert config.get_money("economy.place_multiplier", 0) == Decimal("0.4")
    assert config.get_money("economy.missing_amount", 1000000) == Decimal("1000000")


def test_unparseable_money_uses_default(monkeypatch):
    monkeypatch.setattr(config, "BALANCE_CONFIG", {"economy": {"bailout_amount": "lots"}})
    assert config.get_money("economy.bailout_amount", 500) == Decimal("500")


def test_no_config_loaded_means_defaults(monkeypatch):
    monkeypatch.setattr(config, "BALANCE_CONFIG", None)
    assert config.get_config("race.tick_ms", 17) == 17


def test_load_config_reports_missing_and_broken_files(tmp_path):
    assert config.load_config(str(tmp_path / "absent.json")) is None

    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    assert config.load_config(str(broken)) is None

    good = tmp_path / "good.json"
    good.write_text('{"race": {"tick_ms": 20}}')
    assert config.load_config(str(good)) == {"race": {"tick_ms": 20}}
