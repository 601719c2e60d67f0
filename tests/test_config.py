import pytest

from market_dashboard.config import Config, EngineConfig, _env_bool, _env_int, config


@pytest.fixture()
def restore_config():
    yield config
    config.reload()


def test_config_is_singleton():
    assert Config() is config


def test_engine_defaults():
    defaults = EngineConfig()
    assert defaults.max_depth == 20
    assert defaults.hierarchy_level_columns == 10
    assert defaults.to_dict()["cagr_decimals"] == 2


def test_env_int_falls_back_on_bad_input(monkeypatch):
    monkeypatch.setenv("MARKET_TEST_INT", "twenty")
    assert _env_int("MARKET_TEST_INT", 7) == 7

    monkeypatch.setenv("MARKET_TEST_INT", "12")
    assert _env_int("MARKET_TEST_INT", 7) == 12

    monkeypatch.delenv("MARKET_TEST_INT")
    assert _env_int("MARKET_TEST_INT", 7) == 7


@pytest.mark.parametrize("raw,expected", [("1", True), ("yes", True), ("off", False), ("", False)])
def test_env_bool(monkeypatch, raw, expected):
    monkeypatch.setenv("MARKET_TEST_FLAG", raw)
    assert _env_bool("MARKET_TEST_FLAG", not expected) is expected


def test_reload_reads_environment(restore_config):
    with pytest.MonkeyPatch.context() as mp:
        mp.setenv("MARKET_ENGINE_MAX_DEPTH", "5")
        mp.setenv("MARKET_CURRENCY", "EUR")
        mp.setenv("ENABLE_EXCEL_EXPORT", "false")

        config.reload()

        assert config.get_engine_config().max_depth == 5
        assert config.get_market_config().currency == "EUR"
        assert not config.is_feature_enabled("excel_export")


def test_reload_overrides(restore_config):
    config.reload({"cagr_decimals": 4, "unknown_setting": 1})

    assert config.get_engine_config().cagr_decimals == 4
    assert config.engine_config["cagr_decimals"] == 4
