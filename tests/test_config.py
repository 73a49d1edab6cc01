import pytest
from pydantic import ValidationError

from sbtc_monitor.config import ChainSettings, ServerSettings, Settings
from sbtc_monitor.monitor import MonitorConfig


def test_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    settings = Settings()

    assert settings.monitor.confirmation_threshold == 1
    assert settings.monitor.max_retries == 120
    assert settings.monitor.retry_interval_ms == 5000
    assert settings.monitor.initial_delay_ms == 1000
    assert settings.chain.base_url == "https://api.testnet.hiro.so"
    assert settings.webhook.url is None
    assert settings.database.url.startswith("sqlite")


def test_nested_env_overrides(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SBTC_MONITOR_MONITOR__MAX_RETRIES", "30")
    monkeypatch.setenv("SBTC_MONITOR_MONITOR__CONFIRMATION_THRESHOLD", "6")
    monkeypatch.setenv("SBTC_MONITOR_CHAIN__NETWORK", "mainnet")
    monkeypatch.setenv("SBTC_MONITOR_WEBHOOK__URL", "https://merchant.example/hook")
    monkeypatch.setenv("SBTC_MONITOR_WEBHOOK__SECRET", "s3cret")

    settings = Settings()

    assert settings.monitor.max_retries == 30
    assert settings.monitor.confirmation_threshold == 6
    assert settings.chain.base_url == "https://api.hiro.so"
    assert str(settings.webhook.url) == "https://merchant.example/hook"
    assert settings.webhook.secret.get_secret_value() == "s3cret"


def test_invalid_threshold_rejected(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SBTC_MONITOR_MONITOR__CONFIRMATION_THRESHOLD", "0")

    with pytest.raises(ValidationError):
        Settings()


def test_chain_network_mismatch_rejected():
    with pytest.raises(ValidationError, match="testnet API host"):
        ChainSettings(network="mainnet", api_url="https://api.testnet.hiro.so")
    with pytest.raises(ValidationError, match="mainnet API host"):
        ChainSettings(network="testnet", api_url="https://api.hiro.so")
    with pytest.raises(ValidationError):
        ChainSettings(network="devnet")


def test_custom_api_url_is_kept():
    chain = ChainSettings(network="testnet", api_url="http://localhost:3999/")

    assert chain.base_url == "http://localhost:3999"


def test_blank_service_name_rejected():
    with pytest.raises(ValidationError, match="OTEL_SERVICE_NAME"):
        ServerSettings(otel_service_name="  ")


@pytest.mark.parametrize(
    "field,value",
    [
        ("confirmation_threshold", 0),
        ("max_retries", 0),
        ("retry_interval_ms", -1),
        ("initial_delay_ms", -5),
    ],
)
def test_monitor_config_bounds(field, value):
    with pytest.raises(ValidationError):
        MonitorConfig(**{field: value})


def test_monitor_config_from_settings(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SBTC_MONITOR_WEBHOOK__URL", "https://merchant.example/hook")

    config = MonitorConfig.from_settings(Settings(), confirmation_threshold=3)

    assert config.confirmation_threshold == 3
    assert config.max_retries == 120
    assert config.webhook_url == "https://merchant.example/hook"


def test_shared_env_names_are_read(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("SBTC_MONITOR_DATABASE__URL", raising=False)
    monkeypatch.delenv("SBTC_MONITOR_CHAIN__API_URL", raising=False)
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db/x")
    monkeypatch.setenv("STACKS_API_URL", "http://localhost:3999")

    settings = Settings()

    assert settings.database.url == "postgresql://u:p@db/x"
    assert settings.chain.base_url == "http://localhost:3999"
    assert "database_url" not in settings.model_dump()


def test_prefixed_env_names_win_over_shared(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db/x")
    monkeypatch.setenv("SBTC_MONITOR_DATABASE__URL", "sqlite:///./prefixed.db")
    monkeypatch.setenv("STACKS_API_URL", "http://localhost:3999")
    monkeypatch.setenv("SBTC_MONITOR_CHAIN__API_URL", "http://stacks-node:3999")

    settings = Settings()

    assert settings.database.url == "sqlite:///./prefixed.db"
    assert settings.chain.base_url == "http://stacks-node:3999"


def test_shared_api_url_still_checked_against_network(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SBTC_MONITOR_CHAIN__NETWORK", "mainnet")
    monkeypatch.setenv("STACKS_API_URL", "https://api.testnet.hiro.so")

    with pytest.raises(ValidationError, match="testnet API host"):
        Settings()
