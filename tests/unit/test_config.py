"""Unit tests for environment-driven settings."""
from src.pulse_core.config import EngineSettings, oauth_client_from_env


def test_defaults(monkeypatch):
    for name in (
        "PULSE_CACHE_TTL_SECONDS",
        "PULSE_CACHE_BACKEND",
        "PULSE_MAX_RETRIES",
        "PULSE_AVG_CPC_MODE",
        "PULSE_ASSUMED_CTR",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = EngineSettings.from_env()

    assert settings.cache_ttl_seconds == 900
    assert settings.cache_backend == "memory"
    assert settings.max_retries == 3
    assert settings.avg_cpc_mode == "estimated"
    assert settings.assumed_ctr == 0.025
    assert settings.rate_limit_max_delay == 30.0
    assert settings.transient_max_delay == 10.0


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("PULSE_CACHE_TTL_SECONDS", "60")
    monkeypatch.setenv("PULSE_CACHE_BACKEND", "Redis")
    monkeypatch.setenv("PULSE_MAX_RETRIES", "5")
    monkeypatch.setenv("PULSE_AVG_CPC_MODE", "actual")
    monkeypatch.setenv("PULSE_UNIT_TIMEOUT_SECONDS", "12.5")

    settings = EngineSettings.from_env()

    assert settings.cache_ttl_seconds == 60
    assert settings.cache_backend == "redis"
    assert settings.max_retries == 5
    assert settings.avg_cpc_mode == "actual"
    assert settings.unit_timeout_seconds == 12.5


def test_invalid_values_fall_back_to_defaults(monkeypatch, caplog):
    monkeypatch.setenv("PULSE_MAX_RETRIES", "lots")
    monkeypatch.setenv("PULSE_AVG_CPC_MODE", "guess")

    settings = EngineSettings.from_env()

    assert settings.max_retries == 3
    assert settings.avg_cpc_mode == "estimated"
    assert "Invalid PULSE_MAX_RETRIES" in caplog.text


def test_oauth_client_requires_both_values(monkeypatch):
    monkeypatch.setenv("AMAZON_CLIENT_ID", "id")
    monkeypatch.delenv("AMAZON_CLIENT_SECRET", raising=False)

    assert oauth_client_from_env("AMAZON_CLIENT_ID", "AMAZON_CLIENT_SECRET") is None

    monkeypatch.setenv("AMAZON_CLIENT_SECRET", "secret")
    config = oauth_client_from_env("AMAZON_CLIENT_ID", "AMAZON_CLIENT_SECRET")

    assert config.client_id == "id"
    assert config.client_secret == "secret"
