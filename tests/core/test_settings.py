from __future__ import annotations

import pytest

from core.settings import Settings, get_settings


def test_defaults_match_bridge_limits(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("BRIDGE_MAX_POSITIONS", "BRIDGE_MAX_TRADES", "BRIDGE_MAX_STRESS_EVENTS", "PORT"):
        monkeypatch.delenv(key, raising=False)

    settings = Settings(_env_file=None)

    assert (settings.max_positions, settings.max_trades, settings.max_stress_events) == (1000, 5000, 500)
    assert settings.freshness_window_seconds == 300
    assert settings.port == 3000


def test_env_overrides_and_normalisation(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BRIDGE_AUTH_TOKEN", "secret")
    monkeypatch.setenv("BRIDGE_MAX_TRADES", "10")
    monkeypatch.setenv("API_BASE_URL", "https://api.example/")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings(_env_file=None)

    assert settings.bridge_auth_token == "secret"
    assert settings.max_trades == 10
    assert settings.api_base_url == "https://api.example"
    assert settings.log_level == "DEBUG"


def test_oauth_credentials_flag(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CLIENT_ID", "id")
    monkeypatch.setenv("CLIENT_SECRET", "secret")
    monkeypatch.delenv("ACCESS_TOKEN", raising=False)

    assert not Settings(_env_file=None).has_oauth_credentials

    monkeypatch.setenv("ACCESS_TOKEN", "token")
    assert Settings(_env_file=None).has_oauth_credentials


def test_get_settings_is_cached_until_cleared(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BRIDGE_MAX_TRADES", "10")
    get_settings.cache_clear()

    first = get_settings()
    monkeypatch.setenv("BRIDGE_MAX_TRADES", "20")

    assert get_settings() is first
    assert first.max_trades == 10

    get_settings.cache_clear()
    assert get_settings().max_trades == 20
    get_settings.cache_clear()
