from pathlib import Path

import pytest
from pydantic import ValidationError

from concierge_relay.config.settings import Settings, get_settings, validate_settings
from concierge_relay.errors import ConfigurationError

from conftest import TEST_JWT_SECRET


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "Production")
    monkeypatch.setenv("PORT", "9000")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("IDLE_TIMEOUT_SECONDS", "30")
    monkeypatch.setenv("LOG_FORMAT", "JSON")
    monkeypatch.setenv("TENANT_CONFIG_PATH", "tenants.json")
    monkeypatch.setenv("TWILIO_ACCOUNT_SID", "")

    settings = Settings(_env_file=None)

    assert settings.environment == "production"
    assert settings.port == 9000
    assert settings.openai_api_key == "sk-test"
    assert settings.idle_timeout_seconds == 30.0
    assert settings.log_format == "json"
    assert settings.tenant_config_path == Path("tenants.json")
    assert settings.twilio_account_sid is None
    assert settings.twilio_mock_mode is True


def test_renamed_environment_variables(monkeypatch):
    monkeypatch.setenv("OPENAI_REALTIME_URL", "wss://realtime.test/v1")
    monkeypatch.setenv("OPENAI_REALTIME_MODEL", "model-x")
    monkeypatch.setenv("REALTIME_VOICE", "echo")
    monkeypatch.setenv("realtime_temperature", "0.6")

    settings = Settings(_env_file=None)

    assert settings.realtime_url == "wss://realtime.test/v1"
    assert settings.realtime_model == "model-x"
    assert settings.voice == "echo"
    assert settings.temperature == 0.6


def test_settings_from_env_file(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("JWT_SECRET=from-file\nREALTIME_VOICE=shimmer\nUNRELATED=1\n")

    settings = Settings(_env_file=env_file)

    assert settings.jwt_secret == "from-file"
    assert settings.voice == "shimmer"


def test_invalid_temperature_rejected(monkeypatch):
    monkeypatch.setenv("REALTIME_TEMPERATURE", "3.5")

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.environment == "development"
    assert settings.voice == "alloy"
    assert settings.idle_timeout_seconds == 60.0
    assert settings.jwt_algorithms == ["HS256"]


def test_get_settings_is_cached():
    get_settings.cache_clear()
    try:
        assert get_settings() is get_settings()
    finally:
        get_settings.cache_clear()


def test_production_requires_secrets():
    with pytest.raises(ConfigurationError) as exc_info:
        validate_settings(Settings(_env_file=None, environment="production"))

    assert "OPENAI_API_KEY" in str(exc_info.value)
    assert "JWT_SECRET" in str(exc_info.value)


def test_production_rejects_short_jwt_secret():
    with pytest.raises(ConfigurationError, match="at least 32"):
        validate_settings(
            Settings(_env_file=None, environment="production", openai_api_key="sk", jwt_secret="short")
        )


def test_production_with_secrets_passes():
    settings = Settings(
        _env_file=None, environment="production", openai_api_key="sk", jwt_secret=TEST_JWT_SECRET
    )

    assert validate_settings(settings) is settings


def test_development_gets_temporary_jwt_secret():
    settings = Settings(_env_file=None, environment="development")

    validated = validate_settings(settings)

    assert settings.jwt_secret is None
    assert len(validated.jwt_secret) == 128
