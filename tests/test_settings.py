import tempfile
from pathlib import Path
from typing import Any

import pytest
from pydantic import ValidationError

from chatrelay.core.exceptions import (
    ConfigError,
    InvalidMaxTokensError,
    InvalidModelError,
    InvalidTemperatureError,
    InvalidTimeoutError,
    MissingAPIKeyError,
    MissingEndpointError,
    UnsupportedModelError,
)
from chatrelay.core.settings import Settings, parse_duration


def test_defaults(settings: Settings) -> None:
    assert settings.chatbot_model == "free"
    assert settings.chatbot_timeout == 30.0
    assert settings.chatbot_max_tokens == 256
    assert settings.chatbot_temperature == 0.7
    assert settings.rate_limit.requests_per_minute == 10
    assert settings.rate_limit.burst_size == 5
    assert settings.rate_limit.window == 60.0
    assert settings.content_filter.enabled is True
    assert settings.content_filter.aggression_patterns == ["hate", "kill", "stupid", "idiot"]
    assert settings.content_filter.profanities == []
    assert settings.openai_endpoint == "https://api.openai.com/v1/chat/completions"
    settings.validate_config()


def test_settings_reads_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHATBOT_MODEL", "OpenAI")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("CHATBOT_TIMEOUT", "1m30s")
    monkeypatch.setenv("RATE_LIMIT_WINDOW", "500ms")
    monkeypatch.setenv("FILTER_PROFANITIES", "darn, heck ,")
    monkeypatch.setenv("FILTER_ENABLED", "false")

    s = Settings(_env_file=None)

    assert s.chatbot_model == "openai"
    assert s.chatbot_timeout == 90.0
    assert s.rate_limit_window == pytest.approx(0.5)
    assert s.filter_profanities == ["darn", "heck"]
    assert s.content_filter.enabled is False
    cfg = s.provider_config()
    assert cfg.api_key == "sk-test"
    assert cfg.model == "gpt-4o"
    s.validate_config()


def test_settings_reads_env_file() -> None:
    with tempfile.TemporaryDirectory() as tmpdir:
        env_path = Path(tmpdir) / ".env"
        env_path.write_text(
            "CHATBOT_MODEL=anthropic\n"
            "ANTHROPIC_API_KEY=test-from-file\n"
            "REDIS__ENABLED=true\n"
            "REDIS__URL=redis://localhost:6379/0\n"
        )

        s = Settings(_env_file=env_path)

        assert s.chatbot_model == "anthropic"
        assert s.provider_config().api_key == "test-from-file"
        assert s.redis.enabled is True
        assert s.redis.url == "redis://localhost:6379/0"


@pytest.mark.parametrize(
    ("overrides", "error"),
    [
        ({"chatbot_model": ""}, InvalidModelError),
        ({"chatbot_timeout": 0}, InvalidTimeoutError),
        ({"chatbot_max_tokens": 0}, InvalidMaxTokensError),
        ({"chatbot_temperature": -0.01}, InvalidTemperatureError),
        ({"chatbot_temperature": 2.01}, InvalidTemperatureError),
        ({"chatbot_model": "mistral"}, UnsupportedModelError),
        ({"chatbot_model": "openai"}, MissingAPIKeyError),
        ({"chatbot_model": "gemini"}, MissingAPIKeyError),
        ({"chatbot_model": "xai", "xai_api_key": "k", "xai_endpoint": ""}, MissingEndpointError),
        ({"chatbot_model": "ollama", "ollama_endpoint": ""}, MissingEndpointError),
    ],
)
def test_validate_config_rejects(make_settings: Any, overrides: dict[str, Any], error: type) -> None:
    s = make_settings(**overrides)
    with pytest.raises(error) as exc_info:
        s.validate_config()
    assert isinstance(exc_info.value, ConfigError)
    assert exc_info.value.config_kind


@pytest.mark.parametrize("temperature", [0.0, 2.0])
def test_validate_config_temperature_bounds_inclusive(make_settings: Any, temperature: float) -> None:
    make_settings(chatbot_temperature=temperature).validate_config()


def test_max_tokens_one_is_valid(make_settings: Any) -> None:
    make_settings(chatbot_max_tokens=1).validate_config()


def test_ollama_needs_no_key(make_settings: Any) -> None:
    make_settings(chatbot_model="ollama").validate_config()


@pytest.mark.parametrize(
    ("value", "seconds"),
    [
        ("30s", 30.0),
        ("1m", 60.0),
        ("1m30s", 90.0),
        ("500ms", 0.5),
        ("1h", 3600.0),
        ("2.5", 2.5),
        (45, 45.0),
    ],
)
def test_parse_duration(value: Any, seconds: float) -> None:
    assert parse_duration(value) == pytest.approx(seconds)


@pytest.mark.parametrize("value", ["", "abc", "10x", "1m foo", True])
def test_parse_duration_rejects(value: Any) -> None:
    with pytest.raises(ValueError):
        parse_duration(value)


def test_bad_duration_env_is_validation_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHATBOT_TIMEOUT", "soon")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)
