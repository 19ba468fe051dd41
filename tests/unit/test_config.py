from pathlib import Path

import pytest
from pydantic import ValidationError

from docgen.core.config import DEFAULT_CORS_ORIGINS
from docgen.core.config import Settings
from docgen.core.config import settings


def test_config_defaults():
    # Ensure default settings have expected types and default values
    assert settings.history_size == 10
    assert settings.default_context_tier == "enriched"
    assert settings.chars_per_token == 3.5
    assert isinstance(settings.template_dir, Path)
    assert (settings.template_dir / "pmbok-project-charter.json").is_file()
    assert [b.backend_id for b in settings.backends] == ["openrouter"]


def test_helper_configs_reflect_settings():
    app_settings = Settings(
        retry_max_attempts=5,
        retry_base_delay_ms=200,
        rate_limit_per_hour=50,
        circuit_reset_timeout_s=5,
    )
    policy = app_settings.retry_policy()
    assert policy.max_retries == 5
    assert policy.base_delay_ms == 200
    assert policy.backoff_multiplier == 2.0
    assert app_settings.rate_limit_config().requests_per_hour == 50
    assert app_settings.circuit_breaker_config().reset_timeout_s == 5


def test_context_tier_is_validated():
    assert Settings(default_context_tier=" FULL ").default_context_tier == "full"
    with pytest.raises(ValidationError):
        Settings(default_context_tier="huge")


def test_cors_origins_from_comma_separated_string():
    app_settings = Settings(cors_allowed_origins="https://a.example, https://b.example")
    assert app_settings.cors_allowed_origins == ["https://a.example", "https://b.example"]
    assert Settings(cors_allowed_origins=None).cors_allowed_origins == DEFAULT_CORS_ORIGINS


def test_backends_from_environment(monkeypatch):
    monkeypatch.setenv(
        "BACKENDS",
        '[{"backend_id": "azure", "base_url": "https://azure.example/openai", "model_id": "gpt-4o", "max_context_tokens": 128000}]',
    )
    backend = Settings().backends[0]
    assert backend.backend_id == "azure"
    assert backend.max_context_tokens == 128000
    assert backend.is_available is True
