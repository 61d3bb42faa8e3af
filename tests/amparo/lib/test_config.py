"""Tests for Settings.from_env (amparo/config.py)."""

from __future__ import annotations

import pytest

from amparo.config import DEFAULT_FAST_MODEL, Settings, normalize_database_url
from amparo.lib.exceptions import ConfigurationError


class TestNormalizeDatabaseUrl:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("postgres://u:p@db/amparo", "postgresql+asyncpg://u:p@db/amparo"),
            ("postgresql://u:p@db/amparo", "postgresql+asyncpg://u:p@db/amparo"),
            ("sqlite:///./amparo.db", "sqlite+aiosqlite:///./amparo.db"),
            ("postgresql+asyncpg://u:p@db/amparo", "postgresql+asyncpg://u:p@db/amparo"),
        ],
    )
    def test_rewrites_to_async_driver(self, url, expected):
        assert normalize_database_url(url) == expected


class TestFromEnv:
    def test_defaults_in_dev_mode(self):
        settings = Settings.from_env({"AMPARO_DEV_MODE": "1"})
        assert settings.dev_mode is True
        assert settings.master_secret
        assert settings.fast_model == DEFAULT_FAST_MODEL
        assert settings.fast_max_tokens == 1024
        assert settings.deep_max_tokens == 2048
        assert settings.completion_timeout == 60.0
        assert settings.max_message_length == 4000
        assert settings.redis_url is None
        assert settings.rate_limit_max_requests == 100
        assert settings.rate_limit_window_seconds == 900.0
        assert settings.chat_messages_per_minute == 30
        assert settings.analytics_salt == ""

    def test_missing_master_secret_outside_dev_mode(self):
        with pytest.raises(ConfigurationError):
            Settings.from_env({})

    def test_dev_mode_refused_in_production(self):
        with pytest.raises(ConfigurationError):
            Settings.from_env(
                {
                    "AMPARO_DEV_MODE": "1",
                    "AMPARO_ENVIRONMENT": "production",
                    "AMPARO_ENCRYPTION_MASTER_KEY": "k",
                }
            )

    def test_explicit_values(self):
        settings = Settings.from_env(
            {
                "AMPARO_ENVIRONMENT": "production",
                "AMPARO_ENCRYPTION_MASTER_KEY": "super-secret",
                "AMPARO_DATABASE_URL": "postgres://u:p@db/amparo",
                "REDIS_URL": "redis://cache:6379/0",
                "AMPARO_COMPLETION_TIMEOUT": "15",
                "AMPARO_CORS_ORIGINS": "https://a.example, https://b.example",
                "RATE_LIMIT_WINDOW_MS": "60000",
                "RATE_LIMIT_MAX_REQUESTS": "20",
                "AMPARO_CHAT_MESSAGES_PER_MINUTE": "5",
                "AMPARO_ANALYTICS_SALT": "pepper",
            }
        )
        assert settings.is_production
        assert settings.master_secret == "super-secret"
        assert settings.database_url == "postgresql+asyncpg://u:p@db/amparo"
        assert settings.redis_url == "redis://cache:6379/0"
        assert settings.completion_timeout == 15.0
        assert settings.cors_origins == ["https://a.example", "https://b.example"]
        assert (settings.rate_limit_window_seconds, settings.rate_limit_max_requests) == (60.0, 20)
        assert settings.chat_messages_per_minute == 5
        assert settings.analytics_salt == "pepper"

    def test_invalid_number(self):
        with pytest.raises(ConfigurationError):
            Settings.from_env({"AMPARO_DEV_MODE": "1", "AMPARO_COMPLETION_TIMEOUT": "soon"})
