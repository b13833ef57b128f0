"""
Unit tests for environment-driven settings.
"""

import pytest

from traffic_monitor.config import (
    BACKEND_FILE,
    BACKEND_REDIS,
    DEFAULT_TRACKED_ENDPOINTS,
    Settings,
    get_settings,
)

ENV_VARS = (
    "TRAFFIC_BACKEND",
    "REDIS_URL",
    "TRAFFIC_LOG_FILE",
    "TRAFFIC_MAX_LOGS",
    "TRAFFIC_TRIM_SLACK",
    "TRAFFIC_WRITE_MODE",
    "TRAFFIC_TRACKED_ENDPOINTS",
    "TRAFFIC_FORWARDED_FOR_INDEX",
    "TRAFFIC_BOT_HEADER",
    "TRAFFIC_DEFAULT_QUERY_LIMIT",
    "TRAFFIC_COMBINED_RECENT",
    "LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


class TestFromEnv:
    def test_defaults(self, clean_env):
        settings = Settings.from_env()

        assert settings.backend == "auto"
        assert settings.resolved_backend == BACKEND_FILE
        assert settings.max_logs == 1000
        assert settings.log_ttl_seconds == 1800
        assert settings.counter_ttl_seconds == 900
        assert settings.tracked_endpoints == DEFAULT_TRACKED_ENDPOINTS
        assert settings.write_mode == "atomic"
        assert settings.validate() == []

    def test_overrides(self, clean_env):
        clean_env.setenv("REDIS_URL", "redis://localhost:6379/0")
        clean_env.setenv("TRAFFIC_MAX_LOGS", "50")
        clean_env.setenv("TRAFFIC_WRITE_MODE", "Sequential")
        clean_env.setenv("TRAFFIC_TRACKED_ENDPOINTS", "/api/a, /api/b,")
        clean_env.setenv("TRAFFIC_FORWARDED_FOR_INDEX", "1")
        clean_env.setenv("TRAFFIC_BOT_HEADER", "X-Bot")
        clean_env.setenv("LOG_LEVEL", "debug")

        settings = Settings.from_env()

        assert settings.resolved_backend == BACKEND_REDIS
        assert settings.max_logs == 50
        assert settings.write_mode == "sequential"
        assert settings.tracked_endpoints == ("/api/a", "/api/b")
        assert settings.forwarded_for_index == 1
        assert settings.bot_header == "x-bot"
        assert settings.log_level == "DEBUG"

    def test_query_defaults_from_env(self, clean_env):
        clean_env.setenv("TRAFFIC_DEFAULT_QUERY_LIMIT", "25")
        clean_env.setenv("TRAFFIC_COMBINED_RECENT", "5")

        settings = Settings.from_env()

        assert settings.default_query_limit == 25
        assert settings.combined_recent == 5

    def test_non_integer_is_rejected(self, clean_env):
        clean_env.setenv("TRAFFIC_MAX_LOGS", "lots")

        with pytest.raises(ValueError, match="TRAFFIC_MAX_LOGS"):
            Settings.from_env()


class TestValidate:
    def test_redis_backend_requires_url(self):
        errors = Settings(backend="redis").validate()

        assert any("REDIS_URL" in e for e in errors)

    def test_reports_each_bad_value(self):
        settings = Settings(
            backend="memcached",
            write_mode="eventually",
            max_logs=0,
            trim_slack=-1,
            tracked_endpoints=(),
        )

        errors = settings.validate()

        assert len(errors) == 5

    def test_charted_endpoints_must_be_tracked(self):
        errors = Settings(tracked_endpoints=("/api/auth/login", "/api/products")).validate()

        assert errors == ["tracked endpoints must include /api/checkout"]

    def test_query_defaults_must_be_positive(self):
        errors = Settings(default_query_limit=0, combined_recent=-1).validate()

        assert len(errors) == 2

    def test_get_settings_raises_on_invalid_env(self, clean_env):
        clean_env.setenv("TRAFFIC_BACKEND", "redis")

        with pytest.raises(ValueError, match="Invalid configuration"):
            get_settings()

    def test_get_settings_is_cached(self, clean_env):
        assert get_settings() is get_settings()
