"""Unit tests for configuration management."""

import os

import pytest

from crisper.utils.config import Config


CONFIG_VARS = [
    "GEMINI_API_KEY",
    "GEMINI_MODEL",
    "DEPLOYMENT_MODE",
    "PROXY_PREFIX",
    "ALLOWED_ORIGINS",
    "ALLOWED_HOST_PATTERNS",
    "TRUST_FORWARDED_HEADERS",
    "RATE_LIMIT_WINDOW_SECONDS",
    "GENERATE_MAX_REQUESTS",
    "ANALYZE_MAX_REQUESTS",
    "MAX_PROMPT_CHARS",
    "MAX_IMAGE_BASE64_BYTES",
    "KEY_EXPIRY_MINUTES",
    "KEY_DERIVATION_ITERATIONS",
    "COMPRESS_IMG",
    "UPSTREAM_TIMEOUT_SECONDS",
    "PREFERENCES_FILE",
    "RECENT_INGREDIENTS_LIMIT",
    "PORT",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in CONFIG_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestConfigInitialization:
    """Test Config class initialization and environment variable loading."""

    def test_config_loads_default_values(self, clean_env):
        """Test that Config uses default values when env vars not set."""
        config = Config()

        assert config.GEMINI_API_KEY == ""
        assert config.GEMINI_MODEL == "gemini-2.0-flash"
        assert config.DEPLOYMENT_MODE == "development"
        assert config.PROXY_PREFIX == "/api"
        assert config.ALLOWED_ORIGINS == []
        assert config.ALLOWED_HOST_PATTERNS == ["crisper*.vercel.app"]
        assert config.TRUST_FORWARDED_HEADERS is True
        assert config.RATE_LIMIT_WINDOW_SECONDS == 60
        assert config.GENERATE_MAX_REQUESTS == 10
        assert config.ANALYZE_MAX_REQUESTS == 5
        assert config.MAX_PROMPT_CHARS == 10000
        assert config.MAX_IMAGE_BASE64_BYTES == 7 * 1024 * 1024
        assert config.KEY_EXPIRY_MINUTES == 30
        assert config.KEY_DERIVATION_ITERATIONS == 100000
        assert config.PREFERENCES_FILE.endswith(os.path.join(".crisper", "preferences.json"))
        assert config.RECENT_INGREDIENTS_LIMIT == 20
        assert config.PORT == 7777
        assert config.is_production is False

    def test_config_loads_from_environment(self, clean_env):
        """Test that Config loads and converts values from environment variables."""
        clean_env.setenv("DEPLOYMENT_MODE", "Production")
        clean_env.setenv("ALLOWED_ORIGINS", "https://crisper.example.com, https://www.crisper.example.com")
        clean_env.setenv("GENERATE_MAX_REQUESTS", "20")
        clean_env.setenv("TRUST_FORWARDED_HEADERS", "false")
        clean_env.setenv("UPSTREAM_TIMEOUT_SECONDS", "12.5")

        config = Config()

        assert config.DEPLOYMENT_MODE == "production"
        assert config.is_production is True
        assert config.ALLOWED_ORIGINS == ["https://crisper.example.com", "https://www.crisper.example.com"]
        assert config.GENERATE_MAX_REQUESTS == 20
        assert config.TRUST_FORWARDED_HEADERS is False
        assert config.UPSTREAM_TIMEOUT_SECONDS == 12.5

    def test_bool_parsing_accepts_common_spellings(self, clean_env):
        for value, expected in [("true", True), ("1", True), ("YES", True), ("false", False), ("0", False)]:
            clean_env.setenv("COMPRESS_IMG", value)
            assert Config().COMPRESS_IMG is expected


class TestConfigValidation:
    """Test Config validation logic."""

    def test_validate_passes_without_gemini_key(self, clean_env):
        """A missing server key is reported per request, not at startup."""
        Config().validate()

    @pytest.mark.parametrize(
        "name, value, message",
        [
            ("DEPLOYMENT_MODE", "staging", "DEPLOYMENT_MODE"),
            ("PROXY_PREFIX", "api", "PROXY_PREFIX"),
            ("RATE_LIMIT_WINDOW_SECONDS", "0", "RATE_LIMIT_WINDOW_SECONDS"),
            ("ANALYZE_MAX_REQUESTS", "0", "ANALYZE_MAX_REQUESTS"),
            ("MAX_PROMPT_CHARS", "0", "MAX_PROMPT_CHARS"),
            ("KEY_EXPIRY_MINUTES", "0", "KEY_EXPIRY_MINUTES"),
            ("KEY_DERIVATION_ITERATIONS", "10", "KEY_DERIVATION_ITERATIONS"),
            ("UPSTREAM_TIMEOUT_SECONDS", "0", "UPSTREAM_TIMEOUT_SECONDS"),
            ("RECENT_INGREDIENTS_LIMIT", "0", "RECENT_INGREDIENTS_LIMIT"),
        ],
    )
    def test_validate_rejects_invalid_values(self, clean_env, name, value, message):
        clean_env.setenv(name, value)

        with pytest.raises(ValueError) as exc:
            Config().validate()
        assert message in str(exc.value)

    def test_non_numeric_value_fails_on_load(self, clean_env):
        clean_env.setenv("PORT", "not-a-number")

        with pytest.raises(ValueError):
            Config()
