"""Unit tests for ingest settings.

Test Strategy:
1. Test defaults for limits, TTLs and composite switches
2. Test environment overrides
3. Test derived rate limit configs and TTLs

Each test follows the pattern:
- Given: Settings built without an .env file
- When: A setting or derived value is read
- Then: It matches the documented default or override
"""
import pytest

from statline.core.config import Settings
from statline.services.ingest.rate_limiter import RateLimitConfig


class TestSettingsDefaults:
    """Test suite for default values."""

    def test_source_limits(self, test_settings):
        """Should default to a faster ESPN and a polite PFR."""
        settings = test_settings()

        assert settings.ESPN_REQUESTS_PER_SECOND == 5.0
        assert settings.ESPN_MAX_CONCURRENT == 3
        assert settings.PFR_REQUESTS_PER_SECOND == 1.0
        assert settings.PFR_MAX_CONCURRENT == 1
        assert settings.LIMITER_MAX_RETRIES == 3

    def test_composite_switches(self, test_settings):
        """Should enable fallback and disable merge by default."""
        settings = test_settings()

        assert settings.COMPOSITE_ENABLE_FALLBACK is True
        assert settings.COMPOSITE_ENABLE_MERGE is False
        assert settings.CURRENT_SEASON_OVERRIDE is None
        assert settings.USE_STALE_CACHE_ON_ERROR is True

    def test_user_agent_identifies_client(self, test_settings):
        """Should send an honest identifying User-Agent."""
        assert test_settings().USER_AGENT.startswith("StatLine/")

    def test_environment_helpers(self, test_settings):
        """Should report the configured environment."""
        assert test_settings().is_test()
        assert test_settings(ENVIRONMENT="production").is_production()


class TestSettingsOverrides:
    """Test suite for environment variable overrides."""

    def test_env_var_override(self, monkeypatch):
        """Should read upper-case environment variables."""
        monkeypatch.setenv("PFR_MAX_BACKOFF_MS", "90000")
        monkeypatch.setenv("CURRENT_SEASON_OVERRIDE", "2023")

        settings = Settings(_env_file=None)

        assert settings.PFR_MAX_BACKOFF_MS == 90000
        assert settings.CURRENT_SEASON_OVERRIDE == 2023


class TestDerivedValues:
    """Test suite for rate_limit_config() and cache_ttl_ms()."""

    def test_rate_limit_config(self, test_settings):
        """Should build a RateLimitConfig from the source's settings."""
        config = test_settings().rate_limit_config("pfr")

        assert config == RateLimitConfig(
            requests_per_second=1.0,
            max_concurrent=1,
            base_backoff_ms=2000,
            max_backoff_ms=60000,
            max_retries=3,
        )

    def test_unknown_source(self, test_settings):
        """Should refuse sources without configured limits."""
        with pytest.raises(ValueError):
            test_settings().rate_limit_config("nba")

    def test_cache_ttl_ms(self, test_settings):
        """Should convert TTL hours to milliseconds."""
        settings = test_settings()

        assert settings.cache_ttl_ms("in_progress") == 60 * 60 * 1000
        assert settings.cache_ttl_ms("historical") == 7 * 24 * 60 * 60 * 1000
        with pytest.raises(ValueError):
            settings.cache_ttl_ms("forever")
