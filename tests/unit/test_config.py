"""
Unit tests for Settings
"""
import pytest
from pydantic import ValidationError

from storefront_core.core.config import Settings


class TestSettings:
    """Validation and derived values"""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.api_v1_prefix == "/api/v1"
        assert settings.rate_limit_locale == "fr"
        assert settings.allowlisted_ips == {"127.0.0.1", "::1"}
        assert settings.effective_compression_threshold == 4000

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("RATE_LIMIT_LOCALE", "EN")
        monkeypatch.setenv("RATE_LIMIT_OVERRIDES", '{"BLOG_API": "60/minute"}')
        monkeypatch.setenv("CACHE_AGGRESSIVE_COMPRESSION", "true")

        settings = Settings(_env_file=None)

        assert settings.rate_limit_locale == "en"
        assert settings.rate_limit_overrides == {"BLOG_API": "60/minute"}
        assert settings.effective_compression_threshold == 2000

    def test_invalid_environment(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, environment="qa")

    def test_invalid_locale(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, rate_limit_locale="de")

    def test_log_level_normalized(self):
        assert Settings(_env_file=None, log_level="debug").log_level == "DEBUG"

    def test_allowlist_parsing(self):
        settings = Settings(_env_file=None, rate_limit_allowlist=" 10.0.0.1, ,192.0.2.4 ")

        assert settings.allowlisted_ips == {"10.0.0.1", "192.0.2.4"}

    def test_intervals_depend_on_environment(self):
        development = Settings(_env_file=None)
        production = Settings(_env_file=None, environment="production")

        assert development.effective_stats_interval == 600
        assert production.effective_stats_interval == 1800
        assert production.effective_cleanup_interval == 900
        assert production.is_production

    def test_explicit_interval_wins(self):
        settings = Settings(_env_file=None, environment="production", cache_stats_interval_seconds=5)

        assert settings.effective_stats_interval == 5

    def test_trusted_proxies_parsing(self):
        assert Settings(_env_file=None).trusted_proxy_ips == set()

        settings = Settings(_env_file=None, rate_limit_trusted_proxies="10.0.0.2, 10.0.0.3")

        assert settings.trusted_proxy_ips == {"10.0.0.2", "10.0.0.3"}
