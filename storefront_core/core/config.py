"""
Configuration Management using Pydantic Settings
Loads configuration from environment variables with validation
"""
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Storefront Core", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    environment: str = Field(default="development", description="Environment: development, staging, production")

    # API Settings
    api_v1_prefix: str = Field(default="/api/v1", description="API version 1 prefix")

    # Cache
    cache_enabled: bool = Field(default=True, description="Enable the in-memory cache registry")
    cache_log_operations: bool = Field(default=False, description="Log every cache hit/miss/set at DEBUG")
    cache_compression_threshold: int = Field(default=4000, ge=0, description="Serialized size (bytes) above which values are compressed")
    cache_aggressive_compression: bool = Field(default=False, description="Use the lower 2000-byte threshold")
    cache_max_entry_fraction: float = Field(default=0.1, gt=0, le=1, description="Max share of an instance's byte budget one entry may take")
    cache_stats_interval_seconds: Optional[float] = Field(default=None, gt=0, description="Monitor interval; defaults to 30min in production, 10min otherwise")
    cache_max_tracked_versions: int = Field(default=10000, ge=1, description="Max entity versions remembered for unchanged-content detection")

    # Rate Limiting
    rate_limit_enabled: bool = Field(default=True, description="Enable request rate limiting")
    rate_limit_allowlist: str = Field(default="127.0.0.1,::1", description="Comma-separated IPs that bypass rate limiting")
    rate_limit_trusted_proxies: str = Field(default="", description="Comma-separated proxy IPs whose forwarded headers are trusted")
    rate_limit_max_cache_size: int = Field(default=10000, ge=1, description="Max tracked request windows")
    rate_limit_max_blocked: int = Field(default=1000, ge=1, description="Max tracked blocked IPs")
    rate_limit_max_suspicious: int = Field(default=5000, ge=1, description="Max tracked behaviour records")
    rate_limit_max_order_attempts: int = Field(default=2000, ge=1, description="Max tracked order attempt records")
    rate_limit_cleanup_interval_seconds: Optional[float] = Field(default=None, gt=0, description="Sweep interval; defaults to 15min in production, 10min otherwise")
    rate_limit_window_retention_seconds: float = Field(default=3600, gt=0, description="Idle request windows older than this are swept")
    rate_limit_suspicious_retention_seconds: float = Field(default=7200, gt=0, description="Idle behaviour records older than this are swept")
    rate_limit_order_retention_seconds: float = Field(default=3600, gt=0, description="Order attempt records older than this are swept")
    rate_limit_locale: str = Field(default="fr", description="Locale for rejection messages: fr, en")
    rate_limit_overrides: dict[str, str] = Field(default_factory=dict, description='Preset overrides, e.g. {"BLOG_API": "60/minute"}')

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = ["development", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.upper()

    @field_validator("rate_limit_locale")
    @classmethod
    def validate_locale(cls, v: str) -> str:
        allowed = ["fr", "en"]
        if v.lower() not in allowed:
            raise ValueError(f"rate_limit_locale must be one of {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def allowlisted_ips(self) -> set[str]:
        """Parsed allowlist (blank items dropped)"""
        return {ip.strip() for ip in self.rate_limit_allowlist.split(",") if ip.strip()}

    @property
    def trusted_proxy_ips(self) -> set[str]:
        return {ip.strip() for ip in self.rate_limit_trusted_proxies.split(",") if ip.strip()}

    @property
    def effective_compression_threshold(self) -> int:
        if self.cache_aggressive_compression:
            return min(self.cache_compression_threshold, 2000)
        return self.cache_compression_threshold

    @property
    def effective_stats_interval(self) -> float:
        if self.cache_stats_interval_seconds:
            return self.cache_stats_interval_seconds
        return 30 * 60 if self.is_production else 10 * 60

    @property
    def effective_cleanup_interval(self) -> float:
        if self.rate_limit_cleanup_interval_seconds:
            return self.rate_limit_cleanup_interval_seconds
        return 15 * 60 if self.is_production else 10 * 60


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
