"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Settings are grouped by concern (upstream, compliance, rate limit, cache,
retry, logging) so each component can be built from its own slice.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and not os.getenv("TESTING"):
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class UpstreamSettings(BaseSettings):
    """Lead-retrieval upstream endpoint configuration."""

    base_url: str = Field(
        "https://mapi.indiamart.com/wservce/crm/crmListing/v2/",
        description="Lead listing endpoint URL",
    )
    crm_key: str | None = Field(
        None,
        description="CRM key sent as glusr_crm_key (required to reach the upstream)",
    )
    timeout_seconds: float = Field(
        30.0,
        description="Request timeout in seconds",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="UPSTREAM_",
        case_sensitive=False,
    )


class ComplianceSettings(BaseSettings):
    """Date-range limits enforced by the upstream."""

    max_span_days: int = Field(
        7,
        description="Maximum number of days between start and end",
        ge=1,
    )
    max_history_days: int = Field(
        365,
        description="Maximum age in days of the requested start bound",
        ge=1,
    )
    warn_history_days: int = Field(
        300,
        description="Age in days after which availability warnings are attached",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="COMPLIANCE_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Outbound call cadence policy mirrored from the upstream."""

    min_interval_seconds: float = Field(
        300.0,
        description="Minimum time between two upstream calls",
        ge=0,
    )
    max_per_minute: int = Field(
        5,
        description="Maximum upstream calls in any trailing 60 seconds",
        ge=1,
    )
    max_per_hour: int = Field(
        20,
        description="Maximum upstream calls in any trailing hour",
        ge=1,
    )
    block_duration_seconds: float = Field(
        900.0,
        description="Suspension applied when the hourly ceiling is crossed",
        gt=0,
    )
    state_file: str | None = Field(
        None,
        description="Optional JSON file used to persist call history across restarts",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class CacheSettings(BaseSettings):
    """Response cache sizing and freshness."""

    max_entries: int = Field(
        1000,
        description="Maximum number of cached responses",
        ge=1,
    )
    default_ttl_seconds: float = Field(
        300.0,
        description="Time-to-live applied to cached responses",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        case_sensitive=False,
    )


class RetrySettings(BaseSettings):
    """Retry and backoff policy for failed upstream attempts."""

    max_retries: int = Field(
        3,
        description="Maximum number of transport attempts per logical request",
        ge=1,
    )
    max_delay_seconds: float = Field(
        300.0,
        description="Upper bound for a single backoff delay",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="RETRY_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether API key authentication is required",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid API keys for authentication",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log output: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated log files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    upstream: UpstreamSettings = Field(default_factory=UpstreamSettings)
    compliance: ComplianceSettings = Field(default_factory=ComplianceSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    app: AppSettings = Field(default_factory=AppSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
