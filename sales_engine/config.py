"""
Centralized configuration for the sales dashboard engine.

This module provides a single source of truth for all configuration values.
Configuration is loaded from environment variables with sensible defaults.

Usage:
    from sales_engine.config import config

    page_size = config.fetch.page_size
    tz_name = config.calendar.business_timezone
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw.strip() else default
    except ValueError:
        return default


@dataclass(frozen=True)
class SourceConfig:
    """Hosted relational store (PostgREST) configuration."""

    url: str = field(default_factory=lambda: os.getenv("SUPABASE_URL", "").rstrip("/"))
    api_key: str = field(default_factory=lambda: os.getenv("SUPABASE_SERVICE_KEY", ""))
    table: str = field(default_factory=lambda: os.getenv("ORDERS_TABLE", "orders"))
    request_timeout: float = 30.0


@dataclass(frozen=True)
class FetchConfig:
    """Pagination limits.

    Inherited defaults with no documented derivation; revisit before
    treating them as tuned values.
    """

    page_size: int = 1000
    count_trust_threshold: int = 50_000
    chart_max_records: int = 200_000
    export_max_records: int = 1_000_000


@dataclass(frozen=True)
class CalendarConfig:
    """Business calendar configuration."""

    business_timezone: str = field(
        default_factory=lambda: os.getenv("BUSINESS_TIMEZONE", "America/Sao_Paulo")
    )
    # Fixed start of the "30d" chart window (month, day)
    chart_epoch_month: int = 11
    chart_epoch_day: int = 3


@dataclass(frozen=True)
class CacheConfig:
    """Persisted sales cache configuration."""

    cache_key: str = "sales_data_cache_v1"
    directory: Path = field(
        default_factory=lambda: Path(os.getenv("SALES_CACHE_DIR", "data/cache"))
    )
    retention_days: int = 90
    fallback_retention_days: int = 30
    max_bytes: int = field(
        default_factory=lambda: _env_int("SALES_CACHE_MAX_BYTES", 5 * 1024 * 1024)
    )


@dataclass(frozen=True)
class OverrideConfig:
    """Manual order date corrections."""

    path: Optional[str] = field(
        default_factory=lambda: os.getenv("MANUAL_OVERRIDES_PATH") or None
    )


@dataclass(frozen=True)
class WebConfig:
    """Dashboard API configuration."""

    host: str = field(default_factory=lambda: os.getenv("WEB_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: _env_int("WEB_PORT", 8080))
    rate_limit_per_minute: int = 30


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""

    version: str = "1.0.0"
    currency: str = "BRL"
    source: SourceConfig = field(default_factory=SourceConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    overrides: OverrideConfig = field(default_factory=OverrideConfig)
    web: WebConfig = field(default_factory=WebConfig)


# Global config instance
config = AppConfig()


# ─── Convenience Exports ──────────────────────────────────────────────────────
VERSION = config.version
BUSINESS_TIMEZONE = config.calendar.business_timezone
SALES_CACHE_KEY = config.cache.cache_key
PAGE_SIZE = config.fetch.page_size
COUNT_TRUST_THRESHOLD = config.fetch.count_trust_threshold
CHART_MAX_RECORDS = config.fetch.chart_max_records
EXPORT_MAX_RECORDS = config.fetch.export_max_records


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def validate_config(app_config: AppConfig = config, require_source: bool = True) -> None:
    """
    Validate that all required configuration is present.

    Call this on application startup to fail fast with clear error messages
    instead of an empty dashboard with no explanation.

    Args:
        app_config: Configuration to validate (defaults to the global one)
        require_source: If True, validate record source URL and key

    Raises:
        ConfigurationError: If required configuration is missing
    """
    errors = []

    if require_source:
        if not app_config.source.url:
            errors.append("SUPABASE_URL is required but not set")
        elif not app_config.source.url.startswith(("http://", "https://")):
            errors.append("SUPABASE_URL must start with http:// or https://")

        if not app_config.source.api_key:
            errors.append("SUPABASE_SERVICE_KEY is required but not set")

    fetch = app_config.fetch
    if fetch.page_size <= 0:
        errors.append("page_size must be positive")
    if fetch.chart_max_records < fetch.page_size:
        errors.append("chart_max_records must be at least one page")

    cache = app_config.cache
    if cache.fallback_retention_days > cache.retention_days:
        errors.append("fallback_retention_days cannot exceed retention_days")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)
