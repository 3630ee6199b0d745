"""
Sales Dashboard Backend
Centralized Configuration Management

Environment-driven settings for the row store, the Shopify and spreadsheet
integrations, the reporting calendar and the dashboard targets. Every section
reads its own environment prefix so the sync job and the API share one source
of configuration.
"""

from functools import lru_cache
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)


def resolve_reporting_timezone(candidate: Optional[str]) -> str:
    """
    Validate an IANA timezone name.

    Empty or unknown names fall back to UTC with a warning so a typo in the
    environment never takes the dashboard down.
    """
    value = (candidate or "").strip() or "UTC"
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Invalid reporting timezone, falling back to UTC", timezone=value)
        return "UTC"
    return value


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


class DatabaseSettings(BaseSettings):
    """PostgreSQL Row Store Configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_", populate_by_name=True)

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="sales_dashboard", description="Database name")
    user: str = Field(default="dashboard", description="Database user")
    password: SecretStr = Field(default="dashboard", description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")
    url: Optional[str] = Field(default=None, alias="DATABASE_URL", description="Full async URL (overrides host/port)")

    @property
    def async_url(self) -> str:
        """Async database URL for asyncpg"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class StoreSettings(BaseSettings):
    """Row store scan and write limits"""

    model_config = SettingsConfigDict(env_prefix="STORE_", populate_by_name=True)

    page_size: int = Field(default=1000, description="Rows per scan page")
    max_pages: int = Field(default=200, description="Scan page ceiling before failing")
    upsert_chunk_size: int = Field(default=500, description="Rows per upsert statement")

    @field_validator("page_size", "max_pages")
    @classmethod
    def clamp_pages(cls, v: int) -> int:
        return _clamp(v, 1, 5000)

    @field_validator("upsert_chunk_size")
    @classmethod
    def clamp_chunk(cls, v: int) -> int:
        return max(1, v)


class RedisSettings(BaseSettings):
    """Redis Cache Configuration (optional analytics cache backend)"""

    model_config = SettingsConfigDict(env_prefix="REDIS_", populate_by_name=True)

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[SecretStr] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")
    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")
    url: Optional[str] = Field(default=None, alias="REDIS_URL", description="Redis URL (overrides host/port)")

    def get_url(self) -> str:
        """Redis connection URL - uses REDIS_URL if set, otherwise builds from host/port"""
        if self.url:
            return self.url
        if self.password:
            return f"redis://:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class ShopifySettings(BaseSettings):
    """Shopify Admin API Configuration"""

    model_config = SettingsConfigDict(env_prefix="SHOPIFY_", populate_by_name=True)

    store_domain: str = Field(default="", description="myshopify domain")
    access_token: Optional[SecretStr] = Field(default=None, description="Admin API access token")
    api_version: str = Field(default="2024-10", description="REST Admin API version")
    analytics_api_version: str = Field(default="2025-10", description="GraphQL version for ShopifyQL")
    orders_page_limit: int = Field(default=250, description="Orders per REST page")
    orders_max_pages: int = Field(default=120, description="REST page ceiling for the sync job")
    query_cache_ttl_seconds: float = Field(
        default=60.0,
        alias="SHOPIFYQL_CACHE_TTL_SECONDS",
        description="TTL of cached ShopifyQL results",
    )
    access_scopes_cache_ttl_seconds: float = Field(
        default=300.0,
        alias="SHOPIFY_ACCESS_SCOPES_CACHE_TTL_SECONDS",
        description="TTL of the cached access scope list",
    )

    @field_validator("store_domain")
    @classmethod
    def strip_domain(cls, v: str) -> str:
        return v.strip().replace("https://", "").replace("http://", "").rstrip("/")

    @field_validator("query_cache_ttl_seconds")
    @classmethod
    def min_query_ttl(cls, v: float) -> float:
        return max(5.0, v)

    @field_validator("access_scopes_cache_ttl_seconds")
    @classmethod
    def min_scope_ttl(cls, v: float) -> float:
        return max(60.0, v)

    @field_validator("orders_max_pages")
    @classmethod
    def clamp_orders_pages(cls, v: int) -> int:
        return _clamp(v, 1, 5000)

    @property
    def is_configured(self) -> bool:
        """Both the domain and a token are required for any Shopify call"""
        return bool(self.store_domain and self.access_token and self.access_token.get_secret_value())

    @property
    def token(self) -> str:
        return self.access_token.get_secret_value() if self.access_token else ""


class MarketingSettings(BaseSettings):
    """Spreadsheet (Apps Script) marketing feed"""

    model_config = SettingsConfigDict(env_prefix="APPS_SCRIPT_", populate_by_name=True)

    url: str = Field(default="", description="Apps Script web app URL")

    @property
    def is_configured(self) -> bool:
        return bool(self.url.strip())


class GoogleSettings(BaseSettings):
    """Google OAuth client used by the calendar widget"""

    model_config = SettingsConfigDict(env_prefix="GOOGLE_OAUTH_", populate_by_name=True)

    client_id: str = Field(default="", description="OAuth client id")
    client_secret: Optional[SecretStr] = Field(default=None, description="OAuth client secret")
    redirect_uri: str = Field(default="", description="Explicit OAuth redirect URI")
    scopes: str = Field(
        default="https://www.googleapis.com/auth/calendar.readonly",
        description="Space separated OAuth scopes",
    )
    calendar_id: str = Field(default="primary", alias="GOOGLE_CALENDAR_ID", description="Calendar to read")
    refresh_token: Optional[SecretStr] = Field(
        default=None,
        alias="GOOGLE_CALENDAR_REFRESH_TOKEN",
        description="Long-lived refresh token",
    )

    @field_validator("scopes")
    @classmethod
    def normalize_scopes(cls, v: str) -> str:
        return " ".join(v.split())

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.client_secret.get_secret_value())


class ReportingSettings(BaseSettings):
    """Reporting calendar, sync window and sales targets"""

    model_config = SettingsConfigDict(env_prefix="", populate_by_name=True)

    reporting_timezone: str = Field(default="UTC", alias="REPORTING_TIMEZONE", description="IANA timezone")
    sync_days: int = Field(default=90, alias="SYNC_DAYS", description="Sync window in days")
    monthly_sales_target: Optional[float] = Field(
        default=None, alias="MONTHLY_SALES_TARGET", description="Fixed monthly target"
    )
    sales_target_multiplier: float = Field(
        default=1.0, alias="SALES_TARGET_MULTIPLIER", description="Multiplier on last month total"
    )
    sales_targets_by_month: Dict[str, float] = Field(
        default_factory=dict,
        alias="SALES_TARGETS_BY_MONTH",
        description='Per-month targets, e.g. {"2026-02": 120000}',
    )
    analytics_cache_backend: str = Field(
        default="memory", alias="ANALYTICS_CACHE_BACKEND", description="memory or redis"
    )

    @field_validator("reporting_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        return resolve_reporting_timezone(v)

    @field_validator("sync_days")
    @classmethod
    def clamp_sync_days(cls, v: int) -> int:
        return _clamp(v, 7, 365)

    @field_validator("sales_target_multiplier")
    @classmethod
    def positive_multiplier(cls, v: float) -> float:
        return v if v > 0 else 1.0

    @field_validator("analytics_cache_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        allowed = ["memory", "redis"]
        if v.lower() not in allowed:
            raise ValueError(f"Cache backend must be one of: {allowed}")
        return v.lower()


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="", populate_by_name=True)

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="sales-dashboard", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", alias="API_HOST", description="API host")
    api_port: int = Field(default=8787, alias="API_PORT", description="API port")
    api_workers: int = Field(default=2, alias="API_WORKERS", description="API workers")

    # Upstream HTTP
    http_timeout_seconds: float = Field(
        default=30.0, alias="HTTP_TIMEOUT_SECONDS", description="Default upstream request timeout"
    )

    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    shopify: ShopifySettings = Field(default_factory=ShopifySettings)
    marketing: MarketingSettings = Field(default_factory=MarketingSettings)
    google: GoogleSettings = Field(default_factory=GoogleSettings)
    reporting: ReportingSettings = Field(default_factory=ReportingSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def cors_origins(self) -> List[str]:
        # Read-only dashboard data is served to any origin
        return ["*"]


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
