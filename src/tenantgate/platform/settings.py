"""Centralized configuration using pydantic-settings.

All configuration is loaded from environment variables and .env files.
For nested settings, use double underscore: BILLING__WEBHOOK_SECRET=...
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """Main application settings.

    All settings can be overridden via environment variables.
    For nested settings, use double underscore: DATABASE__POOL_SIZE=20
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    # ============================================================
    # Core Application Settings
    # ============================================================

    app_name: str = Field("tenantgate-platform", description="Application name")
    app_version: str = Field("1.0.0", description="Application version")
    environment: Environment = Field(Environment.DEVELOPMENT, description="Deployment environment")
    debug: bool = Field(False, description="Debug mode")
    testing: bool = Field(False, description="Testing mode")

    # ============================================================
    # Database Configuration
    # ============================================================

    class DatabaseSettings(BaseModel):
        """Database configuration."""

        url: str | None = Field(None, description="Full async database URL")
        host: str = Field("localhost", description="Database host")
        port: int = Field(5432, description="Database port")
        database: str = Field("tenantgate", description="Database name")
        username: str = Field("tenantgate", description="Database username")
        password: str = Field("", description="Database password")

        # Connection pool
        pool_size: int = Field(10, description="Connection pool size")
        max_overflow: int = Field(20, description="Max overflow connections")
        pool_timeout: int = Field(30, description="Pool timeout in seconds")
        pool_recycle: int = Field(3600, description="Recycle connections after seconds")
        pool_pre_ping: bool = Field(True, description="Test connections before use")

        echo: bool = Field(False, description="Echo SQL statements")

        # Row-level security GUC set for the lifetime of a tenant scope
        tenant_guc_name: str = Field(
            "app.current_tenant_id", description="PostgreSQL setting used by RLS policies"
        )

    database: DatabaseSettings = DatabaseSettings()  # type: ignore[call-arg]

    # ============================================================
    # JWT (credential verification only, issuance is external)
    # ============================================================

    class JWTSettings(BaseModel):
        """JWT configuration."""

        secret_key: str = Field("change-me", description="JWT secret key")
        algorithm: str = Field("HS256", description="JWT algorithm")
        issuer: str | None = Field(None, description="Expected issuer (optional)")

    jwt: JWTSettings = JWTSettings()  # type: ignore[call-arg]

    # ============================================================
    # Billing Configuration
    # ============================================================

    class BillingSettings(BaseModel):
        """Billing webhook and ledger configuration."""

        webhook_secret: str = Field("", description="Shared secret for webhook HMAC signatures")
        webhook_signature_header: str = Field(
            "X-Razorpay-Signature", description="Header carrying the webhook signature"
        )
        default_currency: str = Field("INR", description="Currency used when an event omits one")
        minor_units_per_major: int = Field(
            100, description="Processor amounts are in minor units (paise/cents)"
        )
        invoice_prefix: str = Field("INV", description="Invoice number prefix")
        invoice_sequence_width: int = Field(4, description="Zero padded invoice sequence width")

    billing: BillingSettings = BillingSettings()  # type: ignore[call-arg]

    # ============================================================
    # Usage accounting
    # ============================================================

    class UsageSettings(BaseModel):
        """Usage snapshot and limit sweep configuration."""

        warning_threshold: float = Field(
            0.8, description="Fraction of a limit at which a tenant is flagged"
        )
        snapshot_hour_utc: int = Field(0, description="Hour (UTC) of the daily usage snapshot")
        limit_check_hour_utc: int = Field(9, description="Hour (UTC) of the daily limit check")
        trial_sweep_hour_utc: int = Field(1, description="Hour (UTC) of the trial lapse sweep")
        history_days_default: int = Field(30, description="Default usage history window")

    usage: UsageSettings = UsageSettings()  # type: ignore[call-arg]

    # ============================================================
    # Celery & Task Queue
    # ============================================================

    class CelerySettings(BaseModel):
        """Celery configuration."""

        broker_url: str = Field("redis://localhost:6379/0", description="Broker URL")
        result_backend: str = Field("redis://localhost:6379/1", description="Result backend")
        timezone: str = Field("UTC", description="Timezone")

    celery: CelerySettings = CelerySettings()  # type: ignore[call-arg]

    # ============================================================
    # Observability
    # ============================================================

    class ObservabilitySettings(BaseModel):
        """Observability configuration."""

        log_level: LogLevel = Field(LogLevel.INFO, description="Log level")
        log_format: str = Field("json", description="Log format (json or text)")
        enable_metrics: bool = Field(True, description="Enable metrics collection")

    observability: ObservabilitySettings = ObservabilitySettings()  # type: ignore[call-arg]

    # ============================================================
    # Validation & Helpers
    # ============================================================

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: Any) -> Any:
        """Accept environment names in any case."""
        if isinstance(v, str):
            return Environment(v.lower())
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.testing or self.environment == Environment.TEST


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get global settings instance (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()  # type: ignore
    return _settings


def reset_settings() -> None:
    """Reset settings (mainly for testing)."""
    global _settings
    _settings = None


# Convenience export
settings = get_settings()
