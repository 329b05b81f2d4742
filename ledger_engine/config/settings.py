"""
Configuration Management for the Ledger Engine

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every tunable of the ledger (database location, retry policy,
loan input bounds) is visible in one place and validated at startup.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """SQLite storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_DB_",
        extra="ignore"
    )

    path: str = Field(
        default="ledger.db",
        description="Path to the SQLite database file"
    )
    busy_timeout_ms: int = Field(
        default=30000,
        ge=0,
        le=600000,
        description="How long a writer waits for the database lock"
    )

    @field_validator('path')
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Reject in-memory databases: every unit of work opens its own connection."""
        if v.strip() in ("", ":memory:"):
            raise ValueError(
                "An on-disk database path is required "
                "(each unit of work uses its own connection)"
            )
        return v


class LedgerSettings(BaseSettings):
    """Ledger engine behaviour."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    default_wallet_name: str = Field(
        default="Cash Wallet",
        min_length=1,
        max_length=100,
        description="Name of the wallet created by ensure_default_wallet"
    )
    default_wallet_institution: str = Field(
        default="Cash",
        description="Institution recorded on the default wallet"
    )

    # Retry policy for transient storage errors (lock contention)
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for an operation that hits a busy database"
    )

    # Validation thresholds (warnings only, never blocking)
    large_amount_warning: Decimal = Field(
        default=Decimal("1000000.00"),
        gt=0,
        description="Amounts above this produce a validation warning"
    )
    future_date_tolerance_days: int = Field(
        default=7,
        ge=0,
        description="How many days in the future a transaction may occur before a warning"
    )


class LoanSettings(BaseSettings):
    """
    Loan input bounds.

    Interest rates are whole-number percentages per annum: 26 means 26%.
    """

    model_config = SettingsConfigDict(
        env_prefix="LOAN_",
        extra="ignore"
    )

    min_nonzero_annual_rate_percent: Decimal = Field(
        default=Decimal("1"),
        ge=0,
        description="Non-zero rates below this are rejected as a probable fraction (0.26 for 26%)"
    )
    max_annual_rate_percent: Decimal = Field(
        default=Decimal("100"),
        gt=0,
        description="Upper bound for annual interest rate"
    )
    max_term_months: int = Field(
        default=600,
        ge=1,
        description="Longest loan term accepted"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured logs"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def loans(self) -> LoanSettings:
        return LoanSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("database", "ledger", "loans", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results


def database_path(settings: DatabaseSettings) -> Path:
    """Resolve the configured database path, creating its directory."""
    path = Path(settings.path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return path
