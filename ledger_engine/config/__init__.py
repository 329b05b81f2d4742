"""Configuration package."""

from ledger_engine.config.settings import (
    AppSettings,
    DatabaseSettings,
    LedgerSettings,
    LoanSettings,
    Settings,
    database_path,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "LedgerSettings",
    "LoanSettings",
    "Settings",
    "database_path",
    "get_settings",
    "validate_all_settings",
]
