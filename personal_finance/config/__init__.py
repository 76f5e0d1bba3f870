"""Configuration package."""

from personal_finance.config.settings import (
    AnalysisSettings,
    CSVSettings,
    LedgerSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AnalysisSettings",
    "CSVSettings",
    "LedgerSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
