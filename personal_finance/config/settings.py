"""
Configuration Management for Personal Finance

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All tunable thresholds live here rather than as literals
inside the services. Duplicate windows, the 50/30/20 buckets and the CSV
defaults are the knobs users ask to change, so each one can be overridden
from the environment or a .env file.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Core ledger behaviour."""

    model_config = SettingsConfigDict(
        env_prefix="FINANCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    default_currency: str = Field(
        default="EUR",
        min_length=3,
        max_length=3,
        description="Currency assigned to new accounts"
    )
    default_alert_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Budget alert threshold used when none is given"
    )

    # Duplicate detection
    duplicate_window_seconds: int = Field(
        default=300,
        ge=0,
        description="Two transactions closer than this are duplicate candidates"
    )
    import_duplicate_window_seconds: int = Field(
        default=300,
        ge=0,
        description="Date tolerance used when skipping duplicates on CSV import"
    )

    # Validation thresholds
    large_amount_threshold: float = Field(
        default=50000.0,
        gt=0,
        description="Amounts above this are flagged for review"
    )
    future_date_tolerance_days: int = Field(
        default=1,
        ge=0,
        description="How many days in the future a transaction date can be"
    )

    # Presentation sizes
    top_categories_count: int = Field(
        default=5,
        ge=1,
        le=50,
        description="How many categories appear in the statistics rankings"
    )
    recent_transactions_count: int = Field(
        default=5,
        ge=1,
        le=100,
        description="How many transactions the dashboard and widget show"
    )
    expense_trend_months: int = Field(
        default=6,
        ge=1,
        le=36,
        description="Months covered by the dashboard expense trend"
    )

    @field_validator('default_currency')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()


class AnalysisSettings(BaseSettings):
    """50/30/20 rule and trend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FINANCE_ANALYSIS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    necessity_categories: str = Field(
        default="Casa,Utenze,Alimentari,Trasporti,Salute",
        description="Comma-separated category names counted as necessities"
    )
    want_categories: str = Field(
        default="Intrattenimento,Abbigliamento,Regali,Altro",
        description="Comma-separated category names counted as wants"
    )
    ideal_necessities_share: float = Field(default=0.5, ge=0.0, le=1.0)
    ideal_wants_share: float = Field(default=0.3, ge=0.0, le=1.0)
    ideal_savings_share: float = Field(default=0.2, ge=0.0, le=1.0)
    trend_band: float = Field(
        default=0.05,
        ge=0.0,
        le=1.0,
        description="Relative change below which a category trend is stable"
    )

    @model_validator(mode='after')
    def validate_shares(self) -> 'AnalysisSettings':
        total = (
            self.ideal_necessities_share
            + self.ideal_wants_share
            + self.ideal_savings_share
        )
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Ideal shares must sum to 1.0 (got {total:.2f})")
        return self

    @property
    def necessities_list(self) -> list[str]:
        """Get necessity categories as a list."""
        return [name.strip() for name in self.necessity_categories.split(",") if name.strip()]

    @property
    def wants_list(self) -> list[str]:
        """Get want categories as a list."""
        return [name.strip() for name in self.want_categories.split(",") if name.strip()]


class CSVSettings(BaseSettings):
    """CSV import/export defaults."""

    model_config = SettingsConfigDict(
        env_prefix="FINANCE_CSV_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    delimiter: str = Field(
        default=",",
        min_length=1,
        max_length=1,
        description="Field delimiter"
    )
    has_header: bool = Field(default=True)
    preview_rows: int = Field(default=10, ge=1, le=1000)
    date_format: str = Field(
        default="dd/MM/yyyy",
        description="Preferred import date format (a DateFormat value)"
    )


class StorageSettings(BaseSettings):
    """Persistence backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FINANCE_STORAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    backend: Literal["memory", "json"] = Field(
        default="memory",
        description="Which storage implementation to use"
    )
    data_dir: str = Field(
        default="./data",
        description="Directory for the JSON backend files"
    )
    ledger_filename: str = Field(default="ledger.json")
    audit_filename: str = Field(default="audit.jsonl")

    @property
    def ledger_path(self) -> Path:
        return Path(self.data_dir) / self.ledger_filename

    @property
    def audit_path(self) -> Path:
        return Path(self.data_dir) / self.audit_filename


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

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def analysis(self) -> AnalysisSettings:
        return AnalysisSettings()

    @property
    def csv(self) -> CSVSettings:
        return CSVSettings()

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool | str]:
    """
    Validate all settings groups.

    Returns a dict of {group_name: is_valid}, plus a "<group>_error"
    entry for each group that failed. Useful for startup checks.
    """
    results: dict[str, bool | str] = {}
    settings = get_settings()

    for group in ("ledger", "analysis", "csv", "storage"):
        try:
            getattr(settings, group)
            results[group] = True
        except ValueError as e:
            results[group] = False
            results[f"{group}_error"] = str(e)

    return results
