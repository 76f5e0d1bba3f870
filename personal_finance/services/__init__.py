"""
Services package.

Pure services (budget, statistics, analysis, integrity) work on plain
lists. LedgerService and DashboardService read and write through storage
and are imported from their own modules.
"""

from personal_finance.services.analysis_service import FinancialAnalysisService
from personal_finance.services.budget_service import BudgetService
from personal_finance.services.integrity import DataIntegrityService
from personal_finance.services.statistics_service import StatisticsService
from personal_finance.services.storage import (
    AuditStorageInterface,
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    JsonFileAuditStorage,
    JsonFileLedgerStorage,
    LedgerStorageInterface,
    NotFoundError,
    StorageConnectionError,
    StorageError,
)

__all__ = [
    # Calculation services
    "BudgetService",
    "DataIntegrityService",
    "FinancialAnalysisService",
    "StatisticsService",
    # Storage services
    "AuditStorageInterface",
    "DuplicateError",
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "JsonFileAuditStorage",
    "JsonFileLedgerStorage",
    "LedgerStorageInterface",
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
]
