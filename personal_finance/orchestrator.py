"""
Main Orchestrator for Personal Finance

This module ties together all the components: one storage backend, one
audit trail, and every service built on top of them.

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every write goes through the LedgerService (validated and audited)
- Read-only views (dashboard, queries) read storage directly
- The storage backend is chosen by configuration, never by the services

This is the "glue"; services never construct their own storage.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from personal_finance.audit import AuditLogger
from personal_finance.config import get_settings
from personal_finance.csvio import CSVExportService, CSVImportService
from personal_finance.queries import QueryExecutor
from personal_finance.services import (
    AuditStorageInterface,
    BudgetService,
    DataIntegrityService,
    FinancialAnalysisService,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    JsonFileAuditStorage,
    JsonFileLedgerStorage,
    LedgerStorageInterface,
    StatisticsService,
)
from personal_finance.services.dashboard_service import DashboardService
from personal_finance.services.ledger_service import LedgerService
from personal_finance.validation import TransactionValidator


logger = structlog.get_logger(__name__)


@dataclass
class AppComponents:
    """Everything a front end needs, wired to one storage backend."""

    storage: LedgerStorageInterface
    audit_storage: AuditStorageInterface
    audit_logger: AuditLogger
    validator: TransactionValidator
    integrity: DataIntegrityService
    budgets: BudgetService
    ledger: LedgerService
    statistics: StatisticsService
    analysis: FinancialAnalysisService
    dashboard: DashboardService
    csv_import: CSVImportService
    csv_export: CSVExportService
    queries: QueryExecutor


def create_storage(
    backend: Optional[str] = None,
) -> tuple[LedgerStorageInterface, AuditStorageInterface]:
    """
    Build the ledger and audit storage for a backend.

    Args:
        backend: "memory" or "json"; defaults to FINANCE_STORAGE_BACKEND

    Raises:
        ValueError: unknown backend
        StorageConnectionError: the JSON files exist but can't be read
    """
    storage_settings = get_settings().storage
    backend = backend or storage_settings.backend

    if backend == "memory":
        return InMemoryLedgerStorage(), InMemoryAuditStorage()
    if backend == "json":
        return (
            JsonFileLedgerStorage(storage_settings.ledger_path),
            JsonFileAuditStorage(storage_settings.audit_path),
        )
    raise ValueError(f"Unknown storage backend: {backend}")


def create_app_components(backend: Optional[str] = None) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        backend: Storage backend override ("memory" or "json")

    Returns:
        AppComponents sharing one storage and one audit logger
    """
    settings = get_settings()
    storage, audit_storage = create_storage(backend)
    audit_logger = AuditLogger(audit_storage)

    ledger_settings = settings.ledger
    integrity = DataIntegrityService(ledger_settings.duplicate_window_seconds)
    validator = TransactionValidator(storage, integrity, ledger_settings)
    budgets = BudgetService()
    ledger = LedgerService(
        storage,
        audit_logger=audit_logger,
        validator=validator,
        integrity=integrity,
        budget_service=budgets,
        settings=ledger_settings,
    )

    logger.info(
        "app_components_created",
        backend=backend or settings.storage.backend,
    )

    return AppComponents(
        storage=storage,
        audit_storage=audit_storage,
        audit_logger=audit_logger,
        validator=validator,
        integrity=integrity,
        budgets=budgets,
        ledger=ledger,
        statistics=StatisticsService(ledger_settings.top_categories_count),
        analysis=FinancialAnalysisService(settings.analysis),
        dashboard=DashboardService(storage, ledger_settings),
        csv_import=CSVImportService(ledger, audit_logger, ledger_settings, settings.csv),
        csv_export=CSVExportService(ledger, audit_logger),
        queries=QueryExecutor(storage, audit_logger),
    )
