"""
Data Models Package

This package contains all Pydantic models used in the Personal Finance system.
All data flowing through the system must conform to these schemas.
"""

from personal_finance.models.ledger import (
    DEFAULT_CATEGORIES,
    Account,
    Budget,
    BudgetPeriod,
    Category,
    Conto,
    ContoType,
    GoalCategory,
    GoalStatus,
    QueryResult,
    RecurrenceFrequency,
    SavingsGoal,
    Transaction,
    TransactionQuery,
    TransactionType,
    ValidationIssue,
    ValidationResult,
    utc_now,
)
from personal_finance.models.analytics import (
    AccountStatistics,
    AccountSummary,
    AnalysisPeriod,
    BalancePoint,
    BudgetProgress,
    BudgetRuleAnalysis,
    BudgetRuleBucket,
    CategoryAmount,
    CategoryAnalysis,
    ChartPeriod,
    ContoChange,
    DashboardData,
    DuplicateGroup,
    FinancialTip,
    IntegrityReport,
    MonthlyAmount,
    SeriesBalancePoint,
    StatisticsPeriod,
    TransactionSummary,
    WidgetData,
)
from personal_finance.models.csv_import import (
    ColumnMapping,
    CSVAccountFilter,
    CSVExportOptions,
    CSVField,
    CSVImportOptions,
    CSVImportResult,
    CSVMappingIssue,
    CSVPreviewRow,
    CSVRowError,
    DateFormat,
    ImportErrorKind,
    ParsedCSV,
)
from personal_finance.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "DEFAULT_CATEGORIES",
    "Account",
    "Budget",
    "BudgetPeriod",
    "Category",
    "Conto",
    "ContoType",
    "GoalCategory",
    "GoalStatus",
    "QueryResult",
    "RecurrenceFrequency",
    "SavingsGoal",
    "Transaction",
    "TransactionQuery",
    "TransactionType",
    "ValidationIssue",
    "ValidationResult",
    "utc_now",
    # Analytics models
    "AccountStatistics",
    "AccountSummary",
    "AnalysisPeriod",
    "BalancePoint",
    "BudgetProgress",
    "BudgetRuleAnalysis",
    "BudgetRuleBucket",
    "CategoryAmount",
    "CategoryAnalysis",
    "ChartPeriod",
    "ContoChange",
    "DashboardData",
    "DuplicateGroup",
    "FinancialTip",
    "IntegrityReport",
    "MonthlyAmount",
    "SeriesBalancePoint",
    "StatisticsPeriod",
    "TransactionSummary",
    "WidgetData",
    # CSV models
    "ColumnMapping",
    "CSVAccountFilter",
    "CSVExportOptions",
    "CSVField",
    "CSVImportOptions",
    "CSVImportResult",
    "CSVMappingIssue",
    "CSVPreviewRow",
    "CSVRowError",
    "DateFormat",
    "ImportErrorKind",
    "ParsedCSV",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
