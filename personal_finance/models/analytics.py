"""
Derived (read-only) models produced by the calculation and reporting services.

None of these are persisted. They are recomputed from the ledger on demand,
so they carry no ids of their own beyond references to ledger entities.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from personal_finance.models.ledger import TransactionType, utc_now


# =============================================================================
# PERIODS
# =============================================================================

class ChartPeriod(str, Enum):
    """Time window of the dashboard balance chart."""
    ONE_MONTH = "1M"
    THREE_MONTHS = "3M"
    SIX_MONTHS = "6M"
    ONE_YEAR = "1A"
    ALL = "Tutto"

    @property
    def months(self) -> Optional[int]:
        return {
            ChartPeriod.ONE_MONTH: 1,
            ChartPeriod.THREE_MONTHS: 3,
            ChartPeriod.SIX_MONTHS: 6,
            ChartPeriod.ONE_YEAR: 12,
            ChartPeriod.ALL: None,
        }[self]


class StatisticsPeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    ALL_TIME = "all_time"


class AnalysisPeriod(str, Enum):
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


# =============================================================================
# BALANCE MODELS
# =============================================================================

class BalancePoint(BaseModel):
    """One point on a balance chart."""
    date: datetime
    balance: Decimal


class SeriesBalancePoint(BaseModel):
    """One point of a per-account or per-conto balance series."""
    series_id: UUID
    series_name: str
    date: datetime
    balance: Decimal
    color_index: int = 0


class ContoChange(BaseModel):
    """How one conto moved over a chart period."""
    conto_id: UUID
    name: str
    start_balance: Decimal
    end_balance: Decimal
    absolute_change: Decimal
    percentage_change: float


# =============================================================================
# BUDGET MODELS
# =============================================================================

class BudgetProgress(BaseModel):
    """Snapshot of a budget within its current period."""

    budget_id: UUID
    period_start: datetime
    period_end: datetime

    amount: Decimal
    spent: Decimal
    remaining: Decimal
    spent_percentage: float = Field(
        ...,
        description="spent / amount as a fraction (1.0 == fully spent)"
    )
    is_over_budget: bool
    should_alert: bool

    days_remaining: int
    period_progress: float = Field(..., ge=0.0, le=1.0)
    daily_suggested_spending: Decimal
    projected_spending: Decimal

    previous_period_spent: Decimal
    change_from_previous_period: float


# =============================================================================
# STATISTICS MODELS
# =============================================================================

class CategoryAmount(BaseModel):
    name: str
    amount: Decimal


class AccountStatistics(BaseModel):
    """Per-account totals for one statistics period."""

    account_id: UUID
    period: StatisticsPeriod
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    calculated_at: datetime = Field(default_factory=utc_now)

    total_balance: Decimal
    total_income: Decimal
    total_expenses: Decimal
    net_income: Decimal

    income_count: int = 0
    expense_count: int = 0
    transfer_count: int = 0

    top_expense_categories: list[CategoryAmount] = Field(default_factory=list)
    top_income_categories: list[CategoryAmount] = Field(default_factory=list)

    @property
    def transaction_count(self) -> int:
        return self.income_count + self.expense_count + self.transfer_count

    @property
    def savings_rate(self) -> float:
        """Net income as a percentage of income (0 without income)."""
        if self.total_income <= 0:
            return 0.0
        return float(self.net_income / self.total_income * 100)


# =============================================================================
# ANALYSIS MODELS
# =============================================================================

class CategoryAnalysis(BaseModel):
    category_id: Optional[UUID] = None
    name: str
    amount: Decimal
    percentage: float
    transaction_count: int
    trend: str = Field(..., pattern="^(up|down|stable|new)$")


class BudgetRuleBucket(BaseModel):
    """One bucket of the 50/30/20 rule."""
    name: str
    amount: Decimal
    percentage: float = Field(..., description="Share of income, in percent")
    ideal_percentage: float
    status: str = Field(..., pattern="^(on_track|warning|over_budget)$")


class BudgetRuleAnalysis(BaseModel):
    income: Decimal
    expenses: Decimal
    necessities: BudgetRuleBucket
    wants: BudgetRuleBucket
    savings: BudgetRuleBucket

    @property
    def savings_rate(self) -> float:
        return self.savings.percentage


class FinancialTip(BaseModel):
    title: str
    message: str
    priority: str = Field(..., pattern="^(high|medium|low)$")


# =============================================================================
# DASHBOARD / WIDGET MODELS
# =============================================================================

class MonthlyAmount(BaseModel):
    month: date
    amount: Decimal


class DashboardData(BaseModel):
    account_id: UUID
    chart_period: ChartPeriod
    generated_at: datetime = Field(default_factory=utc_now)

    total_balance: Decimal
    monthly_income: Decimal
    monthly_expenses: Decimal

    period_start_balance: Decimal
    period_change: Decimal
    period_change_percentage: float

    past_history: list[BalancePoint] = Field(default_factory=list)
    future_history: list[BalancePoint] = Field(default_factory=list)
    y_domain: tuple[Decimal, Decimal]
    conti_changes: list[ContoChange] = Field(default_factory=list)

    expense_trend: list[MonthlyAmount] = Field(default_factory=list)
    average_monthly_income: Decimal
    average_monthly_expenses: Decimal

    recent_transactions: list["TransactionSummary"] = Field(default_factory=list)


class AccountSummary(BaseModel):
    account_id: UUID
    name: str
    balance: Decimal
    currency: str


class TransactionSummary(BaseModel):
    transaction_id: UUID
    description: str
    amount: Decimal = Field(..., description="Signed display amount")
    date: datetime
    type: TransactionType


class WidgetData(BaseModel):
    accounts: list[AccountSummary] = Field(default_factory=list)
    recent_transactions: list[TransactionSummary] = Field(default_factory=list)
    total_balance: Decimal
    last_updated: datetime = Field(default_factory=utc_now)


DashboardData.model_rebuild()


# =============================================================================
# INTEGRITY MODELS
# =============================================================================

class DuplicateGroup(BaseModel):
    """Records judged to be the same thing. The first id is the oldest."""
    entity_type: str
    ids: list[UUID]
    reason: str


class IntegrityReport(BaseModel):
    account_id: Optional[UUID] = None
    checked_at: datetime = Field(default_factory=utc_now)
    transactions: list[DuplicateGroup] = Field(default_factory=list)
    accounts: list[DuplicateGroup] = Field(default_factory=list)
    conti: list[DuplicateGroup] = Field(default_factory=list)
    categories: list[DuplicateGroup] = Field(default_factory=list)

    @property
    def has_duplicates(self) -> bool:
        return bool(self.transactions or self.accounts or self.conti or self.categories)

    @property
    def duplicate_count(self) -> int:
        """Number of redundant records (group size minus the one kept)."""
        groups = self.transactions + self.accounts + self.conti + self.categories
        return sum(len(group.ids) - 1 for group in groups)
