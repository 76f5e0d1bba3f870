"""
Core Data Models for Personal Finance

These models define the strict schemas for everything the ledger stores:
accounts ("libri"), conti, categories, transactions, budgets and savings
goals. They are designed to:
1. Enforce type safety at runtime
2. Reject structurally impossible records (an expense with no source conto)
3. Be serializable for storage and logging
4. Support the audit trail

DESIGN DECISION: Money is always Decimal and always stored positive.
The sign of a movement comes from the transaction type, never from the
amount, so a balance is a sum over types rather than a sum over signs.

DESIGN DECISION: A transfer is ONE record with both conti set.
Modelling it as an expense/income pair lets the two halves drift apart
on edit or delete.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from dateutil.relativedelta import relativedelta
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


def utc_now() -> datetime:
    """Naive UTC timestamp, the convention for every stored datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ContoType(str, Enum):
    """
    Kind of financial instrument a conto represents.

    The type decides which type-specific fields are allowed on the conto.
    """
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT = "credit"
    INVESTMENT = "investment"
    CASH = "cash"
    OTHER = "other"

    @property
    def display_name(self) -> str:
        return {
            ContoType.CHECKING: "Conto Corrente",
            ContoType.SAVINGS: "Conto Risparmio",
            ContoType.CREDIT: "Carta di Credito",
            ContoType.INVESTMENT: "Investimenti",
            ContoType.CASH: "Contanti",
            ContoType.OTHER: "Altro",
        }[self]


class TransactionType(str, Enum):
    """Direction of a money movement."""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"

    @property
    def display_name(self) -> str:
        return {
            TransactionType.INCOME: "Entrata",
            TransactionType.EXPENSE: "Spesa",
            TransactionType.TRANSFER: "Trasferimento",
        }[self]


class RecurrenceFrequency(str, Enum):
    """
    How often a recurring transaction repeats.

    Each frequency maps to a calendar step (not a fixed number of days),
    so "monthly" on the 31st lands on the last day of shorter months.
    """
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMIANNUALLY = "semiannually"
    YEARLY = "yearly"

    @property
    def step(self) -> relativedelta:
        return {
            RecurrenceFrequency.DAILY: relativedelta(days=1),
            RecurrenceFrequency.WEEKLY: relativedelta(weeks=1),
            RecurrenceFrequency.BIWEEKLY: relativedelta(weeks=2),
            RecurrenceFrequency.MONTHLY: relativedelta(months=1),
            RecurrenceFrequency.QUARTERLY: relativedelta(months=3),
            RecurrenceFrequency.SEMIANNUALLY: relativedelta(months=6),
            RecurrenceFrequency.YEARLY: relativedelta(years=1),
        }[self]

    @property
    def display_name(self) -> str:
        return {
            RecurrenceFrequency.DAILY: "Giornaliera",
            RecurrenceFrequency.WEEKLY: "Settimanale",
            RecurrenceFrequency.BIWEEKLY: "Ogni 2 settimane",
            RecurrenceFrequency.MONTHLY: "Mensile",
            RecurrenceFrequency.QUARTERLY: "Trimestrale",
            RecurrenceFrequency.SEMIANNUALLY: "Semestrale",
            RecurrenceFrequency.YEARLY: "Annuale",
        }[self]


class BudgetPeriod(str, Enum):
    """Budget reset period."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    @property
    def nominal_days(self) -> int:
        """Approximate length, for display only. Ranges use the calendar."""
        return {
            BudgetPeriod.WEEKLY: 7,
            BudgetPeriod.MONTHLY: 30,
            BudgetPeriod.QUARTERLY: 90,
            BudgetPeriod.YEARLY: 365,
        }[self]


class GoalCategory(str, Enum):
    """What a savings goal is for."""
    EMERGENCY = "emergency"
    VACATION = "vacation"
    HOME = "home"
    CAR = "car"
    EDUCATION = "education"
    RETIREMENT = "retirement"
    OTHER = "other"


class GoalStatus(str, Enum):
    """Savings goal lifecycle."""
    ACTIVE = "active"
    COMPLETED = "completed"
    PAUSED = "paused"


# =============================================================================
# LEDGER ENTITIES
# =============================================================================

class Account(BaseModel):
    """
    Top-level container ("libro") of financial data.

    Owns conti, categories, transactions, budgets and goals.
    Deleting an account cascades to all of them.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Account name"
    )
    currency: str = Field(
        default="EUR",
        min_length=3,
        max_length=3,
        description="ISO 4217 currency code"
    )
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('currency')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        if not v.isalpha():
            raise ValueError(f"Invalid currency code: {v}")
        return v.upper()


class Conto(BaseModel):
    """
    A financial instrument belonging to an account.

    The balance is never stored: it is the initial balance plus every
    incoming movement minus every outgoing one (see calculations.balance).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    account_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    type: ContoType = ContoType.CHECKING
    initial_balance: Decimal = Field(
        default=Decimal("0"),
        description="Balance before any recorded transaction (may be negative)"
    )
    description: Optional[str] = Field(default=None, max_length=500)
    color: str = Field(default="#007AFF", pattern=HEX_COLOR_PATTERN)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)

    # Credit card only
    credit_limit: Optional[Decimal] = Field(default=None, gt=0)
    statement_closing_day: Optional[int] = Field(default=None, ge=1, le=28)
    payment_due_day: Optional[int] = Field(default=None, ge=1, le=28)

    # Investment only
    annual_interest_rate: Optional[Decimal] = Field(
        default=None,
        ge=0,
        le=100,
        description="Expected annual return, in percent"
    )

    # Savings only
    savings_goal: Optional[Decimal] = Field(default=None, gt=0)

    @model_validator(mode='after')
    def validate_type_specific_fields(self) -> 'Conto':
        """Type-specific fields only make sense on their own conto type."""
        credit_fields = (
            self.credit_limit,
            self.statement_closing_day,
            self.payment_due_day,
        )
        if self.type != ContoType.CREDIT and any(f is not None for f in credit_fields):
            raise ValueError("Credit limit and statement days are only valid on credit conti")
        if self.type != ContoType.INVESTMENT and self.annual_interest_rate is not None:
            raise ValueError("Interest rate is only valid on investment conti")
        if self.type != ContoType.SAVINGS and self.savings_goal is not None:
            raise ValueError("Savings goal is only valid on savings conti")
        return self


class Category(BaseModel):
    """Transaction category, optionally nested under a parent."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    account_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field(default="#007AFF", pattern=HEX_COLOR_PATTERN)
    icon: str = Field(default="tag", max_length=50)
    parent_category_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def is_subcategory(self) -> bool:
        return self.parent_category_id is not None

    @model_validator(mode='after')
    def validate_parent(self) -> 'Category':
        if self.parent_category_id == self.id:
            raise ValueError("A category cannot be its own parent")
        return self


# Seeded into every new account: (name, color)
DEFAULT_CATEGORIES: list[tuple[str, str]] = [
    # Income
    ("Stipendio", "#4CAF50"),
    ("Freelance", "#8BC34A"),
    ("Investimenti", "#CDDC39"),
    ("Vendite", "#FFC107"),
    ("Bonus", "#2E7D32"),
    ("Rimborsi", "#388E3C"),
    # Expenses
    ("Alimentari", "#F44336"),
    ("Trasporti", "#2196F3"),
    ("Casa", "#9C27B0"),
    ("Utenze", "#673AB7"),
    ("Salute", "#E91E63"),
    ("Intrattenimento", "#FF5722"),
    ("Abbigliamento", "#795548"),
    ("Educazione", "#607D8B"),
    ("Regali", "#FF4081"),
    ("Ristoranti", "#FF6F00"),
    ("Viaggi", "#1976D2"),
    ("Sport", "#FF9800"),
    ("Tecnologia", "#455A64"),
    ("Altro", "#9E9E9E"),
]


class Transaction(BaseModel):
    """
    A single money movement.

    CRITICAL: Which conti are set depends on the type:
    - income:   to_conto_id only
    - expense:  from_conto_id only
    - transfer: both, distinct, and no category
    Anything else is rejected at construction time.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    account_id: UUID
    type: TransactionType
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Always positive; the type carries the direction"
    )
    date: datetime = Field(..., description="When the movement happened (naive UTC)")
    description: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=1000)

    from_conto_id: Optional[UUID] = None
    to_conto_id: Optional[UUID] = None
    category_id: Optional[UUID] = None

    # Recurrence
    is_recurring: bool = False
    recurrence_frequency: Optional[RecurrenceFrequency] = None
    recurrence_end_date: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode='after')
    def validate_conti_for_type(self) -> 'Transaction':
        if self.type == TransactionType.INCOME:
            if self.to_conto_id is None:
                raise ValueError("Income requires a destination conto")
            if self.from_conto_id is not None:
                raise ValueError("Income cannot have a source conto")
        elif self.type == TransactionType.EXPENSE:
            if self.from_conto_id is None:
                raise ValueError("Expense requires a source conto")
            if self.to_conto_id is not None:
                raise ValueError("Expense cannot have a destination conto")
        else:
            if self.from_conto_id is None or self.to_conto_id is None:
                raise ValueError("Transfer requires both source and destination conti")
            if self.from_conto_id == self.to_conto_id:
                raise ValueError("Transfer source and destination must differ")
            if self.category_id is not None:
                raise ValueError("Transfers cannot have a category")
        return self

    @model_validator(mode='after')
    def validate_recurrence(self) -> 'Transaction':
        if self.is_recurring and self.recurrence_frequency is None:
            raise ValueError("Recurring transactions require a frequency")
        if self.recurrence_end_date and self.recurrence_end_date < self.date:
            raise ValueError("Recurrence end date cannot be before the transaction date")
        return self

    @property
    def display_amount(self) -> Decimal:
        """Signed amount for display: expenses are negative."""
        if self.type == TransactionType.EXPENSE:
            return -self.amount
        return self.amount

    @property
    def conto_ids(self) -> set[UUID]:
        return {cid for cid in (self.from_conto_id, self.to_conto_id) if cid is not None}

    def involves(self, conto_id: UUID) -> bool:
        return conto_id in self.conto_ids


class Budget(BaseModel):
    """Spending cap over a set of categories for a recurring period."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    account_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., ge=0)
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    start_date: datetime = Field(default_factory=utc_now)
    alert_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Fraction of the amount at which to alert"
    )
    include_recurring_transactions: bool = True
    category_ids: list[UUID] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)


class SavingsGoal(BaseModel):
    """A target amount with progress tracking."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    account_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    target_amount: Decimal = Field(..., gt=0)
    current_amount: Decimal = Field(default=Decimal("0"), ge=0)
    target_date: Optional[date] = None
    category: GoalCategory = GoalCategory.OTHER
    status: GoalStatus = GoalStatus.ACTIVE
    description: Optional[str] = Field(default=None, max_length=500)
    category_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def progress_percentage(self) -> float:
        ratio = min(self.current_amount / self.target_amount, Decimal("1"))
        return float(ratio * 100)

    @property
    def remaining_amount(self) -> Decimal:
        return max(self.target_amount - self.current_amount, Decimal("0"))

    @property
    def is_completed(self) -> bool:
        return self.current_amount >= self.target_amount

    def days_until_target(self, today: Optional[date] = None) -> Optional[int]:
        """Days left until the target date (negative once passed)."""
        if self.target_date is None:
            return None
        today = today or utc_now().date()
        return (self.target_date - today).days

    def add_progress(self, amount: Decimal) -> None:
        """Add a contribution. An active goal that reaches its target completes."""
        if amount < 0:
            raise ValueError("Progress amount cannot be negative")
        self.current_amount += amount
        if self.is_completed and self.status == GoalStatus.ACTIVE:
            self.status = GoalStatus.COMPLETED


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'not_found', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage transaction validation.

    Stage 1: Schema validation (referenced conti exist, amounts positive)
    Stage 2: Semantic validation (dates, limits, duplicates)
    """

    transaction_id: UUID
    validated_at: datetime = Field(default_factory=utc_now)

    schema_valid: bool
    semantic_valid: bool
    is_valid: bool
    can_proceed: bool = Field(
        ...,
        description="True if the transaction may be saved (warnings allowed)"
    )

    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(
        default_factory=list,
        description="Non-blocking warnings"
    )

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")


# =============================================================================
# QUERY MODELS
# =============================================================================

class TransactionQuery(BaseModel):
    """
    A structured question about stored transactions.

    Executed deterministically by the QueryExecutor; the result only ever
    contains data read from storage.
    """

    query_id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=utc_now)

    query_type: str = Field(
        ...,
        pattern="^(lookup|aggregate|compare|list|exists)$",
        description="Type of query to execute"
    )

    # Filters
    account_id: Optional[UUID] = None
    type_filter: Optional[TransactionType] = None
    category_filter: Optional[UUID] = None
    conto_filter: Optional[UUID] = None
    text_filter: Optional[str] = Field(
        default=None,
        description="Case-insensitive match on description or notes"
    )
    date_from: Optional[date] = None
    date_to: Optional[date] = Field(
        default=None,
        description="Inclusive last day"
    )

    # For aggregations
    aggregation_type: Optional[str] = Field(
        default=None,
        pattern="^(sum|count|average|min|max)$"
    )
    group_by: Optional[str] = Field(
        default=None,
        pattern="^(category|conto|month|year)$"
    )

    limit: int = Field(
        default=10,
        ge=1,
        le=100
    )

    @model_validator(mode='after')
    def validate_range(self) -> 'TransactionQuery':
        if self.date_from and self.date_to and self.date_to < self.date_from:
            raise ValueError("date_to cannot be before date_from")
        return self


class QueryResult(BaseModel):
    """Result of executing a TransactionQuery."""

    query_id: UUID
    executed_at: datetime = Field(default_factory=utc_now)

    success: bool
    error_message: Optional[str] = None

    data_found: bool = Field(
        ...,
        description="Was any data found?"
    )
    result_count: int = Field(
        ge=0,
        description="Number of results"
    )
    results: list[dict] = Field(default_factory=list)
    aggregation_result: Optional[dict] = None

    query_description: str = Field(
        ...,
        description="Human-readable description of what was queried"
    )
