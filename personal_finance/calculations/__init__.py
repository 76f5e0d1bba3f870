"""Pure calculation helpers (no storage access)."""

from personal_finance.calculations.balance import (
    BalanceCalculator,
    credit_limit_remaining,
    credit_limit_usage_ratio,
    credit_usage_level,
    current_month_spending,
    projected_annual_return,
    savings_goal_progress,
    savings_goal_remaining,
)
from personal_finance.calculations.periods import (
    add_months,
    analysis_period_range,
    budget_period_range,
    chart_period_end,
    chart_period_start,
    end_of_month,
    previous_analysis_period_range,
    previous_budget_period_range,
    start_of_month,
    statistics_period_range,
)
from personal_finance.calculations.recurrence import (
    generate_recurrence_dates,
    is_recurrence_active,
    next_recurrence_date,
    occurrences_in_range,
)

__all__ = [
    "BalanceCalculator",
    "credit_limit_remaining",
    "credit_limit_usage_ratio",
    "credit_usage_level",
    "current_month_spending",
    "projected_annual_return",
    "savings_goal_progress",
    "savings_goal_remaining",
    "add_months",
    "analysis_period_range",
    "budget_period_range",
    "chart_period_end",
    "chart_period_start",
    "end_of_month",
    "previous_analysis_period_range",
    "previous_budget_period_range",
    "start_of_month",
    "statistics_period_range",
    "generate_recurrence_dates",
    "is_recurrence_active",
    "next_recurrence_date",
    "occurrences_in_range",
]
