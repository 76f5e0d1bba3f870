"""
Calendar ranges for budgets, statistics, analysis and charts.

Every range is half-open: (start, end) covers start <= t < end.
All datetimes are naive UTC.
"""

from datetime import datetime, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

from personal_finance.models.analytics import (
    AnalysisPeriod,
    ChartPeriod,
    StatisticsPeriod,
)
from personal_finance.models.ledger import BudgetPeriod


# Months loaded when the chart period has no fixed length
ALL_TIME_CHART_MONTHS = 24

DateRange = tuple[datetime, datetime]


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_month(moment: datetime) -> datetime:
    return start_of_day(moment).replace(day=1)


def add_months(moment: datetime, months: int) -> datetime:
    return moment + relativedelta(months=months)


def end_of_month(moment: datetime) -> datetime:
    """Midnight of the last day of the month containing `moment`."""
    return start_of_month(moment) + relativedelta(months=1, days=-1)


def start_of_week(moment: datetime) -> datetime:
    """Monday of the ISO week containing `moment`."""
    day = start_of_day(moment)
    return day - timedelta(days=day.weekday())


def start_of_quarter(moment: datetime) -> datetime:
    first_month = 3 * ((moment.month - 1) // 3) + 1
    return start_of_month(moment).replace(month=first_month)


def start_of_year(moment: datetime) -> datetime:
    return start_of_month(moment).replace(month=1)


# =============================================================================
# BUDGET PERIODS
# =============================================================================

_BUDGET_STEP = {
    BudgetPeriod.WEEKLY: relativedelta(weeks=1),
    BudgetPeriod.MONTHLY: relativedelta(months=1),
    BudgetPeriod.QUARTERLY: relativedelta(months=3),
    BudgetPeriod.YEARLY: relativedelta(years=1),
}


def budget_period_range(period: BudgetPeriod, ref: datetime) -> DateRange:
    """Current calendar range of `period` containing `ref`."""
    if period == BudgetPeriod.WEEKLY:
        start = start_of_week(ref)
    elif period == BudgetPeriod.MONTHLY:
        start = start_of_month(ref)
    elif period == BudgetPeriod.QUARTERLY:
        start = start_of_quarter(ref)
    else:
        start = start_of_year(ref)
    return start, start + _BUDGET_STEP[period]


def previous_budget_period_range(period: BudgetPeriod, ref: datetime) -> DateRange:
    start, _ = budget_period_range(period, ref)
    return start - _BUDGET_STEP[period], start


# =============================================================================
# STATISTICS PERIODS
# =============================================================================

def statistics_period_range(
    period: StatisticsPeriod,
    ref: datetime,
) -> tuple[Optional[datetime], Optional[datetime]]:
    """Range for account statistics. ALL_TIME is unbounded on both sides."""
    if period == StatisticsPeriod.DAILY:
        start = start_of_day(ref)
        return start, start + timedelta(days=1)
    if period == StatisticsPeriod.WEEKLY:
        start = start_of_week(ref)
        return start, start + timedelta(weeks=1)
    if period == StatisticsPeriod.MONTHLY:
        start = start_of_month(ref)
        return start, add_months(start, 1)
    if period == StatisticsPeriod.YEARLY:
        start = start_of_year(ref)
        return start, start + relativedelta(years=1)
    return None, None


# =============================================================================
# ANALYSIS PERIODS
# =============================================================================

_ANALYSIS_TO_BUDGET = {
    AnalysisPeriod.WEEK: BudgetPeriod.WEEKLY,
    AnalysisPeriod.MONTH: BudgetPeriod.MONTHLY,
    AnalysisPeriod.QUARTER: BudgetPeriod.QUARTERLY,
    AnalysisPeriod.YEAR: BudgetPeriod.YEARLY,
}


def analysis_period_range(period: AnalysisPeriod, ref: datetime) -> DateRange:
    return budget_period_range(_ANALYSIS_TO_BUDGET[period], ref)


def previous_analysis_period_range(period: AnalysisPeriod, ref: datetime) -> DateRange:
    return previous_budget_period_range(_ANALYSIS_TO_BUDGET[period], ref)


# =============================================================================
# CHART PERIODS
# =============================================================================

def chart_months(period: ChartPeriod) -> int:
    return period.months or ALL_TIME_CHART_MONTHS


def chart_period_start(
    period: ChartPeriod,
    now: datetime,
    selected_month: Optional[datetime] = None,
) -> datetime:
    """
    First instant shown on the balance chart.

    The one-month chart shows the selected month (default: the current one).
    Longer charts end at the current month and reach back `months - 1` months.
    """
    if period == ChartPeriod.ONE_MONTH:
        return start_of_month(selected_month or now)
    return add_months(start_of_month(now), -(chart_months(period) - 1))


def chart_period_end(
    period: ChartPeriod,
    now: datetime,
    selected_month: Optional[datetime] = None,
) -> datetime:
    if period == ChartPeriod.ONE_MONTH:
        return end_of_month(selected_month or now)
    return now
