"""
Dashboard and Widget Summaries

Loads one account's records once and derives every dashboard figure from
them with the BalanceCalculator.
"""

from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

import structlog

from personal_finance.calculations.balance import ZERO, BalanceCalculator
from personal_finance.calculations.periods import (
    add_months,
    chart_months,
    chart_period_end,
    chart_period_start,
    start_of_day,
    start_of_month,
)
from personal_finance.config import LedgerSettings, get_settings
from personal_finance.models.analytics import (
    AccountSummary,
    ChartPeriod,
    DashboardData,
    MonthlyAmount,
    SeriesBalancePoint,
    TransactionSummary,
    WidgetData,
)
from personal_finance.models.ledger import Category, Transaction, utc_now
from personal_finance.services.storage import LedgerStorageInterface


logger = structlog.get_logger(__name__)


def summarize_transaction(
    tx: Transaction,
    category_names: Optional[dict[UUID, str]] = None,
) -> TransactionSummary:
    """Falls back to the category name, then the type, when there is no description."""
    description = tx.description
    if not description and category_names and tx.category_id in category_names:
        description = category_names[tx.category_id]
    return TransactionSummary(
        transaction_id=tx.id,
        description=description or tx.type.display_name,
        amount=tx.display_amount,
        date=tx.date,
        type=tx.type,
    )


class DashboardService:
    """Read-only views over the ledger for the dashboard and home-screen widget."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger

    def _recent(
        self,
        transactions: list[Transaction],
        now: datetime,
        categories: list[Category],
    ) -> list[TransactionSummary]:
        names = {c.id: c.name for c in categories}
        past = [tx for tx in transactions if tx.date <= now]
        past.sort(key=lambda t: t.date, reverse=True)
        return [
            summarize_transaction(tx, names)
            for tx in past[:self._settings.recent_transactions_count]
        ]

    async def build(
        self,
        account_id: UUID,
        chart_period: ChartPeriod = ChartPeriod.ONE_MONTH,
        now: Optional[datetime] = None,
        selected_month: Optional[datetime] = None,
    ) -> DashboardData:
        now = now or utc_now()
        conti = await self._storage.list_conti(account_id=account_id, active_only=True)
        transactions = await self._storage.list_transactions(account_id=account_id)
        categories = await self._storage.list_categories(account_id=account_id)
        conto_ids = {c.id for c in conti}

        total = BalanceCalculator.account_total_balance(conti, transactions)
        monthly_income, monthly_expenses = BalanceCalculator.monthly_totals(
            transactions, conto_ids, start_of_month(now)
        )

        period_start = chart_period_start(chart_period, now, selected_month)
        period_end = chart_period_end(chart_period, now, selected_month)
        start_balance = BalanceCalculator.period_start_balance(
            total, transactions, conto_ids, period_start, now
        )

        initial = sum((c.initial_balance for c in conti), ZERO)
        history = BalanceCalculator.balance_history(
            transactions, conto_ids, initial, period_start, period_end
        )
        past, future = BalanceCalculator.split_balance_history(
            history, chart_period, now, selected_month
        )
        y_domain = BalanceCalculator.chart_y_domain(p.balance for p in past + future)

        changes_end = start_of_day(period_end) + timedelta(days=1)
        conti_changes = BalanceCalculator.conti_changes(
            conti, transactions, period_start, changes_end
        )

        months = self._settings.expense_trend_months
        trend = []
        for offset in range(months - 1, -1, -1):
            month_start = start_of_month(add_months(now, -offset))
            _, expenses = BalanceCalculator.monthly_totals(transactions, conto_ids, month_start)
            trend.append(MonthlyAmount(month=month_start.date(), amount=expenses))

        # Averages over the completed months before the current one
        income_sum = ZERO
        expense_sum = ZERO
        for offset in range(1, months + 1):
            month_start = start_of_month(add_months(now, -offset))
            income, expenses = BalanceCalculator.monthly_totals(transactions, conto_ids, month_start)
            income_sum += income
            expense_sum += expenses

        logger.debug(
            "dashboard_built",
            account_id=str(account_id),
            chart_period=chart_period.value,
            points=len(history),
        )

        return DashboardData(
            account_id=account_id,
            chart_period=chart_period,
            total_balance=total,
            monthly_income=monthly_income,
            monthly_expenses=monthly_expenses,
            period_start_balance=start_balance,
            period_change=BalanceCalculator.absolute_change(start_balance, total),
            period_change_percentage=BalanceCalculator.percentage_change(start_balance, total),
            past_history=past,
            future_history=future,
            y_domain=y_domain,
            conti_changes=conti_changes,
            expense_trend=trend,
            average_monthly_income=income_sum / months,
            average_monthly_expenses=expense_sum / months,
            recent_transactions=self._recent(transactions, now, categories),
        )

    async def conto_series(
        self,
        account_id: UUID,
        chart_period: ChartPeriod = ChartPeriod.SIX_MONTHS,
        now: Optional[datetime] = None,
    ) -> list[SeriesBalancePoint]:
        """Monthly balance series per conto, for the stacked chart."""
        now = now or utc_now()
        conti = await self._storage.list_conti(account_id=account_id, active_only=True)
        transactions = await self._storage.list_transactions(account_id=account_id)
        return BalanceCalculator.multi_conto_balance_history(
            conti, transactions, chart_months(chart_period), now
        )

    async def account_series(
        self,
        chart_period: ChartPeriod = ChartPeriod.SIX_MONTHS,
        now: Optional[datetime] = None,
    ) -> list[SeriesBalancePoint]:
        """Monthly balance series per active account."""
        now = now or utc_now()
        accounts = await self._storage.list_accounts(active_only=True)
        conti = await self._storage.list_conti(active_only=True)
        transactions = await self._storage.list_transactions()
        return BalanceCalculator.multi_account_balance_history(
            accounts, conti, transactions, chart_months(chart_period), now
        )

    async def widget_summary(self, now: Optional[datetime] = None) -> WidgetData:
        """Balances of the active accounts and the latest transactions across them."""
        now = now or utc_now()
        summaries = []
        recent: list[Transaction] = []
        names: dict[UUID, str] = {}
        total = ZERO

        for account in await self._storage.list_accounts(active_only=True):
            conti = await self._storage.list_conti(account_id=account.id, active_only=True)
            transactions = await self._storage.list_transactions(account_id=account.id)
            balance = BalanceCalculator.account_total_balance(conti, transactions)
            total += balance
            summaries.append(AccountSummary(
                account_id=account.id,
                name=account.name,
                balance=balance,
                currency=account.currency,
            ))
            recent.extend(tx for tx in transactions if tx.date <= now)
            names.update(
                (c.id, c.name)
                for c in await self._storage.list_categories(account_id=account.id)
            )

        recent.sort(key=lambda t: t.date, reverse=True)
        return WidgetData(
            accounts=summaries,
            recent_transactions=[
                summarize_transaction(tx, names)
                for tx in recent[:self._settings.recent_transactions_count]
            ],
            total_balance=total,
            last_updated=now,
        )
