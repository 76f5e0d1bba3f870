"""
Account Statistics

Totals, counts and top categories for one account over a statistics period.
"""

from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

import structlog

from personal_finance.calculations.balance import ZERO, BalanceCalculator
from personal_finance.calculations.periods import statistics_period_range
from personal_finance.config import get_settings
from personal_finance.models.analytics import (
    AccountStatistics,
    CategoryAmount,
    StatisticsPeriod,
)
from personal_finance.models.ledger import (
    Account,
    Category,
    Conto,
    Transaction,
    TransactionType,
    utc_now,
)


logger = structlog.get_logger(__name__)

UNCATEGORIZED = "Senza categoria"


def unique_by_id(transactions: Iterable[Transaction]) -> list[Transaction]:
    """Drop repeated transactions, keeping the first occurrence of each id."""
    seen: set[UUID] = set()
    unique = []
    for tx in transactions:
        if tx.id in seen:
            continue
        seen.add(tx.id)
        unique.append(tx)
    return unique


class StatisticsService:
    """Computes AccountStatistics from in-memory records."""

    def __init__(self, top_count: Optional[int] = None):
        self._top_count = top_count or get_settings().ledger.top_categories_count

    def _top(
        self,
        amounts: dict[Optional[UUID], Decimal],
        names: dict[UUID, str],
    ) -> list[CategoryAmount]:
        ranked = sorted(amounts.items(), key=lambda item: item[1], reverse=True)
        return [
            CategoryAmount(name=names.get(cat_id, UNCATEGORIZED), amount=amount)
            for cat_id, amount in ranked[:self._top_count]
        ]

    def calculate(
        self,
        account: Account,
        conti: Iterable[Conto],
        transactions: Iterable[Transaction],
        period: StatisticsPeriod = StatisticsPeriod.MONTHLY,
        now: Optional[datetime] = None,
        categories: Optional[Iterable[Category]] = None,
    ) -> AccountStatistics:
        now = now or utc_now()
        account_conti = [c for c in conti if c.account_id == account.id]
        account_txs = [
            tx for tx in unique_by_id(transactions) if tx.account_id == account.id
        ]
        names = {c.id: c.name for c in categories or []}

        start, end = statistics_period_range(period, now)
        in_period = [
            tx for tx in account_txs
            if (start is None or tx.date >= start) and (end is None or tx.date < end)
        ]

        income = ZERO
        expenses = ZERO
        counts = {t: 0 for t in TransactionType}
        expense_by_category: dict[Optional[UUID], Decimal] = defaultdict(lambda: ZERO)
        income_by_category: dict[Optional[UUID], Decimal] = defaultdict(lambda: ZERO)

        for tx in in_period:
            counts[tx.type] += 1
            if tx.type == TransactionType.INCOME:
                income += tx.amount
                income_by_category[tx.category_id] += tx.amount
            elif tx.type == TransactionType.EXPENSE:
                expenses += tx.amount
                expense_by_category[tx.category_id] += tx.amount

        return AccountStatistics(
            account_id=account.id,
            period=period,
            period_start=start,
            period_end=end,
            total_balance=BalanceCalculator.account_total_balance(account_conti, account_txs),
            total_income=income,
            total_expenses=expenses,
            net_income=income - expenses,
            income_count=counts[TransactionType.INCOME],
            expense_count=counts[TransactionType.EXPENSE],
            transfer_count=counts[TransactionType.TRANSFER],
            top_expense_categories=self._top(expense_by_category, names),
            top_income_categories=self._top(income_by_category, names),
        )

    def update_all(
        self,
        accounts: Iterable[Account],
        conti: Iterable[Conto],
        transactions: Iterable[Transaction],
        period: StatisticsPeriod = StatisticsPeriod.MONTHLY,
        now: Optional[datetime] = None,
        categories: Optional[Iterable[Category]] = None,
    ) -> dict[UUID, AccountStatistics]:
        """Statistics for every active account, keyed by account id."""
        conti = list(conti)
        txs = list(transactions)
        categories = list(categories or [])

        results = {}
        for account in accounts:
            if not account.is_active:
                continue
            results[account.id] = self.calculate(
                account, conti, txs, period, now, categories
            )

        logger.info("statistics_updated", accounts=len(results), period=period.value)
        return results
