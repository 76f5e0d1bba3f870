"""
Budget Progress

Computes how much of a budget has been used in its current calendar period,
how that compares to the previous one, and what the user can still spend
per day. Pure over in-memory lists; the ledger service loads the data.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from personal_finance.calculations.balance import ZERO
from personal_finance.calculations.periods import (
    budget_period_range,
    previous_budget_period_range,
    start_of_day,
)
from personal_finance.calculations.recurrence import (
    is_recurrence_active,
    occurrences_in_range,
)
from personal_finance.models.analytics import BudgetProgress
from personal_finance.models.ledger import (
    Budget,
    Transaction,
    TransactionType,
    utc_now,
)


CENT = Decimal("0.01")


class BudgetService:
    """
    Budget progress calculations.

    A budget with no categories covers every expense of its account.
    """

    @staticmethod
    def _covers(budget: Budget, tx: Transaction) -> bool:
        if tx.type != TransactionType.EXPENSE or tx.account_id != budget.account_id:
            return False
        if not budget.category_ids:
            return True
        return tx.category_id in budget.category_ids

    @staticmethod
    def spent_in_range(
        budget: Budget,
        transactions: Iterable[Transaction],
        start: datetime,
        end: datetime,
        now: Optional[datetime] = None,
    ) -> Decimal:
        """
        Expenses counted against the budget in [start, end).

        With include_recurring_transactions, each active recurring expense
        also contributes its future occurrences inside the range.
        """
        now = now or utc_now()
        spent = ZERO
        for tx in transactions:
            if not BudgetService._covers(budget, tx):
                continue
            if start <= tx.date < end:
                spent += tx.amount
            if budget.include_recurring_transactions and is_recurrence_active(tx, now):
                spent += tx.amount * occurrences_in_range(tx, start, end)
        return spent

    def progress(
        self,
        budget: Budget,
        transactions: Iterable[Transaction],
        now: Optional[datetime] = None,
    ) -> BudgetProgress:
        now = now or utc_now()
        txs = list(transactions)

        start, end = budget_period_range(budget.period, now)
        prev_start, prev_end = previous_budget_period_range(budget.period, now)

        spent = self.spent_in_range(budget, txs, start, end, now)
        previous_spent = self.spent_in_range(budget, txs, prev_start, prev_end, now)
        remaining = budget.amount - spent

        spent_percentage = float(spent / budget.amount) if budget.amount > 0 else 0.0

        days_remaining = max(0, (end - start_of_day(now)).days)
        total_seconds = (end - start).total_seconds()
        elapsed = (now - start).total_seconds()
        period_progress = min(1.0, max(0.0, elapsed / total_seconds))

        if days_remaining > 0 and remaining > 0:
            daily_suggested = (remaining / days_remaining).quantize(CENT, ROUND_HALF_UP)
        else:
            daily_suggested = ZERO

        if period_progress > 0:
            projected = (spent / Decimal(str(period_progress))).quantize(CENT, ROUND_HALF_UP)
        else:
            projected = spent

        if previous_spent > 0:
            change = float((spent - previous_spent) / previous_spent)
        else:
            change = 0.0

        return BudgetProgress(
            budget_id=budget.id,
            period_start=start,
            period_end=end,
            amount=budget.amount,
            spent=spent,
            remaining=remaining,
            spent_percentage=spent_percentage,
            is_over_budget=spent > budget.amount,
            should_alert=spent_percentage >= budget.alert_threshold,
            days_remaining=days_remaining,
            period_progress=period_progress,
            daily_suggested_spending=daily_suggested,
            projected_spending=projected,
            previous_period_spent=previous_spent,
            change_from_previous_period=change,
        )

    def alerts(
        self,
        budgets: Iterable[Budget],
        transactions: Iterable[Transaction],
        now: Optional[datetime] = None,
    ) -> list[BudgetProgress]:
        """Progress of the active budgets that crossed their alert threshold."""
        txs = list(transactions)
        result = []
        for budget in budgets:
            if not budget.is_active:
                continue
            progress = self.progress(budget, txs, now)
            if progress.should_alert:
                result.append(progress)
        return result
