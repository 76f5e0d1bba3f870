"""
Balance Calculator

Pure functions over in-memory lists of conti and transactions. Nothing in
here touches storage: services load the records once and pass them in.

DESIGN DECISION: A balance is never stored. Every figure is derived from
the conto's initial balance and its transactions, so editing or deleting a
transaction can never leave a stale total behind.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from personal_finance.calculations.periods import (
    add_months,
    end_of_month,
    start_of_day,
    start_of_month,
)
from personal_finance.models.analytics import (
    BalancePoint,
    ChartPeriod,
    ContoChange,
    SeriesBalancePoint,
)
from personal_finance.models.ledger import (
    Account,
    Conto,
    Transaction,
    TransactionType,
)


ZERO = Decimal("0")

# Credit usage levels
CREDIT_CRITICAL_RATIO = 0.9
CREDIT_WARNING_RATIO = 0.7


class BalanceCalculator:
    """
    Static balance computations used by the dashboard, statistics and widgets.

    Transactions are always judged relative to a set of conto ids: a
    transfer between two conti of the set nets to zero, a transfer leaving
    the set is an outflow.
    """

    @staticmethod
    def net_change(tx: Transaction, conto_ids: set[UUID]) -> Decimal:
        """Signed effect of one transaction on the total of `conto_ids`."""
        if tx.type == TransactionType.INCOME:
            return tx.amount if tx.to_conto_id in conto_ids else ZERO
        if tx.type == TransactionType.EXPENSE:
            return -tx.amount if tx.from_conto_id in conto_ids else ZERO

        change = ZERO
        if tx.from_conto_id in conto_ids:
            change -= tx.amount
        if tx.to_conto_id in conto_ids:
            change += tx.amount
        return change

    @staticmethod
    def conto_balance(
        conto: Conto,
        transactions: Iterable[Transaction],
        as_of: Optional[datetime] = None,
    ) -> Decimal:
        """Initial balance plus incoming minus outgoing (optionally up to `as_of`)."""
        balance = conto.initial_balance
        for tx in transactions:
            if as_of is not None and tx.date > as_of:
                continue
            if tx.to_conto_id == conto.id:
                balance += tx.amount
            if tx.from_conto_id == conto.id:
                balance -= tx.amount
        return balance

    @staticmethod
    def account_total_balance(
        conti: Iterable[Conto],
        transactions: Iterable[Transaction],
    ) -> Decimal:
        """Sum of the balances of the active conti."""
        txs = list(transactions)
        return BalanceCalculator.total_balance(
            BalanceCalculator.conto_balance(conto, txs)
            for conto in conti
            if conto.is_active
        )

    @staticmethod
    def total_balance(balances: Iterable[Decimal]) -> Decimal:
        return sum(balances, ZERO)

    @staticmethod
    def absolute_change(period_start: Decimal, current: Decimal) -> Decimal:
        return current - period_start

    @staticmethod
    def percentage_change(period_start: Decimal, current: Decimal) -> float:
        """
        Percent change relative to |period_start|.

        Using the absolute value keeps the sign meaningful when the start
        balance is negative. Returns 0 when the start is exactly zero.
        """
        if period_start == 0:
            return 0.0
        change = BalanceCalculator.absolute_change(period_start, current)
        return float(change / abs(period_start) * 100)

    @staticmethod
    def chart_y_domain(values: Iterable[Decimal]) -> tuple[Decimal, Decimal]:
        """Y-axis bounds with 10% padding. Positive-only data never dips below 0."""
        values = list(values)
        if not values:
            return ZERO, Decimal("100")

        low, high = min(values), max(values)
        if low == high:
            return low - 50, high + 50

        padding = (high - low) * Decimal("0.1")
        lower = max(ZERO, low - padding) if low >= 0 else low - padding
        return lower, high + padding

    @staticmethod
    def period_start_balance(
        current_total: Decimal,
        transactions: Iterable[Transaction],
        conto_ids: set[UUID],
        period_start: datetime,
        now: datetime,
    ) -> Decimal:
        """Current total minus everything that happened since the period started."""
        period_net = sum(
            (
                BalanceCalculator.net_change(tx, conto_ids)
                for tx in transactions
                if period_start <= tx.date <= now
            ),
            ZERO,
        )
        return current_total - period_net

    @staticmethod
    def monthly_totals(
        transactions: Iterable[Transaction],
        conto_ids: set[UUID],
        start: datetime,
        end: Optional[datetime] = None,
    ) -> tuple[Decimal, Decimal]:
        """
        (income, expenses) over [start, end). `end` defaults to one month later.

        Transfers are excluded: they move money without creating or
        destroying it.
        """
        end = end or add_months(start, 1)
        income = ZERO
        expenses = ZERO
        for tx in transactions:
            if not (start <= tx.date < end):
                continue
            if tx.type == TransactionType.INCOME and tx.to_conto_id in conto_ids:
                income += tx.amount
            elif tx.type == TransactionType.EXPENSE and tx.from_conto_id in conto_ids:
                expenses += tx.amount
        return income, expenses

    @staticmethod
    def balance_history(
        transactions: Iterable[Transaction],
        conto_ids: set[UUID],
        initial_balance: Decimal,
        period_start: datetime,
        period_end: datetime,
    ) -> list[BalancePoint]:
        """
        Chronological balance points for a chart.

        One start point, one end-of-day point per day with transactions, and
        an anchor on each month end (clipped to the period end) that has no
        point yet. Each anchor carries the balance as of the end of that day.
        """
        if period_start > period_end:
            return []

        ordered = sorted(transactions, key=lambda tx: tx.date)

        balance_before = initial_balance
        for tx in ordered:
            if tx.date >= period_start:
                break
            balance_before += BalanceCalculator.net_change(tx, conto_ids)

        in_period = [tx for tx in ordered if period_start <= tx.date <= period_end]

        points = [BalancePoint(date=period_start, balance=balance_before)]

        # End-of-day balance for every day with movements
        day_balances: dict[datetime, Decimal] = {}
        running = balance_before
        for tx in in_period:
            running += BalanceCalculator.net_change(tx, conto_ids)
            day_balances[start_of_day(tx.date)] = running
        points.extend(
            BalancePoint(date=day, balance=balance)
            for day, balance in sorted(day_balances.items())
        )

        covered_days = {start_of_day(p.date) for p in points}
        month = start_of_month(period_start)
        while month <= period_end:
            anchor = min(end_of_month(month), period_end)
            if start_of_day(anchor) not in covered_days:
                cutoff = start_of_day(anchor) + timedelta(days=1)
                balance = balance_before + sum(
                    (
                        BalanceCalculator.net_change(tx, conto_ids)
                        for tx in in_period
                        if tx.date < cutoff
                    ),
                    ZERO,
                )
                points.append(BalancePoint(date=anchor, balance=balance))
                covered_days.add(start_of_day(anchor))
            month = add_months(month, 1)

        return sorted(points, key=lambda p: p.date)

    @staticmethod
    def split_balance_history(
        history: list[BalancePoint],
        period: ChartPeriod,
        today: datetime,
        selected_month: Optional[datetime] = None,
    ) -> tuple[list[BalancePoint], list[BalancePoint]]:
        """
        Split a history into (past, future) for rendering.

        Only the one-month chart has a future segment: it starts with a
        "today" point and is extended flat to the end of the month.
        """
        today_start = start_of_day(today)
        end_of_today = today_start + timedelta(days=1)
        past = [p for p in history if p.date < end_of_today]

        if period != ChartPeriod.ONE_MONTH:
            return past, []

        future = [p for p in history if p.date >= end_of_today]
        if not past:
            return past, future

        last_balance = past[-1].balance
        today_point = BalancePoint(date=today_start, balance=last_balance)
        month_end = end_of_month(selected_month or today)

        if not future:
            if month_end > today_start:
                return past, [today_point, BalancePoint(date=month_end, balance=last_balance)]
            return past, []

        future.insert(0, today_point)
        if future[-1].date < month_end:
            future.append(BalancePoint(date=month_end, balance=future[-1].balance))
        return past, future

    @staticmethod
    def _monthly_net_changes(
        transactions: list[Transaction],
        conto_ids: set[UUID],
        months: int,
        now: datetime,
    ) -> tuple[list[tuple[datetime, Decimal]], bool]:
        """Net change per month, newest month first. Also reports whether any tx touched the set."""
        changes = []
        touched = False
        for i in range(months):
            month_start = start_of_month(add_months(now, -i))
            month_end = now if i == 0 else add_months(month_start, 1)
            net = ZERO
            for tx in transactions:
                in_month = month_start <= tx.date <= now if i == 0 else month_start <= tx.date < month_end
                if not in_month or not (tx.conto_ids & conto_ids):
                    continue
                touched = True
                net += BalanceCalculator.net_change(tx, conto_ids)
            changes.append((month_start, net))
        return changes, touched

    @staticmethod
    def _series_backwards(
        series_id: UUID,
        name: str,
        color_index: int,
        balance_now: Decimal,
        monthly: list[tuple[datetime, Decimal]],
    ) -> list[SeriesBalancePoint]:
        """Walk back from the current balance, one month at a time."""
        points = []
        running = balance_now
        for index, (month_start, _) in enumerate(monthly):
            if index > 0:
                running -= monthly[index - 1][1]
            points.append(SeriesBalancePoint(
                series_id=series_id,
                series_name=name,
                date=month_start,
                balance=running,
                color_index=color_index,
            ))
        points.reverse()
        return points

    @staticmethod
    def multi_account_balance_history(
        accounts: list[Account],
        conti: list[Conto],
        transactions: list[Transaction],
        months: int,
        now: datetime,
    ) -> list[SeriesBalancePoint]:
        """One monthly series per account, oldest month first within each series."""
        data: list[SeriesBalancePoint] = []
        for color_index, account in enumerate(accounts):
            account_conti = [c for c in conti if c.account_id == account.id]
            conto_ids = {c.id for c in account_conti}
            balance_now = sum((c.initial_balance for c in account_conti), ZERO) + sum(
                (
                    BalanceCalculator.net_change(tx, conto_ids)
                    for tx in transactions
                    if tx.date <= now
                ),
                ZERO,
            )
            monthly, _ = BalanceCalculator._monthly_net_changes(
                transactions, conto_ids, months, now
            )
            data.extend(BalanceCalculator._series_backwards(
                account.id, account.name, color_index, balance_now, monthly
            ))
        return data

    @staticmethod
    def multi_conto_balance_history(
        conti: list[Conto],
        transactions: list[Transaction],
        months: int,
        now: datetime,
    ) -> list[SeriesBalancePoint]:
        """One monthly series per conto. Conti without movements in the window are skipped."""
        data: list[SeriesBalancePoint] = []
        for color_index, conto in enumerate(conti):
            conto_ids = {conto.id}
            balance_now = BalanceCalculator.conto_balance(conto, transactions, as_of=now)
            monthly, touched = BalanceCalculator._monthly_net_changes(
                transactions, conto_ids, months, now
            )
            if not touched:
                continue
            data.extend(BalanceCalculator._series_backwards(
                conto.id, conto.name, color_index, balance_now, monthly
            ))
        return data

    @staticmethod
    def conti_changes(
        conti: list[Conto],
        transactions: list[Transaction],
        start: datetime,
        end: datetime,
    ) -> list[ContoChange]:
        """Per-conto movement over [start, end)."""
        changes = []
        for conto in conti:
            conto_ids = {conto.id}
            net = sum(
                (
                    BalanceCalculator.net_change(tx, conto_ids)
                    for tx in transactions
                    if start <= tx.date < end
                ),
                ZERO,
            )
            end_balance = BalanceCalculator.conto_balance(
                conto, [tx for tx in transactions if tx.date < end]
            )
            start_balance = end_balance - net
            changes.append(ContoChange(
                conto_id=conto.id,
                name=conto.name,
                start_balance=start_balance,
                end_balance=end_balance,
                absolute_change=net,
                percentage_change=BalanceCalculator.percentage_change(start_balance, end_balance),
            ))
        return changes

    @staticmethod
    def format_compact_currency(value: Decimal, symbol: str = "€") -> str:
        """Compact label for chart axes: "1.5M €", "500K €", "42 €"."""
        number = float(value)
        magnitude = abs(number)
        if magnitude >= 1_000_000:
            return f"{number / 1_000_000:.1f}M {symbol}"
        if magnitude >= 1_000:
            return f"{number / 1_000:.0f}K {symbol}"
        return f"{number:.0f} {symbol}"


# =============================================================================
# CONTO-SPECIFIC FIGURES
# =============================================================================

def current_month_spending(
    conto: Conto,
    transactions: Iterable[Transaction],
    now: datetime,
) -> Decimal:
    """Money that left the conto since the start of the current month."""
    month_start = start_of_month(now)
    month_end = add_months(month_start, 1)
    return sum(
        (
            tx.amount
            for tx in transactions
            if tx.from_conto_id == conto.id and month_start <= tx.date < month_end
        ),
        ZERO,
    )


def credit_limit_usage_ratio(conto: Conto, spending: Decimal) -> Optional[float]:
    if not conto.credit_limit:
        return None
    return float(spending / conto.credit_limit)


def credit_limit_remaining(conto: Conto, spending: Decimal) -> Optional[Decimal]:
    if not conto.credit_limit:
        return None
    return conto.credit_limit - spending


def credit_usage_level(ratio: Optional[float]) -> str:
    if ratio is None:
        return "normal"
    if ratio > CREDIT_CRITICAL_RATIO:
        return "critical"
    if ratio > CREDIT_WARNING_RATIO:
        return "warning"
    return "normal"


def projected_annual_return(conto: Conto, balance: Decimal) -> Optional[Decimal]:
    if conto.annual_interest_rate is None:
        return None
    return balance * conto.annual_interest_rate / 100


def savings_goal_progress(conto: Conto, balance: Decimal) -> Optional[float]:
    """Balance as a fraction of the conto's savings goal (may exceed 1)."""
    if not conto.savings_goal:
        return None
    return float(balance / conto.savings_goal)


def savings_goal_remaining(conto: Conto, balance: Decimal) -> Optional[Decimal]:
    if not conto.savings_goal:
        return None
    return max(conto.savings_goal - balance, ZERO)
