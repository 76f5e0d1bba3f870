"""
Tests for periods, recurrence and balance calculations.
"""

import pytest
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from personal_finance.calculations.balance import (
    BalanceCalculator,
    credit_limit_remaining,
    credit_limit_usage_ratio,
    credit_usage_level,
    current_month_spending,
    savings_goal_progress,
)
from personal_finance.calculations.periods import (
    budget_period_range,
    chart_period_start,
    end_of_month,
    previous_budget_period_range,
    start_of_week,
    statistics_period_range,
)
from personal_finance.calculations.recurrence import (
    generate_recurrence_dates,
    is_recurrence_active,
    next_recurrence_date,
    occurrences_in_range,
)
from personal_finance.models.analytics import ChartPeriod, StatisticsPeriod
from personal_finance.models.ledger import (
    Account,
    BudgetPeriod,
    Conto,
    ContoType,
    RecurrenceFrequency,
    Transaction,
    TransactionType,
)


def _conto(account_id, name="Banca", initial="0", **kwargs):
    return Conto(account_id=account_id, name=name, initial_balance=Decimal(initial), **kwargs)


def _income(account_id, conto, amount, when, **kwargs):
    return Transaction(
        account_id=account_id,
        type=TransactionType.INCOME,
        amount=Decimal(amount),
        date=when,
        to_conto_id=conto.id,
        **kwargs,
    )


def _expense(account_id, conto, amount, when, **kwargs):
    return Transaction(
        account_id=account_id,
        type=TransactionType.EXPENSE,
        amount=Decimal(amount),
        date=when,
        from_conto_id=conto.id,
        **kwargs,
    )


def _transfer(account_id, source, target, amount, when):
    return Transaction(
        account_id=account_id,
        type=TransactionType.TRANSFER,
        amount=Decimal(amount),
        date=when,
        from_conto_id=source.id,
        to_conto_id=target.id,
    )


class TestPeriods:
    """Tests for calendar ranges."""

    def test_week_starts_on_monday(self):
        assert start_of_week(datetime(2024, 5, 15, 18, 30)) == datetime(2024, 5, 13)

    def test_monthly_budget_range(self):
        assert budget_period_range(BudgetPeriod.MONTHLY, datetime(2024, 5, 15, 10)) == (
            datetime(2024, 5, 1),
            datetime(2024, 6, 1),
        )

    def test_quarterly_budget_range(self):
        assert budget_period_range(BudgetPeriod.QUARTERLY, datetime(2024, 5, 15)) == (
            datetime(2024, 4, 1),
            datetime(2024, 7, 1),
        )

    def test_previous_monthly_range(self):
        assert previous_budget_period_range(BudgetPeriod.MONTHLY, datetime(2024, 3, 31)) == (
            datetime(2024, 2, 1),
            datetime(2024, 3, 1),
        )

    def test_all_time_statistics_unbounded(self):
        assert statistics_period_range(StatisticsPeriod.ALL_TIME, datetime(2024, 5, 1)) == (None, None)

    def test_end_of_month_leap_year(self):
        assert end_of_month(datetime(2024, 2, 10, 9)) == datetime(2024, 2, 29)

    def test_chart_period_start(self):
        now = datetime(2024, 5, 15)
        assert chart_period_start(ChartPeriod.ONE_MONTH, now) == datetime(2024, 5, 1)
        assert chart_period_start(ChartPeriod.THREE_MONTHS, now) == datetime(2024, 3, 1)
        assert chart_period_start(ChartPeriod.ALL, now) == datetime(2022, 6, 1)

    def test_one_month_chart_follows_selected_month(self):
        assert chart_period_start(
            ChartPeriod.ONE_MONTH, datetime(2024, 5, 15), datetime(2024, 2, 10)
        ) == datetime(2024, 2, 1)


class TestRecurrence:
    """Tests for recurrence scheduling."""

    def _rent(self, when, end=None):
        account_id = uuid4()
        return _expense(
            account_id,
            _conto(account_id),
            "800",
            when,
            is_recurring=True,
            recurrence_frequency=RecurrenceFrequency.MONTHLY,
            recurrence_end_date=end,
        )

    def test_monthly_on_the_31st_is_anchored(self):
        """Test that a charge on the 31st returns to the 31st after February."""
        tx = self._rent(datetime(2024, 1, 31))
        assert generate_recurrence_dates(tx, datetime(2024, 4, 30)) == [
            datetime(2024, 2, 29),
            datetime(2024, 3, 31),
            datetime(2024, 4, 30),
        ]

    def test_end_date_caps_occurrences(self):
        tx = self._rent(datetime(2024, 1, 10), end=datetime(2024, 3, 10))
        assert generate_recurrence_dates(tx, datetime(2025, 1, 1)) == [
            datetime(2024, 2, 10),
            datetime(2024, 3, 10),
        ]

    def test_next_recurrence_date(self):
        assert next_recurrence_date(self._rent(datetime(2024, 1, 10))) == datetime(2024, 2, 10)

    def test_non_recurring_has_no_occurrences(self):
        account_id = uuid4()
        tx = _expense(account_id, _conto(account_id), "5", datetime(2024, 1, 1))
        assert next_recurrence_date(tx) is None
        assert generate_recurrence_dates(tx, datetime(2025, 1, 1)) == []

    def test_is_recurrence_active(self):
        tx = self._rent(datetime(2024, 1, 10), end=datetime(2024, 3, 10))
        assert is_recurrence_active(tx, datetime(2024, 3, 1)) is True
        assert is_recurrence_active(tx, datetime(2024, 3, 11)) is False

    def test_occurrences_in_half_open_range(self):
        tx = self._rent(datetime(2024, 1, 1))
        assert occurrences_in_range(tx, datetime(2024, 2, 1), datetime(2024, 4, 1)) == 2


class TestBalanceCalculator:
    """Tests for derived balances."""

    def test_conto_balance(self):
        account_id = uuid4()
        conto = _conto(account_id, initial="100")
        txs = [
            _income(account_id, conto, "50", datetime(2024, 5, 1)),
            _expense(account_id, conto, "30", datetime(2024, 5, 2)),
        ]
        assert BalanceCalculator.conto_balance(conto, txs) == Decimal("120")
        assert BalanceCalculator.conto_balance(conto, txs, as_of=datetime(2024, 5, 1, 12)) == Decimal("150")

    def test_internal_transfer_nets_to_zero(self):
        account_id = uuid4()
        a, b = _conto(account_id, "A"), _conto(account_id, "B")
        tx = _transfer(account_id, a, b, "40", datetime(2024, 5, 1))
        assert BalanceCalculator.net_change(tx, {a.id, b.id}) == Decimal("0")
        assert BalanceCalculator.net_change(tx, {a.id}) == Decimal("-40")

    def test_account_total_skips_inactive_conti(self):
        account_id = uuid4()
        active = _conto(account_id, "A", "100")
        inactive = _conto(account_id, "B", "500", is_active=False)
        assert BalanceCalculator.account_total_balance([active, inactive], []) == Decimal("100")

    def test_percentage_change_uses_absolute_start(self):
        assert BalanceCalculator.percentage_change(Decimal("-100"), Decimal("-50")) == pytest.approx(50.0)
        assert BalanceCalculator.percentage_change(Decimal("0"), Decimal("50")) == 0.0

    def test_chart_y_domain(self):
        assert BalanceCalculator.chart_y_domain([]) == (Decimal("0"), Decimal("100"))
        assert BalanceCalculator.chart_y_domain([Decimal("10"), Decimal("10")]) == (
            Decimal("-40"),
            Decimal("60"),
        )
        assert BalanceCalculator.chart_y_domain([Decimal("0"), Decimal("100")]) == (
            Decimal("0"),
            Decimal("110"),
        )

    def test_monthly_totals_exclude_transfers(self):
        account_id = uuid4()
        a, b = _conto(account_id, "A"), _conto(account_id, "B")
        txs = [
            _income(account_id, a, "1000", datetime(2024, 5, 2)),
            _expense(account_id, a, "200", datetime(2024, 5, 3)),
            _transfer(account_id, a, b, "300", datetime(2024, 5, 4)),
            _expense(account_id, a, "999", datetime(2024, 6, 1)),
        ]
        assert BalanceCalculator.monthly_totals(txs, {a.id, b.id}, datetime(2024, 5, 1)) == (
            Decimal("1000"),
            Decimal("200"),
        )

    def test_balance_history_points(self):
        """Test start point, one point per active day and the month-end anchor."""
        account_id = uuid4()
        conto = _conto(account_id)
        txs = [
            _income(account_id, conto, "20", datetime(2024, 4, 20)),
            _income(account_id, conto, "50", datetime(2024, 5, 10, 12)),
        ]
        history = BalanceCalculator.balance_history(
            txs, {conto.id}, Decimal("100"), datetime(2024, 5, 1), datetime(2024, 5, 31)
        )
        assert [(p.date, p.balance) for p in history] == [
            (datetime(2024, 5, 1), Decimal("120")),
            (datetime(2024, 5, 10), Decimal("170")),
            (datetime(2024, 5, 31), Decimal("170")),
        ]

    def test_split_history_one_month_adds_future(self):
        account_id = uuid4()
        conto = _conto(account_id)
        history = BalanceCalculator.balance_history(
            [], {conto.id}, Decimal("10"), datetime(2024, 5, 1), datetime(2024, 5, 31)
        )
        past, future = BalanceCalculator.split_balance_history(
            history, ChartPeriod.ONE_MONTH, datetime(2024, 5, 15, 9)
        )
        assert [p.date for p in past] == [datetime(2024, 5, 1)]
        assert [p.date for p in future] == [datetime(2024, 5, 15), datetime(2024, 5, 31)]
        assert all(p.balance == Decimal("10") for p in future)

    def test_multi_conto_history_skips_idle_conti(self):
        account_id = uuid4()
        busy, idle = _conto(account_id, "A"), _conto(account_id, "B", "5")
        txs = [_income(account_id, busy, "30", datetime(2024, 5, 2))]
        series = BalanceCalculator.multi_conto_balance_history(
            [busy, idle], txs, 2, datetime(2024, 5, 15)
        )
        assert {p.series_id for p in series} == {busy.id}
        assert [(p.date, p.balance) for p in series] == [
            (datetime(2024, 4, 1), Decimal("0")),
            (datetime(2024, 5, 1), Decimal("30")),
        ]

    def test_multi_account_history(self):
        account = Account(name="Casa")
        conto = _conto(account.id, initial="100")
        txs = [_expense(account.id, conto, "40", datetime(2024, 5, 3))]
        series = BalanceCalculator.multi_account_balance_history(
            [account], [conto], txs, 2, datetime(2024, 5, 15)
        )
        assert [p.balance for p in series] == [Decimal("100"), Decimal("60")]

    def test_conti_changes(self):
        account_id = uuid4()
        conto = _conto(account_id, initial="100")
        txs = [
            _income(account_id, conto, "100", datetime(2024, 5, 5)),
            _income(account_id, conto, "100", datetime(2024, 6, 5)),
        ]
        [change] = BalanceCalculator.conti_changes(
            [conto], txs, datetime(2024, 5, 1), datetime(2024, 6, 1)
        )
        assert change.start_balance == Decimal("100")
        assert change.end_balance == Decimal("200")
        assert change.percentage_change == pytest.approx(100.0)

    def test_format_compact_currency(self):
        assert BalanceCalculator.format_compact_currency(Decimal("1500000")) == "1.5M €"
        assert BalanceCalculator.format_compact_currency(Decimal("42")) == "42 €"


class TestContoFigures:
    """Tests for credit and savings helpers."""

    def test_credit_usage(self):
        account_id = uuid4()
        card = _conto(account_id, "Visa", type=ContoType.CREDIT, credit_limit=Decimal("1000"))
        txs = [
            _expense(account_id, card, "750", datetime(2024, 5, 3)),
            _expense(account_id, card, "500", datetime(2024, 4, 3)),
        ]
        spent = current_month_spending(card, txs, datetime(2024, 5, 20))
        assert spent == Decimal("750")
        ratio = credit_limit_usage_ratio(card, spent)
        assert ratio == pytest.approx(0.75)
        assert credit_usage_level(ratio) == "warning"
        assert credit_limit_remaining(card, spent) == Decimal("250")

    def test_savings_goal_progress(self):
        account_id = uuid4()
        conto = _conto(account_id, type=ContoType.SAVINGS, savings_goal=Decimal("200"))
        assert savings_goal_progress(conto, Decimal("50")) == pytest.approx(0.25)
