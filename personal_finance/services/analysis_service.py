"""
Financial Analysis

Category breakdowns, the 50/30/20 budgeting rule and simple tips.

DESIGN DECISION: Necessities and wants are recognised by category NAME,
configured in AnalysisSettings. Users rename categories freely, so anything
not listed in either bucket simply doesn't count towards them; it still
reduces savings because savings are income minus ALL expenses.
"""

from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from personal_finance.calculations.balance import ZERO
from personal_finance.calculations.periods import (
    analysis_period_range,
    previous_analysis_period_range,
)
from personal_finance.config import AnalysisSettings, get_settings
from personal_finance.models.analytics import (
    AnalysisPeriod,
    BudgetRuleAnalysis,
    BudgetRuleBucket,
    CategoryAnalysis,
    FinancialTip,
)
from personal_finance.models.ledger import (
    Category,
    Transaction,
    TransactionType,
    utc_now,
)
from personal_finance.services.statistics_service import UNCATEGORIZED


# Extra points above the ideal share before a bucket goes from warning to over budget
WARNING_MARGIN = 10.0

# Savings rate (percent) under which the user is nudged to save more
LOW_SAVINGS_RATE = 10.0

# Share of expenses (percent) above which the top category gets a tip
DOMINANT_CATEGORY_SHARE = 30.0

_PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


def _percent(part: Decimal, whole: Decimal) -> float:
    if whole <= 0:
        return 0.0
    return float(part / whole * 100)


class FinancialAnalysisService:
    """Read-only analysis over one account's transactions."""

    def __init__(self, settings: Optional[AnalysisSettings] = None):
        self._settings = settings or get_settings().analysis

    # =========================================================================
    # CATEGORY ANALYSIS
    # =========================================================================

    @staticmethod
    def _expenses_by_category(
        transactions: Iterable[Transaction],
        start: datetime,
        end: datetime,
    ) -> tuple[dict[Optional[UUID], Decimal], dict[Optional[UUID], int]]:
        amounts: dict[Optional[UUID], Decimal] = defaultdict(lambda: ZERO)
        counts: dict[Optional[UUID], int] = defaultdict(int)
        for tx in transactions:
            if tx.type == TransactionType.EXPENSE and start <= tx.date < end:
                amounts[tx.category_id] += tx.amount
                counts[tx.category_id] += 1
        return amounts, counts

    def _trend(self, current: Decimal, previous: Decimal) -> str:
        if previous <= 0:
            return "new"
        change = float((current - previous) / previous)
        if change > self._settings.trend_band:
            return "up"
        if change < -self._settings.trend_band:
            return "down"
        return "stable"

    def category_analysis(
        self,
        transactions: Iterable[Transaction],
        categories: Iterable[Category],
        period: AnalysisPeriod = AnalysisPeriod.MONTH,
        now: Optional[datetime] = None,
    ) -> list[CategoryAnalysis]:
        """Expense breakdown per category, largest first."""
        now = now or utc_now()
        txs = list(transactions)
        names = {c.id: c.name for c in categories}

        amounts, counts = self._expenses_by_category(
            txs, *analysis_period_range(period, now)
        )
        previous, _ = self._expenses_by_category(
            txs, *previous_analysis_period_range(period, now)
        )
        total = sum(amounts.values(), ZERO)

        result = [
            CategoryAnalysis(
                category_id=cat_id,
                name=names.get(cat_id, UNCATEGORIZED),
                amount=amount,
                percentage=_percent(amount, total),
                transaction_count=counts[cat_id],
                trend=self._trend(amount, previous.get(cat_id, ZERO)),
            )
            for cat_id, amount in amounts.items()
        ]
        result.sort(key=lambda item: item.amount, reverse=True)
        return result

    # =========================================================================
    # 50/30/20 RULE
    # =========================================================================

    @staticmethod
    def _spending_status(percentage: float, ideal: float) -> str:
        if percentage <= ideal:
            return "on_track"
        if percentage <= ideal + WARNING_MARGIN:
            return "warning"
        return "over_budget"

    @staticmethod
    def _savings_status(percentage: float, ideal: float) -> str:
        if percentage >= ideal:
            return "on_track"
        if percentage >= ideal - WARNING_MARGIN:
            return "warning"
        return "over_budget"

    def budget_rule_50_30_20(
        self,
        transactions: Iterable[Transaction],
        categories: Iterable[Category],
        period: AnalysisPeriod = AnalysisPeriod.MONTH,
        now: Optional[datetime] = None,
    ) -> BudgetRuleAnalysis:
        now = now or utc_now()
        start, end = analysis_period_range(period, now)
        names = {c.id: c.name.casefold() for c in categories}
        necessities_names = {n.casefold() for n in self._settings.necessities_list}
        wants_names = {n.casefold() for n in self._settings.wants_list}

        income = ZERO
        expenses = ZERO
        necessities = ZERO
        wants = ZERO
        for tx in transactions:
            if not (start <= tx.date < end):
                continue
            if tx.type == TransactionType.INCOME:
                income += tx.amount
            elif tx.type == TransactionType.EXPENSE:
                expenses += tx.amount
                name = names.get(tx.category_id)
                if name in necessities_names:
                    necessities += tx.amount
                elif name in wants_names:
                    wants += tx.amount

        savings = income - expenses
        ideal_necessities = self._settings.ideal_necessities_share * 100
        ideal_wants = self._settings.ideal_wants_share * 100
        ideal_savings = self._settings.ideal_savings_share * 100

        necessities_pct = _percent(necessities, income)
        wants_pct = _percent(wants, income)
        savings_pct = _percent(savings, income) if income > 0 else 0.0

        return BudgetRuleAnalysis(
            income=income,
            expenses=expenses,
            necessities=BudgetRuleBucket(
                name="Necessità",
                amount=necessities,
                percentage=necessities_pct,
                ideal_percentage=ideal_necessities,
                status=self._spending_status(necessities_pct, ideal_necessities),
            ),
            wants=BudgetRuleBucket(
                name="Desideri",
                amount=wants,
                percentage=wants_pct,
                ideal_percentage=ideal_wants,
                status=self._spending_status(wants_pct, ideal_wants),
            ),
            savings=BudgetRuleBucket(
                name="Risparmi",
                amount=savings,
                percentage=savings_pct,
                ideal_percentage=ideal_savings,
                status=self._savings_status(savings_pct, ideal_savings),
            ),
        )

    # =========================================================================
    # TIPS
    # =========================================================================

    def financial_tips(
        self,
        transactions: Iterable[Transaction],
        categories: Iterable[Category],
        period: AnalysisPeriod = AnalysisPeriod.MONTH,
        now: Optional[datetime] = None,
    ) -> list[FinancialTip]:
        """Tips ordered high, medium, low priority."""
        txs = list(transactions)
        categories = list(categories)
        rule = self.budget_rule_50_30_20(txs, categories, period, now)
        breakdown = self.category_analysis(txs, categories, period, now)

        tips = []
        if rule.savings_rate < LOW_SAVINGS_RATE:
            tips.append(FinancialTip(
                title="Aumenta i tuoi Risparmi",
                message=(
                    "Cerca di risparmiare almeno il 20% delle tue entrate "
                    "per costruire un futuro finanziario solido."
                ),
                priority="high",
            ))

        if rule.necessities.status == "over_budget":
            tips.append(FinancialTip(
                title="Controlla le Spese Essenziali",
                message=(
                    "Le tue spese essenziali superano il 50% del reddito. "
                    "Cerca modi per ridurle."
                ),
                priority="high",
            ))

        if breakdown and breakdown[0].percentage > DOMINANT_CATEGORY_SHARE:
            top = breakdown[0]
            tips.append(FinancialTip(
                title=f"Monitora {top.name}",
                message=(
                    f"Questa categoria rappresenta il {top.percentage:.1f}% "
                    "delle tue spese. Considera se puoi ottimizzarla."
                ),
                priority="medium",
            ))

        tips.append(FinancialTip(
            title="Monitora Regolarmente",
            message=(
                "Controlla le tue finanze almeno una volta a settimana "
                "per rimanere sulla buona strada."
            ),
            priority="low",
        ))

        return sorted(tips, key=lambda tip: _PRIORITY_ORDER[tip.priority])
