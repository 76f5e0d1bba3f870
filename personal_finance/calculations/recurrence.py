"""
Recurrence scheduling for recurring transactions.

Occurrences are computed from the anchor date (date + n * step) rather than
by repeatedly adding one step, so a monthly charge on the 31st lands on the
last day of February and returns to the 31st in March.
"""

from datetime import datetime
from typing import Optional

from personal_finance.models.ledger import Transaction, utc_now


# Guards against runaway loops on daily recurrences with far-away horizons
MAX_OCCURRENCES = 10000


def next_recurrence_date(tx: Transaction) -> Optional[datetime]:
    """First occurrence after the transaction's own date."""
    if not tx.is_recurring or tx.recurrence_frequency is None:
        return None
    return tx.date + tx.recurrence_frequency.step


def is_recurrence_active(tx: Transaction, now: Optional[datetime] = None) -> bool:
    if not tx.is_recurring or tx.recurrence_frequency is None:
        return False
    if tx.recurrence_end_date is None:
        return True
    return (now or utc_now()) <= tx.recurrence_end_date


def generate_recurrence_dates(tx: Transaction, until: datetime) -> list[datetime]:
    """
    Occurrences strictly after tx.date, up to min(recurrence_end_date, until).

    Both bounds are inclusive.
    """
    if not tx.is_recurring or tx.recurrence_frequency is None:
        return []

    horizon = until
    if tx.recurrence_end_date is not None and tx.recurrence_end_date < horizon:
        horizon = tx.recurrence_end_date

    step = tx.recurrence_frequency.step
    dates: list[datetime] = []
    n = 1
    while n <= MAX_OCCURRENCES:
        occurrence = tx.date + step * n
        if occurrence > horizon:
            break
        dates.append(occurrence)
        n += 1
    return dates


def occurrences_in_range(tx: Transaction, start: datetime, end: datetime) -> int:
    """Number of future occurrences inside the half-open range [start, end)."""
    return sum(1 for d in generate_recurrence_dates(tx, end) if start <= d < end)
