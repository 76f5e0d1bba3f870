"""
Personal Finance - Source Package

A household ledger: accounts split into conti, categorized income,
expenses and transfers, budgets, savings goals, statistics and CSV
import/export.

DESIGN PRINCIPLES:
1. Balances are derived from transactions, never stored
2. Fail early, fail visibly
3. No silent corrections
4. Every write must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Personal Finance Team"
