"""Transaction validation package."""

from personal_finance.validation.validator import TransactionValidator

__all__ = ["TransactionValidator"]
