"""Query execution package."""

from personal_finance.queries.executor import QueryExecutionError, QueryExecutor

__all__ = ["QueryExecutionError", "QueryExecutor"]
