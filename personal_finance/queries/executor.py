"""
Query Execution Engine

DESIGN DECISION: Query execution is DETERMINISTIC.
A caller (a screen, a report, an assistant) describes what it wants as a
TransactionQuery. This engine executes that query on actual stored data.

Nothing in a QueryResult is estimated or invented: every number is
computed from the transactions storage returned.
"""

from collections import defaultdict
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from personal_finance.audit import AuditLogger
from personal_finance.models.ledger import (
    QueryResult,
    Transaction,
    TransactionQuery,
)
from personal_finance.services.storage import LedgerStorageInterface


logger = structlog.get_logger(__name__)


class QueryExecutionError(Exception):
    """Error during query execution."""
    pass


class QueryExecutor:
    """
    Executes transaction queries against ledger storage.

    GUARANTEES:
    - Only returns real data from storage
    - Never invents or estimates
    - Clear "no data found" if nothing matches
    - Never raises: a failure becomes an unsuccessful QueryResult
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()

    async def execute(self, query: TransactionQuery) -> QueryResult:
        """Execute a query and return its results."""
        handlers = {
            "lookup": self._execute_lookup,
            "list": self._execute_list,
            "aggregate": self._execute_aggregate,
            "exists": self._execute_exists,
            "compare": self._execute_compare,
        }
        handler = handlers.get(query.query_type, self._execute_list)

        try:
            result = await handler(query)
        except Exception as e:
            logger.error(
                "query_failed",
                query_id=str(query.query_id),
                query_type=query.query_type,
                error=str(e),
            )
            await self._audit.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"query_id": str(query.query_id)},
            )
            return QueryResult(
                query_id=query.query_id,
                success=False,
                error_message=str(e),
                data_found=False,
                result_count=0,
                query_description=f"Query failed: {e}",
            )

        await self._audit.log_query_executed(
            query.query_id, query.query_type, result.result_count
        )
        return result

    # =========================================================================
    # FETCHING
    # =========================================================================

    async def _fetch(
        self,
        query: TransactionQuery,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        """Transactions matching every filter, newest first."""
        date_from = datetime.combine(query.date_from, time.min) if query.date_from else None
        # date_to is an inclusive day; storage ranges are half-open
        date_to = (
            datetime.combine(query.date_to + timedelta(days=1), time.min)
            if query.date_to else None
        )

        transactions = await self._storage.list_transactions(
            account_id=query.account_id,
            conto_id=query.conto_filter,
            transaction_type=query.type_filter,
            category_id=query.category_filter,
            date_from=date_from,
            date_to=date_to,
        )

        if query.text_filter:
            needle = query.text_filter.casefold()
            transactions = [
                tx for tx in transactions
                if needle in (tx.description or "").casefold()
                or needle in (tx.notes or "").casefold()
            ]

        if limit is not None:
            transactions = transactions[:limit]
        return transactions

    async def _group_key(self, tx: Transaction, group_by: str, names: dict) -> str:
        if group_by == "category":
            if tx.category_id is None:
                return "Senza categoria"
            if tx.category_id not in names:
                category = await self._storage.get_category_by_id(tx.category_id)
                names[tx.category_id] = category.name if category else str(tx.category_id)
            return names[tx.category_id]
        if group_by == "conto":
            conto_id = tx.from_conto_id or tx.to_conto_id
            if conto_id not in names:
                conto = await self._storage.get_conto_by_id(conto_id)
                names[conto_id] = conto.name if conto else str(conto_id)
            return names[conto_id]
        if group_by == "month":
            return tx.date.strftime("%Y-%m")
        if group_by == "year":
            return str(tx.date.year)
        raise QueryExecutionError(f"Unsupported group_by: {group_by}")

    # =========================================================================
    # HANDLERS
    # =========================================================================

    async def _execute_lookup(self, query: TransactionQuery) -> QueryResult:
        """Find specific transaction(s)."""
        transactions = await self._fetch(query, limit=query.limit)
        results = [self._transaction_to_dict(tx) for tx in transactions]

        desc_parts = ["Looking for transactions"] + self._filter_descriptions(query)
        return QueryResult(
            query_id=query.query_id,
            success=True,
            data_found=len(results) > 0,
            result_count=len(results),
            results=results,
            query_description=" | ".join(desc_parts),
        )

    async def _execute_list(self, query: TransactionQuery) -> QueryResult:
        transactions = await self._fetch(query, limit=query.limit)
        results = [self._transaction_to_dict(tx) for tx in transactions]

        desc_parts = ["Listing transactions"] + self._filter_descriptions(query)
        return QueryResult(
            query_id=query.query_id,
            success=True,
            data_found=len(results) > 0,
            result_count=len(results),
            results=results,
            query_description=" | ".join(desc_parts),
        )

    @staticmethod
    def _aggregate(amounts: list[Decimal], aggregation_type: Optional[str]) -> Decimal | int:
        if aggregation_type == "count":
            return len(amounts)
        if aggregation_type == "average":
            return sum(amounts, Decimal("0")) / len(amounts)
        if aggregation_type == "min":
            return min(amounts)
        if aggregation_type == "max":
            return max(amounts)
        return sum(amounts, Decimal("0"))

    async def _grouped(
        self,
        transactions: list[Transaction],
        group_by: str,
        aggregation_type: Optional[str],
    ) -> dict:
        """Aggregation per group, keys in sorted order."""
        groups: dict[str, list[Decimal]] = defaultdict(list)
        names: dict[UUID, str] = {}
        for tx in transactions:
            groups[await self._group_key(tx, group_by, names)].append(tx.amount)
        return {
            key: self._aggregate(groups[key], aggregation_type)
            for key in sorted(groups)
        }

    async def _execute_aggregate(self, query: TransactionQuery) -> QueryResult:
        """Sum, count, average, min or max over the matching transactions."""
        transactions = await self._fetch(query)

        if not transactions:
            return QueryResult(
                query_id=query.query_id,
                success=True,
                data_found=False,
                result_count=0,
                query_description="No transactions found for aggregation",
            )

        amounts = [tx.amount for tx in transactions]
        aggregation_result = {}

        if query.aggregation_type == "sum" or query.aggregation_type is None:
            aggregation_result["total_amount"] = self._aggregate(amounts, "sum")
            aggregation_result["transaction_count"] = len(amounts)
        elif query.aggregation_type == "count":
            aggregation_result["count"] = len(amounts)
        elif query.aggregation_type == "average":
            aggregation_result["average_amount"] = self._aggregate(amounts, "average")
            aggregation_result["transaction_count"] = len(amounts)
        elif query.aggregation_type == "min":
            aggregation_result["minimum_amount"] = min(amounts)
        elif query.aggregation_type == "max":
            aggregation_result["maximum_amount"] = max(amounts)

        if query.group_by:
            aggregation_result["breakdown"] = await self._grouped(
                transactions, query.group_by, query.aggregation_type
            )

        desc_parts = [f"Calculating {query.aggregation_type or 'total'}"]
        desc_parts.extend(self._filter_descriptions(query))
        if query.group_by:
            desc_parts.append(f"grouped by {query.group_by}")

        return QueryResult(
            query_id=query.query_id,
            success=True,
            data_found=True,
            result_count=len(transactions),
            aggregation_result=aggregation_result,
            query_description=" ".join(desc_parts),
        )

    async def _execute_exists(self, query: TransactionQuery) -> QueryResult:
        """Yes/no check."""
        transactions = await self._fetch(query, limit=1)
        exists = len(transactions) > 0

        desc_parts = ["Checking if"]
        if query.type_filter:
            desc_parts.append(f"{query.type_filter.display_name.lower()} exists")
        else:
            desc_parts.append("transaction exists")
        desc_parts.extend(self._filter_descriptions(query))

        result_data = [{"exists": exists, "answer": "yes" if exists else "no"}]
        if exists:
            result_data.append(self._transaction_to_dict(transactions[0]))

        return QueryResult(
            query_id=query.query_id,
            success=True,
            data_found=exists,
            result_count=1 if exists else 0,
            results=result_data,
            query_description=" ".join(desc_parts),
        )

    async def _execute_compare(self, query: TransactionQuery) -> QueryResult:
        """
        Compare groups (months by default) side by side.

        The breakdown is the per-group aggregation; `highest` and `lowest`
        name the extremes and `difference` is their gap.
        """
        transactions = await self._fetch(query)
        group_by = query.group_by or "month"

        if not transactions:
            return QueryResult(
                query_id=query.query_id,
                success=True,
                data_found=False,
                result_count=0,
                query_description="No transactions found to compare",
            )

        breakdown = await self._grouped(transactions, group_by, query.aggregation_type)
        highest = max(breakdown, key=lambda k: breakdown[k])
        lowest = min(breakdown, key=lambda k: breakdown[k])

        desc_parts = [f"Comparing {query.aggregation_type or 'total'} by {group_by}"]
        desc_parts.extend(self._filter_descriptions(query))

        return QueryResult(
            query_id=query.query_id,
            success=True,
            data_found=True,
            result_count=len(transactions),
            results=[{"group": key, "value": value} for key, value in breakdown.items()],
            aggregation_result={
                "breakdown": breakdown,
                "highest": highest,
                "lowest": lowest,
                "difference": breakdown[highest] - breakdown[lowest],
            },
            query_description=" ".join(desc_parts),
        )

    # =========================================================================
    # FORMATTING
    # =========================================================================

    def _transaction_to_dict(self, tx: Transaction) -> dict:
        return {
            "id": str(tx.id),
            "type": tx.type.value,
            "amount": tx.amount,
            "date": tx.date.isoformat(),
            "description": tx.description,
            "notes": tx.notes,
            "category_id": str(tx.category_id) if tx.category_id else None,
            "from_conto_id": str(tx.from_conto_id) if tx.from_conto_id else None,
            "to_conto_id": str(tx.to_conto_id) if tx.to_conto_id else None,
        }

    def _filter_descriptions(self, query: TransactionQuery) -> list[str]:
        parts = []
        if query.type_filter:
            parts.append(f"type: {query.type_filter.value}")
        if query.text_filter:
            parts.append(f"matching '{query.text_filter}'")
        if query.date_from or query.date_to:
            parts.append(self._date_range_str(query.date_from, query.date_to))
        return parts

    def _date_range_str(
        self,
        date_from: Optional[date],
        date_to: Optional[date],
    ) -> str:
        """Format date range for description."""
        if date_from and date_to:
            if date_from == date_to:
                return f"on {date_from.strftime('%d %b %Y')}"
            elif date_from.month == date_to.month and date_from.year == date_to.year:
                return f"in {date_from.strftime('%B %Y')}"
            elif date_from.year == date_to.year:
                return f"from {date_from.strftime('%b')} to {date_to.strftime('%b %Y')}"
            else:
                return f"from {date_from.strftime('%b %Y')} to {date_to.strftime('%b %Y')}"
        elif date_from:
            return f"from {date_from.strftime('%d %b %Y')}"
        elif date_to:
            return f"until {date_to.strftime('%d %b %Y')}"
        return ""
