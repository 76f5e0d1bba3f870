"""
Tests for the deterministic query executor.
"""

import asyncio
from datetime import date, datetime
from decimal import Decimal

import pytest

from personal_finance.audit import AuditLogger
from personal_finance.models.audit import AuditEventType
from personal_finance.models.ledger import Transaction, TransactionQuery, TransactionType
from personal_finance.queries import QueryExecutor
from personal_finance.services.storage import InMemoryLedgerStorage, StorageError


@pytest.fixture
def executor(storage, audit_storage):
    return QueryExecutor(storage, audit_logger=AuditLogger(audit_storage))


@pytest.fixture
def booked(ledger, household):
    """April rent, a handful of May expenses and a May salary."""
    account, checking, _ = household

    async def build():
        names = {}
        for name in ("Casa", "Alimentari", "Ristoranti", "Stipendio"):
            names[name] = (await ledger.find_category_by_name(account.id, name)).id

        rows = [
            (TransactionType.EXPENSE, "800", datetime(2024, 4, 10, 9), "Affitto", "Casa", None),
            (TransactionType.EXPENSE, "60", datetime(2024, 5, 3, 18), "Spesa Esselunga", "Alimentari", "settimanale"),
            (TransactionType.EXPENSE, "40", datetime(2024, 5, 20, 21), "Cena", "Ristoranti", None),
            (TransactionType.EXPENSE, "5", datetime(2024, 5, 31, 23), "Bar", None, None),
            (TransactionType.INCOME, "2000", datetime(2024, 5, 1, 8), "Stipendio", "Stipendio", None),
        ]
        for tx_type, amount, when, description, category, notes in rows:
            await ledger.create_transaction(Transaction(
                account_id=account.id,
                type=tx_type,
                amount=Decimal(amount),
                date=when,
                description=description,
                notes=notes,
                category_id=names[category] if category else None,
                from_conto_id=checking.id if tx_type == TransactionType.EXPENSE else None,
                to_conto_id=checking.id if tx_type == TransactionType.INCOME else None,
            ))
        return names

    names = asyncio.run(build())
    return account, checking, names


def run(executor, **kwargs):
    return asyncio.run(executor.execute(TransactionQuery(**kwargs)))


class TestListAndLookup:
    def test_list_newest_first_with_limit(self, executor, booked):
        account, _, _ = booked
        result = run(executor, query_type="list", account_id=account.id, limit=2)
        assert result.success is True
        assert [r["description"] for r in result.results] == ["Bar", "Cena"]
        assert result.results[0]["amount"] == Decimal("5")

    def test_date_to_is_inclusive(self, executor, booked):
        """Test that a transaction late on the last day is included."""
        account, _, _ = booked
        result = run(
            executor,
            query_type="list",
            account_id=account.id,
            type_filter="expense",
            date_from=date(2024, 5, 1),
            date_to=date(2024, 5, 31),
        )
        assert {r["description"] for r in result.results} == {"Spesa Esselunga", "Cena", "Bar"}
        assert "in May 2024" in result.query_description

    def test_text_filter_matches_notes(self, executor, booked):
        account, _, _ = booked
        result = run(executor, query_type="lookup", account_id=account.id, text_filter="SETTIMANALE")
        assert [r["description"] for r in result.results] == ["Spesa Esselunga"]

    def test_category_filter(self, executor, booked):
        account, _, names = booked
        result = run(executor, query_type="list", account_id=account.id, category_filter=names["Casa"])
        assert result.result_count == 1

    def test_nothing_found(self, executor, booked):
        account, _, _ = booked
        result = run(executor, query_type="list", account_id=account.id, text_filter="vacanza")
        assert result.success is True
        assert result.data_found is False


class TestAggregate:
    def test_sum(self, executor, booked):
        account, _, _ = booked
        result = run(
            executor,
            query_type="aggregate",
            account_id=account.id,
            type_filter="expense",
            aggregation_type="sum",
        )
        assert result.aggregation_result == {
            "total_amount": Decimal("905"),
            "transaction_count": 4,
        }

    def test_grouped_by_category(self, executor, booked):
        account, _, _ = booked
        result = run(
            executor,
            query_type="aggregate",
            account_id=account.id,
            type_filter="expense",
            group_by="category",
        )
        assert result.aggregation_result["breakdown"] == {
            "Alimentari": Decimal("60"),
            "Casa": Decimal("800"),
            "Ristoranti": Decimal("40"),
            "Senza categoria": Decimal("5"),
        }

    def test_average_by_month(self, executor, booked):
        account, _, _ = booked
        result = run(
            executor,
            query_type="aggregate",
            account_id=account.id,
            type_filter="expense",
            aggregation_type="average",
            group_by="month",
        )
        assert result.aggregation_result["average_amount"] == Decimal("226.25")
        assert result.aggregation_result["breakdown"] == {
            "2024-04": Decimal("800"),
            "2024-05": Decimal("35"),
        }

    def test_count_min_max(self, executor, booked):
        account, _, _ = booked
        count = run(executor, query_type="aggregate", account_id=account.id, aggregation_type="count")
        low = run(executor, query_type="aggregate", account_id=account.id, aggregation_type="min")
        high = run(executor, query_type="aggregate", account_id=account.id, aggregation_type="max")
        assert count.aggregation_result == {"count": 5}
        assert low.aggregation_result == {"minimum_amount": Decimal("5")}
        assert high.aggregation_result == {"maximum_amount": Decimal("2000")}

    def test_no_data(self, executor, booked):
        account, _, _ = booked
        result = run(
            executor,
            query_type="aggregate",
            account_id=account.id,
            date_from=date(2023, 1, 1),
            date_to=date(2023, 1, 31),
        )
        assert result.data_found is False
        assert result.aggregation_result is None


class TestExistsAndCompare:
    def test_exists(self, executor, booked):
        account, _, _ = booked
        yes = run(executor, query_type="exists", account_id=account.id, type_filter="income")
        no = run(
            executor,
            query_type="exists",
            account_id=account.id,
            type_filter="income",
            date_to=date(2024, 4, 30),
        )
        assert yes.results[0] == {"exists": True, "answer": "yes"}
        assert yes.results[1]["description"] == "Stipendio"
        assert no.results == [{"exists": False, "answer": "no"}]
        assert no.data_found is False

    def test_compare_months(self, executor, booked):
        account, _, _ = booked
        result = run(executor, query_type="compare", account_id=account.id, type_filter="expense")
        assert result.results == [
            {"group": "2024-04", "value": Decimal("800")},
            {"group": "2024-05", "value": Decimal("105")},
        ]
        assert result.aggregation_result["highest"] == "2024-04"
        assert result.aggregation_result["lowest"] == "2024-05"
        assert result.aggregation_result["difference"] == Decimal("695")

    def test_compare_conti_by_count(self, executor, booked):
        account, _, _ = booked
        result = run(
            executor,
            query_type="compare",
            account_id=account.id,
            group_by="conto",
            aggregation_type="count",
        )
        assert result.results == [{"group": "Banca", "value": 5}]
        assert result.aggregation_result["difference"] == 0


class TestExecutorFailures:
    def test_storage_failure_becomes_result(self, audit_storage):
        class BrokenStorage(InMemoryLedgerStorage):
            async def list_transactions(self, **filters):
                raise StorageError("disk on fire")

        executor = QueryExecutor(BrokenStorage(), audit_logger=AuditLogger(audit_storage))
        result = asyncio.run(executor.execute(TransactionQuery(query_type="list")))

        assert result.success is False
        assert result.error_message == "disk on fire"
        events = asyncio.run(audit_storage.get_recent_events())
        assert [e.event_type for e in events] == [AuditEventType.SYSTEM_ERROR]

    def test_successful_query_is_audited(self, executor, audit_storage):
        result = asyncio.run(executor.execute(TransactionQuery(query_type="list")))
        events = asyncio.run(audit_storage.get_events_by_entity("query", result.query_id))
        assert events[0].event_type == AuditEventType.QUERY_EXECUTED
