"""
Tests for the in-memory and JSON file storage backends.
"""

import asyncio
import json
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from personal_finance.models.audit import AuditEventBuilder
from personal_finance.models.ledger import (
    Account,
    Category,
    Conto,
    Transaction,
    TransactionType,
)
from personal_finance.services.storage import (
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    JsonFileAuditStorage,
    JsonFileLedgerStorage,
    NotFoundError,
    StorageConnectionError,
    StorageError,
)


def _records():
    account = Account(name="Casa")
    conto = Conto(account_id=account.id, name="Banca")
    txs = [
        Transaction(
            account_id=account.id,
            type=TransactionType.EXPENSE,
            amount=Decimal(amount),
            date=when,
            from_conto_id=conto.id,
        )
        for amount, when in (
            ("10", datetime(2024, 5, 1)),
            ("20", datetime(2024, 5, 10)),
            ("30", datetime(2024, 6, 1)),
        )
    ]
    return account, conto, txs


async def _fill(storage):
    account, conto, txs = _records()
    await storage.save_account(account)
    await storage.save_conto(conto)
    for tx in txs:
        await storage.save_transaction(tx)
    return account, conto, txs


class TestInMemoryLedgerStorage:
    """Tests for InMemoryLedgerStorage."""

    def test_save_and_get(self):
        async def scenario():
            storage = InMemoryLedgerStorage()
            account, conto, _ = await _fill(storage)
            assert (await storage.get_account_by_id(account.id)).name == "Casa"
            assert (await storage.get_conto_by_id(conto.id)).account_id == account.id

        asyncio.run(scenario())

    def test_duplicate_save_rejected(self):
        async def scenario():
            storage = InMemoryLedgerStorage()
            account = Account(name="Casa")
            await storage.save_account(account)
            with pytest.raises(DuplicateError):
                await storage.save_account(account)

        asyncio.run(scenario())

    def test_update_missing_raises(self):
        async def scenario():
            storage = InMemoryLedgerStorage()
            with pytest.raises(NotFoundError):
                await storage.update_account(Account(name="Nessuno"))

        asyncio.run(scenario())

    def test_delete_returns_false_when_missing(self):
        async def scenario():
            storage = InMemoryLedgerStorage()
            account = Account(name="Casa")
            await storage.save_account(account)
            assert await storage.delete_account(account.id) is True
            assert await storage.delete_account(account.id) is False

        asyncio.run(scenario())

    def test_returned_records_are_copies(self):
        """Test that mutating a returned record doesn't touch storage."""
        async def scenario():
            storage = InMemoryLedgerStorage()
            account = Account(name="Casa")
            await storage.save_account(account)
            loaded = await storage.get_account_by_id(account.id)
            loaded.name = "Altro"
            assert (await storage.get_account_by_id(account.id)).name == "Casa"

        asyncio.run(scenario())

    def test_list_transactions_filters_and_order(self):
        async def scenario():
            storage = InMemoryLedgerStorage()
            account, conto, txs = await _fill(storage)

            newest_first = await storage.list_transactions(account_id=account.id)
            assert [t.amount for t in newest_first] == [Decimal("30"), Decimal("20"), Decimal("10")]

            # date_to is exclusive
            may = await storage.list_transactions(
                conto_id=conto.id,
                date_from=datetime(2024, 5, 1),
                date_to=datetime(2024, 6, 1),
            )
            assert [t.amount for t in may] == [Decimal("20"), Decimal("10")]

            page = await storage.list_transactions(limit=1, offset=1)
            assert [t.amount for t in page] == [Decimal("20")]

            incomes = await storage.list_transactions(transaction_type=TransactionType.INCOME)
            assert incomes == []

        asyncio.run(scenario())

    def test_list_by_account(self):
        async def scenario():
            storage = InMemoryLedgerStorage()
            account, _, _ = await _fill(storage)
            await storage.save_category(Category(account_id=account.id, name="Casa"))
            await storage.save_category(Category(account_id=Account(name="X").id, name="Casa"))
            assert len(await storage.list_categories(account_id=account.id)) == 1
            assert len(await storage.list_categories()) == 2

        asyncio.run(scenario())


class TestInMemoryAuditStorage:
    """Tests for InMemoryAuditStorage."""

    def test_queries(self):
        async def scenario():
            storage = InMemoryAuditStorage()
            account = Account(name="Casa")
            correlation_id = account.id
            first = AuditEventBuilder.entity_created("account", account.id, "Casa", account.id, correlation_id)
            second = AuditEventBuilder.entity_updated("account", account.id, ["name"], account.id)
            second = second.model_copy(update={"timestamp": first.timestamp + timedelta(seconds=1)})
            await storage.append_event(first)
            await storage.append_event(second)

            assert [e.event_id for e in await storage.get_events_by_correlation_id(correlation_id)] == [first.event_id]
            assert [e.event_id for e in await storage.get_events_by_entity("account", account.id)] == [
                first.event_id,
                second.event_id,
            ]
            assert (await storage.get_recent_events(limit=1))[0].event_id == second.event_id

        asyncio.run(scenario())


class TestJsonFileStorage:
    """Tests for the JSON file backends."""

    def test_ledger_survives_reload(self, tmp_path):
        path = tmp_path / "data" / "ledger.json"

        async def write():
            return await _fill(JsonFileLedgerStorage(path))

        account, conto, txs = asyncio.run(write())
        assert path.exists()
        document = json.loads(path.read_text(encoding="utf-8"))
        assert len(document["transactions"]) == 3

        async def read():
            storage = JsonFileLedgerStorage(path)
            loaded = await storage.get_transaction_by_id(txs[0].id)
            assert loaded == txs[0]
            assert (await storage.get_conto_by_id(conto.id)).name == "Banca"

        asyncio.run(read())

    def test_missing_file_starts_empty(self, tmp_path):
        storage = JsonFileLedgerStorage(tmp_path / "nothing.json")
        assert asyncio.run(storage.list_accounts()) == []

    def test_invalid_json_raises_connection_error(self, tmp_path):
        path = tmp_path / "ledger.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(StorageConnectionError):
            JsonFileLedgerStorage(path)

    def test_corrupt_record_raises_storage_error(self, tmp_path):
        path = tmp_path / "ledger.json"
        path.write_text(json.dumps({"accounts": [{"name": ""}]}), encoding="utf-8")
        with pytest.raises(StorageError):
            JsonFileLedgerStorage(path)

    def test_audit_jsonl(self, tmp_path):
        path = tmp_path / "audit.jsonl"
        account = Account(name="Casa")

        async def scenario():
            storage = JsonFileAuditStorage(path)
            await storage.append_event(
                AuditEventBuilder.entity_created("account", account.id, "Casa", account.id)
            )
            await storage.append_event(
                AuditEventBuilder.entity_deleted("account", account.id, account.id)
            )
            return await JsonFileAuditStorage(path).get_events_by_entity("account", account.id)

        events = asyncio.run(scenario())
        assert len(path.read_text(encoding="utf-8").splitlines()) == 2
        assert [e.event_type.value for e in events] == ["account_created", "account_deleted"]


class TestJsonFileWriteFailure:
    """A failed disk write leaves memory exactly as it was on disk."""

    @pytest.fixture
    def broken_disk(self, monkeypatch):
        def fail(path, content):
            raise OSError("disk full")

        def install():
            monkeypatch.setattr(
                "personal_finance.services.storage.json_file._atomic_write", fail
            )

        return install

    def test_failed_insert_is_rolled_back(self, tmp_path, broken_disk):
        storage = JsonFileLedgerStorage(tmp_path / "ledger.json")
        account = Account(name="Casa")
        broken_disk()

        with pytest.raises(StorageError):
            asyncio.run(storage.save_account(account))

        assert asyncio.run(storage.get_account_by_id(account.id)) is None
        assert asyncio.run(storage.list_accounts()) == []

    def test_failed_update_keeps_previous(self, tmp_path, broken_disk):
        storage = JsonFileLedgerStorage(tmp_path / "ledger.json")
        account = Account(name="Casa")
        asyncio.run(storage.save_account(account))
        broken_disk()

        with pytest.raises(StorageError):
            asyncio.run(storage.update_account(account.model_copy(update={"name": "Mare"})))

        assert asyncio.run(storage.get_account_by_id(account.id)).name == "Casa"

    def test_failed_delete_keeps_record(self, tmp_path, broken_disk):
        storage = JsonFileLedgerStorage(tmp_path / "ledger.json")
        account = Account(name="Casa")
        asyncio.run(storage.save_account(account))
        broken_disk()

        with pytest.raises(StorageError):
            asyncio.run(storage.delete_account(account.id))

        assert asyncio.run(storage.get_account_by_id(account.id)) == account

    def test_save_succeeds_once_disk_recovers(self, tmp_path, monkeypatch, broken_disk):
        path = tmp_path / "ledger.json"
        storage = JsonFileLedgerStorage(path)
        account = Account(name="Casa")
        broken_disk()
        with pytest.raises(StorageError):
            asyncio.run(storage.save_account(account))

        monkeypatch.undo()
        assert asyncio.run(storage.save_account(account)) is True
        assert asyncio.run(JsonFileLedgerStorage(path).get_account_by_id(account.id)) == account
