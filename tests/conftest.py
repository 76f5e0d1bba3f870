"""
Shared fixtures.

Everything runs against the in-memory backends; async service calls are
driven with asyncio.run inside each test.
"""

import asyncio
from datetime import datetime
from decimal import Decimal

import pytest

from personal_finance.audit import AuditLogger
from personal_finance.config import LedgerSettings
from personal_finance.models.ledger import Conto, ContoType
from personal_finance.services.ledger_service import LedgerService
from personal_finance.services.storage import InMemoryAuditStorage, InMemoryLedgerStorage


@pytest.fixture
def ledger_settings():
    return LedgerSettings()


@pytest.fixture
def storage():
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def ledger(storage, audit_storage, ledger_settings):
    return LedgerService(
        storage,
        audit_logger=AuditLogger(audit_storage),
        settings=ledger_settings,
    )


@pytest.fixture
def household(ledger):
    """An account with a checking and a savings conto."""

    async def build():
        account = await ledger.create_account("Famiglia")
        checking = await ledger.create_conto(Conto(
            account_id=account.id,
            name="Banca",
            initial_balance=Decimal("1000"),
        ))
        savings = await ledger.create_conto(Conto(
            account_id=account.id,
            name="Risparmi",
            type=ContoType.SAVINGS,
        ))
        return account, checking, savings

    return asyncio.run(build())


@pytest.fixture
def may_15():
    return datetime(2024, 5, 15, 12, 0)
