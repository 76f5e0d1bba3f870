"""
In-memory storage backends.

DESIGN DECISION: Entities live in plain dicts keyed by id and are copied on
the way in and on the way out. Callers can never mutate stored state
without going through update_*, which keeps the JSON backend (a subclass
that persists after each mutation) honest.
"""

from datetime import datetime
from typing import Optional, TypeVar
from uuid import UUID

import structlog
from pydantic import BaseModel

from personal_finance.models.audit import AuditEvent
from personal_finance.models.ledger import (
    Account,
    Budget,
    Category,
    Conto,
    SavingsGoal,
    Transaction,
    TransactionType,
)
from personal_finance.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)


logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Collection names double as keys of the persisted JSON document
COLLECTIONS: dict[str, type[BaseModel]] = {
    "accounts": Account,
    "conti": Conto,
    "categories": Category,
    "transactions": Transaction,
    "budgets": Budget,
    "goals": SavingsGoal,
}


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Ledger storage backed by dictionaries."""

    def __init__(self):
        self._data: dict[str, dict[UUID, BaseModel]] = {
            name: {} for name in COLLECTIONS
        }

    # =========================================================================
    # GENERIC HELPERS
    # =========================================================================

    def _on_change(self) -> None:
        """Hook called after every mutation. Raising StorageError undoes it."""

    def _commit(self, collection: str, entity_id: UUID, previous: Optional[BaseModel]) -> None:
        """Run the change hook, restoring the previous entry if it fails."""
        try:
            self._on_change()
        except StorageError:
            store = self._data[collection]
            if previous is None:
                store.pop(entity_id, None)
            else:
                store[entity_id] = previous
            raise

    def _insert(self, collection: str, entity: BaseModel) -> bool:
        store = self._data[collection]
        if entity.id in store:
            raise DuplicateError(f"{collection}: {entity.id} already exists")
        store[entity.id] = entity.model_copy(deep=True)
        self._commit(collection, entity.id, None)
        return True

    def _replace(self, collection: str, entity: BaseModel) -> bool:
        store = self._data[collection]
        previous = store.get(entity.id)
        if previous is None:
            raise NotFoundError(f"{collection}: {entity.id} not found")
        store[entity.id] = entity.model_copy(deep=True)
        self._commit(collection, entity.id, previous)
        return True

    def _get(self, collection: str, entity_id: UUID) -> Optional[BaseModel]:
        entity = self._data[collection].get(entity_id)
        return entity.model_copy(deep=True) if entity is not None else None

    def _remove(self, collection: str, entity_id: UUID) -> bool:
        previous = self._data[collection].pop(entity_id, None)
        if previous is None:
            return False
        self._commit(collection, entity_id, previous)
        return True

    def _all(self, collection: str) -> list:
        items = [e.model_copy(deep=True) for e in self._data[collection].values()]
        items.sort(key=lambda e: e.created_at)
        return items

    def _owned_by(self, collection: str, account_id: Optional[UUID]) -> list:
        items = self._all(collection)
        if account_id is None:
            return items
        return [e for e in items if e.account_id == account_id]

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def save_account(self, account: Account) -> bool:
        return self._insert("accounts", account)

    async def get_account_by_id(self, account_id: UUID) -> Optional[Account]:
        return self._get("accounts", account_id)

    async def update_account(self, account: Account) -> bool:
        return self._replace("accounts", account)

    async def delete_account(self, account_id: UUID) -> bool:
        return self._remove("accounts", account_id)

    async def list_accounts(self, active_only: bool = False) -> list[Account]:
        accounts = self._all("accounts")
        if active_only:
            accounts = [a for a in accounts if a.is_active]
        return accounts

    # =========================================================================
    # CONTI
    # =========================================================================

    async def save_conto(self, conto: Conto) -> bool:
        return self._insert("conti", conto)

    async def get_conto_by_id(self, conto_id: UUID) -> Optional[Conto]:
        return self._get("conti", conto_id)

    async def update_conto(self, conto: Conto) -> bool:
        return self._replace("conti", conto)

    async def delete_conto(self, conto_id: UUID) -> bool:
        return self._remove("conti", conto_id)

    async def list_conti(
        self,
        account_id: Optional[UUID] = None,
        active_only: bool = False,
    ) -> list[Conto]:
        conti = self._owned_by("conti", account_id)
        if active_only:
            conti = [c for c in conti if c.is_active]
        return conti

    # =========================================================================
    # CATEGORIES
    # =========================================================================

    async def save_category(self, category: Category) -> bool:
        return self._insert("categories", category)

    async def get_category_by_id(self, category_id: UUID) -> Optional[Category]:
        return self._get("categories", category_id)

    async def update_category(self, category: Category) -> bool:
        return self._replace("categories", category)

    async def delete_category(self, category_id: UUID) -> bool:
        return self._remove("categories", category_id)

    async def list_categories(self, account_id: Optional[UUID] = None) -> list[Category]:
        return self._owned_by("categories", account_id)

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def save_transaction(self, transaction: Transaction) -> bool:
        return self._insert("transactions", transaction)

    async def get_transaction_by_id(self, transaction_id: UUID) -> Optional[Transaction]:
        return self._get("transactions", transaction_id)

    async def update_transaction(self, transaction: Transaction) -> bool:
        return self._replace("transactions", transaction)

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        return self._remove("transactions", transaction_id)

    async def list_transactions(
        self,
        account_id: Optional[UUID] = None,
        conto_id: Optional[UUID] = None,
        transaction_type: Optional[TransactionType] = None,
        category_id: Optional[UUID] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        filtered = []
        for tx in self._owned_by("transactions", account_id):
            if conto_id and not tx.involves(conto_id):
                continue
            if transaction_type and tx.type != transaction_type:
                continue
            if category_id and tx.category_id != category_id:
                continue
            if date_from and tx.date < date_from:
                continue
            if date_to and tx.date >= date_to:
                continue
            filtered.append(tx)

        # Newest first
        filtered.sort(key=lambda t: (t.date, t.created_at), reverse=True)

        if limit is None:
            return filtered[offset:]
        return filtered[offset:offset + limit]

    # =========================================================================
    # BUDGETS
    # =========================================================================

    async def save_budget(self, budget: Budget) -> bool:
        return self._insert("budgets", budget)

    async def get_budget_by_id(self, budget_id: UUID) -> Optional[Budget]:
        return self._get("budgets", budget_id)

    async def update_budget(self, budget: Budget) -> bool:
        return self._replace("budgets", budget)

    async def delete_budget(self, budget_id: UUID) -> bool:
        return self._remove("budgets", budget_id)

    async def list_budgets(self, account_id: Optional[UUID] = None) -> list[Budget]:
        return self._owned_by("budgets", account_id)

    # =========================================================================
    # SAVINGS GOALS
    # =========================================================================

    async def save_goal(self, goal: SavingsGoal) -> bool:
        return self._insert("goals", goal)

    async def get_goal_by_id(self, goal_id: UUID) -> Optional[SavingsGoal]:
        return self._get("goals", goal_id)

    async def update_goal(self, goal: SavingsGoal) -> bool:
        return self._replace("goals", goal)

    async def delete_goal(self, goal_id: UUID) -> bool:
        return self._remove("goals", goal_id)

    async def list_goals(self, account_id: Optional[UUID] = None) -> list[SavingsGoal]:
        return self._owned_by("goals", account_id)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in a list."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event.model_copy(deep=True))
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
