"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep everything in memory for tests and short-lived sessions
2. Persist to a JSON document without touching business logic
3. Swap in a real database later

The interface is intentionally simple - we're not building an ORM.
Filtering beyond what is listed here happens in the services, over
plain lists.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from uuid import UUID

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


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage operations.

    save_* inserts (DuplicateError if the id exists), update_* replaces
    (NotFoundError if it doesn't), delete_* returns False when there was
    nothing to delete. Cascades are the caller's job.
    """

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_account(self, account: Account) -> bool:
        pass

    @abstractmethod
    async def get_account_by_id(self, account_id: UUID) -> Optional[Account]:
        pass

    @abstractmethod
    async def update_account(self, account: Account) -> bool:
        pass

    @abstractmethod
    async def delete_account(self, account_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_accounts(self, active_only: bool = False) -> list[Account]:
        """List accounts, oldest first."""
        pass

    # -------------------------------------------------------------------------
    # Conti
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_conto(self, conto: Conto) -> bool:
        pass

    @abstractmethod
    async def get_conto_by_id(self, conto_id: UUID) -> Optional[Conto]:
        pass

    @abstractmethod
    async def update_conto(self, conto: Conto) -> bool:
        pass

    @abstractmethod
    async def delete_conto(self, conto_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_conti(
        self,
        account_id: Optional[UUID] = None,
        active_only: bool = False,
    ) -> list[Conto]:
        """List conti, oldest first."""
        pass

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_category(self, category: Category) -> bool:
        pass

    @abstractmethod
    async def get_category_by_id(self, category_id: UUID) -> Optional[Category]:
        pass

    @abstractmethod
    async def update_category(self, category: Category) -> bool:
        pass

    @abstractmethod
    async def delete_category(self, category_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_categories(self, account_id: Optional[UUID] = None) -> list[Category]:
        pass

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> bool:
        pass

    @abstractmethod
    async def get_transaction_by_id(self, transaction_id: UUID) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> bool:
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: UUID) -> bool:
        pass

    @abstractmethod
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
        """
        List transactions with optional filters.

        Args:
            account_id: Filter by owning account
            conto_id: Transactions where this conto is source or destination
            transaction_type: Filter by type
            category_id: Filter by category
            date_from: Include transactions on or after this instant
            date_to: Include transactions strictly before this instant
            limit: Maximum number of results (None for all)
            offset: Number of results to skip

        Returns:
            Matching transactions, newest first
        """
        pass

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_budget(self, budget: Budget) -> bool:
        pass

    @abstractmethod
    async def get_budget_by_id(self, budget_id: UUID) -> Optional[Budget]:
        pass

    @abstractmethod
    async def update_budget(self, budget: Budget) -> bool:
        pass

    @abstractmethod
    async def delete_budget(self, budget_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_budgets(self, account_id: Optional[UUID] = None) -> list[Budget]:
        pass

    # -------------------------------------------------------------------------
    # Savings goals
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_goal(self, goal: SavingsGoal) -> bool:
        pass

    @abstractmethod
    async def get_goal_by_id(self, goal_id: UUID) -> Optional[SavingsGoal]:
        pass

    @abstractmethod
    async def update_goal(self, goal: SavingsGoal) -> bool:
        pass

    @abstractmethod
    async def delete_goal(self, goal_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_goals(self, account_id: Optional[UUID] = None) -> list[SavingsGoal]:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Related events in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Events for one entity in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class StorageConnectionError(StorageError):
    """Could not open or read the storage backend."""
    pass
