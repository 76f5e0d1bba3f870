"""
Ledger Service

CRUD over the storage interface with the rules that keep the ledger
consistent: ownership checks, cascades, validation and auditing.

DESIGN DECISION: This is the ONLY place that mutates storage. Calculation
and reporting services receive plain lists, so every write path goes
through the same validation and leaves an audit event behind.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, ValidationError

from personal_finance.audit import AuditLogger, create_correlation_id
from personal_finance.calculations.balance import BalanceCalculator
from personal_finance.config import LedgerSettings, get_settings
from personal_finance.models.analytics import BudgetProgress, IntegrityReport
from personal_finance.models.ledger import (
    DEFAULT_CATEGORIES,
    Account,
    Budget,
    Category,
    Conto,
    SavingsGoal,
    Transaction,
    TransactionType,
    ValidationResult,
    utc_now,
)
from personal_finance.services.budget_service import BudgetService
from personal_finance.services.integrity import DataIntegrityService
from personal_finance.services.storage import LedgerStorageInterface
from personal_finance.validation import TransactionValidator


logger = structlog.get_logger(__name__)


# =============================================================================
# ERRORS
# =============================================================================

class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class LedgerValidationError(LedgerError):
    """The requested change would produce an invalid record."""

    def __init__(self, message: str, result: Optional[ValidationResult] = None):
        super().__init__(message)
        self.result = result


class EntityNotFoundError(LedgerError):
    """A referenced account, conto, category, transaction, budget or goal doesn't exist."""

    def __init__(self, entity_type: str, entity_id: UUID):
        super().__init__(f"{entity_type} {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class IntegrityViolationError(LedgerError):
    """The change would break a ledger invariant (duplicate name, orphaned transactions)."""
    pass


_IMMUTABLE_FIELDS = {"id", "created_at"}


def _apply_changes(entity: BaseModel, changes: dict[str, Any]) -> tuple[BaseModel, list[str]]:
    """Return a re-validated copy of `entity` with `changes` applied, plus the changed field names."""
    unknown = set(changes) - set(type(entity).model_fields)
    if unknown:
        raise LedgerError(f"Unknown fields: {', '.join(sorted(unknown))}")
    forbidden = set(changes) & _IMMUTABLE_FIELDS
    if forbidden:
        raise LedgerError(f"Fields cannot be changed: {', '.join(sorted(forbidden))}")

    data = entity.model_dump()
    changed = [name for name, value in changes.items() if data.get(name) != value]
    data.update(changes)
    try:
        updated = type(entity).model_validate(data)
    except ValidationError as e:
        raise LedgerValidationError(str(e)) from e
    return updated, changed


class LedgerService:
    """
    Application-level operations on the ledger.

    All methods are async because storage is.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[TransactionValidator] = None,
        integrity: Optional[DataIntegrityService] = None,
        budget_service: Optional[BudgetService] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().ledger
        self._integrity = integrity or DataIntegrityService(
            self._settings.duplicate_window_seconds
        )
        self._validator = validator or TransactionValidator(
            storage, self._integrity, self._settings
        )
        self._budgets = budget_service or BudgetService()

    @property
    def storage(self) -> LedgerStorageInterface:
        return self._storage

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def create_account(
        self,
        name: str,
        currency: Optional[str] = None,
        with_default_categories: bool = True,
    ) -> Account:
        """Create an account, seeded with the default categories unless told otherwise."""
        try:
            account = Account(name=name, currency=currency or self._settings.default_currency)
        except ValidationError as e:
            raise LedgerValidationError(str(e)) from e

        correlation_id = create_correlation_id()
        await self._storage.save_account(account)
        await self._audit.log_created("account", account.id, account.name, account.id, correlation_id)

        if with_default_categories:
            for cat_name, color in DEFAULT_CATEGORIES:
                category = Category(account_id=account.id, name=cat_name, color=color)
                await self._storage.save_category(category)

        logger.info(
            "account_created",
            account_id=str(account.id),
            default_categories=with_default_categories,
        )
        return account

    async def get_account(self, account_id: UUID) -> Account:
        account = await self._storage.get_account_by_id(account_id)
        if account is None:
            raise EntityNotFoundError("account", account_id)
        return account

    async def list_accounts(self, active_only: bool = False) -> list[Account]:
        return await self._storage.list_accounts(active_only=active_only)

    async def update_account(self, account_id: UUID, **changes: Any) -> Account:
        account = await self.get_account(account_id)
        updated, changed = _apply_changes(account, changes)
        updated.updated_at = utc_now()
        await self._storage.update_account(updated)
        await self._audit.log_updated("account", account_id, changed, account_id)
        return updated

    async def delete_account(self, account_id: UUID) -> dict[str, int]:
        """
        Delete an account and everything it owns.

        Returns:
            Number of deleted records per entity type
        """
        await self.get_account(account_id)
        correlation_id = create_correlation_id()

        cascade = {"transactions": 0, "budgets": 0, "goals": 0, "categories": 0, "conti": 0}
        for tx in await self._storage.list_transactions(account_id=account_id):
            cascade["transactions"] += await self._storage.delete_transaction(tx.id)
        for budget in await self._storage.list_budgets(account_id=account_id):
            cascade["budgets"] += await self._storage.delete_budget(budget.id)
        for goal in await self._storage.list_goals(account_id=account_id):
            cascade["goals"] += await self._storage.delete_goal(goal.id)
        for category in await self._storage.list_categories(account_id=account_id):
            cascade["categories"] += await self._storage.delete_category(category.id)
        for conto in await self._storage.list_conti(account_id=account_id):
            cascade["conti"] += await self._storage.delete_conto(conto.id)

        await self._storage.delete_account(account_id)
        await self._audit.log_deleted("account", account_id, account_id, cascade, correlation_id)
        return cascade

    # =========================================================================
    # CONTI
    # =========================================================================

    async def create_conto(self, conto: Conto) -> Conto:
        await self.get_account(conto.account_id)
        await self._storage.save_conto(conto)
        await self._audit.log_created("conto", conto.id, conto.name, conto.account_id)
        return conto

    async def get_conto(self, conto_id: UUID) -> Conto:
        conto = await self._storage.get_conto_by_id(conto_id)
        if conto is None:
            raise EntityNotFoundError("conto", conto_id)
        return conto

    async def list_conti(self, account_id: UUID, active_only: bool = False) -> list[Conto]:
        return await self._storage.list_conti(account_id=account_id, active_only=active_only)

    async def update_conto(self, conto_id: UUID, **changes: Any) -> Conto:
        conto = await self.get_conto(conto_id)
        if "account_id" in changes and changes["account_id"] != conto.account_id:
            raise IntegrityViolationError("A conto cannot move to another account")
        updated, changed = _apply_changes(conto, changes)
        await self._storage.update_conto(updated)
        await self._audit.log_updated("conto", conto_id, changed, conto.account_id)
        return updated

    async def delete_conto(self, conto_id: UUID, force: bool = False) -> int:
        """
        Delete a conto.

        A conto with transactions is only deleted with force=True, which
        deletes its transactions too.

        Returns:
            Number of transactions deleted along with it
        """
        conto = await self.get_conto(conto_id)
        transactions = await self._storage.list_transactions(conto_id=conto_id)
        if transactions and not force:
            raise IntegrityViolationError(
                f"Conto '{conto.name}' still has {len(transactions)} transactions"
            )

        for tx in transactions:
            await self._storage.delete_transaction(tx.id)
        await self._storage.delete_conto(conto_id)
        await self._audit.log_deleted(
            "conto",
            conto_id,
            conto.account_id,
            cascade={"transactions": len(transactions)} if transactions else None,
        )
        return len(transactions)

    # =========================================================================
    # CATEGORIES
    # =========================================================================

    async def find_category_by_name(self, account_id: UUID, name: str) -> Optional[Category]:
        """Case-insensitive lookup within one account."""
        wanted = name.strip().casefold()
        for category in await self._storage.list_categories(account_id=account_id):
            if category.name.casefold() == wanted:
                return category
        return None

    async def create_category(self, category: Category) -> Category:
        await self.get_account(category.account_id)
        if await self.find_category_by_name(category.account_id, category.name):
            raise IntegrityViolationError(f"Category '{category.name}' already exists")
        if category.parent_category_id is not None:
            parent = await self._storage.get_category_by_id(category.parent_category_id)
            if parent is None or parent.account_id != category.account_id:
                raise EntityNotFoundError("category", category.parent_category_id)

        await self._storage.save_category(category)
        await self._audit.log_created("category", category.id, category.name, category.account_id)
        return category

    async def get_category(self, category_id: UUID) -> Category:
        category = await self._storage.get_category_by_id(category_id)
        if category is None:
            raise EntityNotFoundError("category", category_id)
        return category

    async def list_categories(self, account_id: UUID) -> list[Category]:
        return await self._storage.list_categories(account_id=account_id)

    async def update_category(self, category_id: UUID, **changes: Any) -> Category:
        category = await self.get_category(category_id)
        updated, changed = _apply_changes(category, changes)
        if "name" in changed:
            existing = await self.find_category_by_name(updated.account_id, updated.name)
            if existing is not None and existing.id != category_id:
                raise IntegrityViolationError(f"Category '{updated.name}' already exists")
        await self._storage.update_category(updated)
        await self._audit.log_updated("category", category_id, changed, category.account_id)
        return updated

    async def delete_category(self, category_id: UUID) -> int:
        """
        Delete a category, detaching it from everything that referenced it.

        Returns:
            Number of transactions that lost their category
        """
        category = await self.get_category(category_id)

        detached = 0
        for tx in await self._storage.list_transactions(category_id=category_id):
            await self._storage.update_transaction(tx.model_copy(update={"category_id": None}))
            detached += 1
        for budget in await self._storage.list_budgets(account_id=category.account_id):
            if category_id in budget.category_ids:
                remaining = [c for c in budget.category_ids if c != category_id]
                await self._storage.update_budget(budget.model_copy(update={"category_ids": remaining}))
        for goal in await self._storage.list_goals(account_id=category.account_id):
            if goal.category_id == category_id:
                await self._storage.update_goal(goal.model_copy(update={"category_id": None}))
        for child in await self._storage.list_categories(account_id=category.account_id):
            if child.parent_category_id == category_id:
                await self._storage.update_category(
                    child.model_copy(update={"parent_category_id": None})
                )

        await self._storage.delete_category(category_id)
        await self._audit.log_deleted(
            "category",
            category_id,
            category.account_id,
            cascade={"transactions_detached": detached} if detached else None,
        )
        return detached

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def _validate_or_raise(
        self,
        tx: Transaction,
        check_duplicates: bool,
        correlation_id: Optional[UUID],
    ) -> ValidationResult:
        result = await self._validator.validate(tx, check_duplicates=check_duplicates)
        if not result.can_proceed:
            await self._audit.log_validation_failed(
                tx.id,
                tx.account_id,
                [issue.model_dump() for issue in result.issues],
                correlation_id,
            )
            raise LedgerValidationError(
                self._validator.get_user_friendly_summary(result), result
            )
        return result

    async def create_transaction(
        self,
        tx: Transaction,
        check_duplicates: bool = True,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Validate and store a transaction.

        Warnings don't block; errors raise LedgerValidationError.
        """
        result = await self._validate_or_raise(tx, check_duplicates, correlation_id)
        await self._storage.save_transaction(tx)
        await self._audit.log_created(
            "transaction",
            tx.id,
            tx.description or tx.type.display_name,
            tx.account_id,
            correlation_id,
        )
        if result.warnings:
            logger.info("transaction_saved_with_warnings", transaction_id=str(tx.id), warnings=result.warnings)
        return tx

    async def create_transfer(
        self,
        from_conto_id: UUID,
        to_conto_id: UUID,
        amount: Decimal,
        date: Optional[datetime] = None,
        description: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Transaction:
        """
        Move money between two conti of the same account.

        Produces ONE transfer transaction.
        """
        source = await self.get_conto(from_conto_id)
        target = await self.get_conto(to_conto_id)
        if source.account_id != target.account_id:
            raise IntegrityViolationError("Transfers must stay within one account")

        try:
            tx = Transaction(
                account_id=source.account_id,
                type=TransactionType.TRANSFER,
                amount=amount,
                date=date or utc_now(),
                description=description or f"Trasferimento da {source.name} a {target.name}",
                notes=notes,
                from_conto_id=source.id,
                to_conto_id=target.id,
            )
        except ValidationError as e:
            raise LedgerValidationError(str(e)) from e

        await self._validate_or_raise(tx, check_duplicates=True, correlation_id=None)
        await self._storage.save_transaction(tx)
        await self._audit.log_transfer_created(
            tx.id, tx.account_id, source.name, target.name, tx.amount
        )
        return tx

    async def get_transaction(self, transaction_id: UUID) -> Transaction:
        tx = await self._storage.get_transaction_by_id(transaction_id)
        if tx is None:
            raise EntityNotFoundError("transaction", transaction_id)
        return tx

    async def list_transactions(self, account_id: UUID, **filters: Any) -> list[Transaction]:
        return await self._storage.list_transactions(account_id=account_id, **filters)

    async def update_transaction(self, transaction_id: UUID, **changes: Any) -> Transaction:
        tx = await self.get_transaction(transaction_id)
        updated, changed = _apply_changes(tx, changes)
        await self._validate_or_raise(updated, check_duplicates=False, correlation_id=None)
        await self._storage.update_transaction(updated)
        await self._audit.log_updated("transaction", transaction_id, changed, tx.account_id)
        return updated

    async def delete_transaction(self, transaction_id: UUID) -> None:
        tx = await self.get_transaction(transaction_id)
        await self._storage.delete_transaction(transaction_id)
        await self._audit.log_deleted("transaction", transaction_id, tx.account_id)

    # =========================================================================
    # BUDGETS
    # =========================================================================

    async def _check_categories(self, account_id: UUID, category_ids: list[UUID]) -> None:
        for category_id in category_ids:
            category = await self._storage.get_category_by_id(category_id)
            if category is None or category.account_id != account_id:
                raise EntityNotFoundError("category", category_id)

    async def create_budget(self, budget: Budget) -> Budget:
        await self.get_account(budget.account_id)
        await self._check_categories(budget.account_id, budget.category_ids)
        await self._storage.save_budget(budget)
        await self._audit.log_created("budget", budget.id, budget.name, budget.account_id)
        return budget

    async def get_budget(self, budget_id: UUID) -> Budget:
        budget = await self._storage.get_budget_by_id(budget_id)
        if budget is None:
            raise EntityNotFoundError("budget", budget_id)
        return budget

    async def list_budgets(self, account_id: UUID) -> list[Budget]:
        return await self._storage.list_budgets(account_id=account_id)

    async def update_budget(self, budget_id: UUID, **changes: Any) -> Budget:
        budget = await self.get_budget(budget_id)
        updated, changed = _apply_changes(budget, changes)
        await self._check_categories(updated.account_id, updated.category_ids)
        await self._storage.update_budget(updated)
        await self._audit.log_updated("budget", budget_id, changed, budget.account_id)
        return updated

    async def delete_budget(self, budget_id: UUID) -> None:
        budget = await self.get_budget(budget_id)
        await self._storage.delete_budget(budget_id)
        await self._audit.log_deleted("budget", budget_id, budget.account_id)

    async def budget_progress(
        self,
        budget_id: UUID,
        now: Optional[datetime] = None,
    ) -> BudgetProgress:
        budget = await self.get_budget(budget_id)
        transactions = await self._storage.list_transactions(
            account_id=budget.account_id,
            transaction_type=TransactionType.EXPENSE,
        )
        return self._budgets.progress(budget, transactions, now)

    # =========================================================================
    # SAVINGS GOALS
    # =========================================================================

    async def create_goal(self, goal: SavingsGoal) -> SavingsGoal:
        await self.get_account(goal.account_id)
        if goal.category_id is not None:
            await self._check_categories(goal.account_id, [goal.category_id])
        await self._storage.save_goal(goal)
        await self._audit.log_created("goal", goal.id, goal.name, goal.account_id)
        return goal

    async def get_goal(self, goal_id: UUID) -> SavingsGoal:
        goal = await self._storage.get_goal_by_id(goal_id)
        if goal is None:
            raise EntityNotFoundError("goal", goal_id)
        return goal

    async def list_goals(self, account_id: UUID) -> list[SavingsGoal]:
        return await self._storage.list_goals(account_id=account_id)

    async def update_goal(self, goal_id: UUID, **changes: Any) -> SavingsGoal:
        goal = await self.get_goal(goal_id)
        updated, changed = _apply_changes(goal, changes)
        await self._storage.update_goal(updated)
        await self._audit.log_updated("goal", goal_id, changed, goal.account_id)
        return updated

    async def delete_goal(self, goal_id: UUID) -> None:
        goal = await self.get_goal(goal_id)
        await self._storage.delete_goal(goal_id)
        await self._audit.log_deleted("goal", goal_id, goal.account_id)

    async def add_goal_progress(self, goal_id: UUID, amount: Decimal) -> SavingsGoal:
        goal = await self.get_goal(goal_id)
        was_completed = goal.is_completed
        try:
            goal.add_progress(amount)
        except ValueError as e:
            raise LedgerValidationError(str(e)) from e
        await self._storage.update_goal(goal)
        await self._audit.log_goal_progress(
            goal_id,
            goal.account_id,
            amount,
            completed=goal.is_completed and not was_completed,
        )
        return goal

    # =========================================================================
    # BALANCES
    # =========================================================================

    async def conto_balance(self, conto_id: UUID, as_of: Optional[datetime] = None) -> Decimal:
        conto = await self.get_conto(conto_id)
        transactions = await self._storage.list_transactions(conto_id=conto_id)
        return BalanceCalculator.conto_balance(conto, transactions, as_of)

    async def account_total_balance(self, account_id: UUID) -> Decimal:
        """Sum over the active conti of the account."""
        await self.get_account(account_id)
        conti = await self._storage.list_conti(account_id=account_id)
        transactions = await self._storage.list_transactions(account_id=account_id)
        return BalanceCalculator.account_total_balance(conti, transactions)

    # =========================================================================
    # INTEGRITY
    # =========================================================================

    async def check_integrity(self, account_id: Optional[UUID] = None) -> IntegrityReport:
        """Duplicate report for one account (or the whole ledger)."""
        if account_id is None:
            accounts = await self._storage.list_accounts()
        else:
            accounts = [await self.get_account(account_id)]
        return self._integrity.check(
            accounts,
            await self._storage.list_conti(account_id=account_id),
            await self._storage.list_categories(account_id=account_id),
            await self._storage.list_transactions(account_id=account_id),
            account_id=account_id,
        )

    async def remove_duplicates(self, account_id: Optional[UUID] = None) -> dict[str, int]:
        report = await self.check_integrity(account_id)
        if not report.has_duplicates:
            return {}
        removed = await self._integrity.remove_duplicates(self._storage, report)
        await self._audit.log_duplicates_removed(account_id, removed)
        return removed
