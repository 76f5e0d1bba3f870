"""
Data Integrity

Finds records that describe the same thing twice (typically a CSV imported
twice, or a double tap) and removes the extras.

DESIGN DECISION: Detection and removal are separate steps. find_* only
reports; remove_duplicates acts on a report, always keeping the OLDEST
record of each group so that references created first stay valid.
"""

from datetime import timedelta
from typing import Callable, Hashable, Iterable, Optional, TypeVar
from uuid import UUID

import structlog

from personal_finance.config import get_settings
from personal_finance.models.analytics import DuplicateGroup, IntegrityReport
from personal_finance.models.ledger import Account, Category, Conto, Transaction
from personal_finance.services.storage import LedgerStorageInterface


logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _group_by_key(
    entity_type: str,
    items: Iterable[T],
    key: Callable[[T], Hashable],
    reason: str,
) -> list[DuplicateGroup]:
    buckets: dict[Hashable, list] = {}
    for item in sorted(items, key=lambda i: i.created_at):
        buckets.setdefault(key(item), []).append(item)
    return [
        DuplicateGroup(entity_type=entity_type, ids=[i.id for i in bucket], reason=reason)
        for bucket in buckets.values()
        if len(bucket) > 1
    ]


class DataIntegrityService:
    """Duplicate detection over in-memory lists."""

    def __init__(self, window_seconds: Optional[int] = None):
        seconds = window_seconds
        if seconds is None:
            seconds = get_settings().ledger.duplicate_window_seconds
        self.window = timedelta(seconds=seconds)

    def is_duplicate_transaction(self, a: Transaction, b: Transaction) -> bool:
        """Same type, amount and conti, within the time window."""
        return (
            a.id != b.id
            and a.type == b.type
            and a.amount == b.amount
            and a.from_conto_id == b.from_conto_id
            and a.to_conto_id == b.to_conto_id
            and abs(a.date - b.date) <= self.window
        )

    def find_duplicate_transactions(
        self,
        transactions: Iterable[Transaction],
    ) -> list[DuplicateGroup]:
        """
        Group transactions that duplicate an earlier one.

        Each transaction joins the first group whose oldest member it
        duplicates, so the kept record is always the oldest by creation.
        """
        groups: list[list[Transaction]] = []
        for tx in sorted(transactions, key=lambda t: t.created_at):
            for group in groups:
                if self.is_duplicate_transaction(group[0], tx):
                    group.append(tx)
                    break
            else:
                groups.append([tx])
        return [
            DuplicateGroup(
                entity_type="transaction",
                ids=[t.id for t in group],
                reason=f"same type, amount and conti within {int(self.window.total_seconds())}s",
            )
            for group in groups
            if len(group) > 1
        ]

    @staticmethod
    def find_duplicate_accounts(accounts: Iterable[Account]) -> list[DuplicateGroup]:
        return _group_by_key(
            "account",
            accounts,
            lambda a: (a.name.casefold(), a.currency),
            "same name and currency",
        )

    @staticmethod
    def find_duplicate_conti(conti: Iterable[Conto]) -> list[DuplicateGroup]:
        return _group_by_key(
            "conto",
            conti,
            lambda c: (c.account_id, c.name.casefold(), c.type),
            "same name and type in the same account",
        )

    @staticmethod
    def find_duplicate_categories(categories: Iterable[Category]) -> list[DuplicateGroup]:
        return _group_by_key(
            "category",
            categories,
            lambda c: (c.account_id, c.name.casefold()),
            "same name in the same account",
        )

    def check(
        self,
        accounts: Iterable[Account],
        conti: Iterable[Conto],
        categories: Iterable[Category],
        transactions: Iterable[Transaction],
        account_id: Optional[UUID] = None,
    ) -> IntegrityReport:
        report = IntegrityReport(
            account_id=account_id,
            transactions=self.find_duplicate_transactions(transactions),
            accounts=self.find_duplicate_accounts(accounts),
            conti=self.find_duplicate_conti(conti),
            categories=self.find_duplicate_categories(categories),
        )
        if report.has_duplicates:
            logger.warning(
                "duplicates_found",
                account_id=str(account_id) if account_id else None,
                count=report.duplicate_count,
            )
        return report

    @staticmethod
    def ids_to_remove(groups: Iterable[DuplicateGroup]) -> list[UUID]:
        """Every id of every group except the first (oldest)."""
        return [entity_id for group in groups for entity_id in group.ids[1:]]

    # =========================================================================
    # REMOVAL
    # =========================================================================

    @staticmethod
    async def _merge_category(
        storage: LedgerStorageInterface,
        keep: UUID,
        duplicate: UUID,
    ) -> bool:
        """Move every reference from duplicate to keep, then delete duplicate."""
        for tx in await storage.list_transactions(category_id=duplicate):
            await storage.update_transaction(tx.model_copy(update={"category_id": keep}))
        for budget in await storage.list_budgets():
            if duplicate in budget.category_ids:
                merged = [keep if c == duplicate else c for c in budget.category_ids]
                await storage.update_budget(
                    budget.model_copy(update={"category_ids": list(dict.fromkeys(merged))})
                )
        for goal in await storage.list_goals():
            if goal.category_id == duplicate:
                await storage.update_goal(goal.model_copy(update={"category_id": keep}))
        for child in await storage.list_categories():
            if child.parent_category_id == duplicate:
                # A category is never its own parent
                parent = None if child.id == keep else keep
                await storage.update_category(
                    child.model_copy(update={"parent_category_id": parent})
                )
        return await storage.delete_category(duplicate)

    @staticmethod
    async def _merge_conto(
        storage: LedgerStorageInterface,
        keep: UUID,
        duplicate: UUID,
    ) -> int:
        """
        Move every transaction from duplicate to keep, then delete duplicate.

        Returns:
            Number of transfers deleted because both sides became keep
        """
        dropped = 0
        for tx in await storage.list_transactions(conto_id=duplicate):
            from_id = keep if tx.from_conto_id == duplicate else tx.from_conto_id
            to_id = keep if tx.to_conto_id == duplicate else tx.to_conto_id
            if from_id is not None and from_id == to_id:
                await storage.delete_transaction(tx.id)
                dropped += 1
                continue
            await storage.update_transaction(
                tx.model_copy(update={"from_conto_id": from_id, "to_conto_id": to_id})
            )
        await storage.delete_conto(duplicate)
        return dropped

    async def remove_duplicates(
        self,
        storage: LedgerStorageInterface,
        report: IntegrityReport,
    ) -> dict[str, int]:
        """
        Delete every duplicate in the report, keeping the oldest of each group.

        References to a removed conto, category or account are moved to the
        kept record first. A transfer that would end up going from a conto
        to itself is deleted instead. When accounts merge, a conto or
        category whose name already exists in the kept account is merged
        into that record rather than moved.

        Returns:
            Number of removed records per entity type
        """
        removed = {"transactions": 0, "categories": 0, "conti": 0, "accounts": 0}

        for entity_id in self.ids_to_remove(report.transactions):
            if await storage.delete_transaction(entity_id):
                removed["transactions"] += 1

        for group in report.categories:
            keep = group.ids[0]
            for duplicate in group.ids[1:]:
                if await self._merge_category(storage, keep, duplicate):
                    removed["categories"] += 1

        for group in report.conti:
            keep = group.ids[0]
            for duplicate in group.ids[1:]:
                removed["transactions"] += await self._merge_conto(storage, keep, duplicate)
                removed["conti"] += 1

        for group in report.accounts:
            keep = group.ids[0]
            for duplicate in group.ids[1:]:
                moved = {"account_id": keep}

                kept_conti = {
                    (c.name.casefold(), c.type): c.id
                    for c in await storage.list_conti(account_id=keep)
                }
                for conto in await storage.list_conti(account_id=duplicate):
                    twin = kept_conti.get((conto.name.casefold(), conto.type))
                    if twin is None:
                        await storage.update_conto(conto.model_copy(update=moved))
                    else:
                        removed["transactions"] += await self._merge_conto(storage, twin, conto.id)
                        removed["conti"] += 1

                kept_categories = {
                    c.name.casefold(): c.id
                    for c in await storage.list_categories(account_id=keep)
                }
                for category in await storage.list_categories(account_id=duplicate):
                    twin = kept_categories.get(category.name.casefold())
                    if twin is None:
                        await storage.update_category(category.model_copy(update=moved))
                    elif await self._merge_category(storage, twin, category.id):
                        removed["categories"] += 1

                for tx in await storage.list_transactions(account_id=duplicate):
                    await storage.update_transaction(tx.model_copy(update=moved))
                for budget in await storage.list_budgets(account_id=duplicate):
                    await storage.update_budget(budget.model_copy(update=moved))
                for goal in await storage.list_goals(account_id=duplicate):
                    await storage.update_goal(goal.model_copy(update=moved))
                if await storage.delete_account(duplicate):
                    removed["accounts"] += 1

        logger.info("duplicates_removed", **removed)
        return removed
