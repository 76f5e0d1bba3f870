"""
Two-Stage Validation Pipeline

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- The account and the conti the transaction type needs exist
- They belong to the transaction's account
- Amount is positive, transfer ends are distinct
- This catches dangling references and malformed imports

STAGE 2 - SEMANTIC VALIDATION:
- Future date detection
- Unusually large amount detection
- Inactive conto and credit limit checks
- Category ownership
- Duplicate detection
- This catches logically impossible or suspicious data

WHY TWO STAGES:
1. Separation of concerns (structural vs logical)
2. Better error messages (know exactly what kind of issue)
3. Stage 2 is skipped when stage 1 fails, so it can assume the conti exist

IMPORTANT: Validation NEVER silently fixes issues.
It reports them; the caller decides.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

import structlog

from personal_finance.calculations.balance import current_month_spending
from personal_finance.config import LedgerSettings, get_settings
from personal_finance.models.ledger import (
    ContoType,
    Transaction,
    TransactionType,
    ValidationIssue,
    ValidationResult,
    utc_now,
)
from personal_finance.services.integrity import DataIntegrityService
from personal_finance.services.storage import LedgerStorageInterface, StorageError


logger = structlog.get_logger(__name__)


class TransactionValidator:
    """
    Validates a transaction against the stored ledger.

    Stage 1: Schema validation (references)
    Stage 2: Semantic validation (business rules, duplicates)
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        integrity: Optional[DataIntegrityService] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger
        self._integrity = integrity or DataIntegrityService(
            self._settings.duplicate_window_seconds
        )

    async def _validate_schema(
        self,
        tx: Transaction,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        account = await self._storage.get_account_by_id(tx.account_id)
        if account is None:
            issues.append(ValidationIssue(
                field="account_id",
                issue_type="not_found",
                message=f"Account {tx.account_id} does not exist",
                severity="error",
            ))

        if tx.amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount must be greater than zero",
                severity="error",
            ))

        required = []
        if tx.type in (TransactionType.EXPENSE, TransactionType.TRANSFER):
            required.append(("from_conto_id", tx.from_conto_id))
        if tx.type in (TransactionType.INCOME, TransactionType.TRANSFER):
            required.append(("to_conto_id", tx.to_conto_id))

        for field, conto_id in required:
            if conto_id is None:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="missing",
                    message=f"{tx.type.display_name} requires {field}",
                    severity="error",
                ))
                continue
            conto = await self._storage.get_conto_by_id(conto_id)
            if conto is None:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="not_found",
                    message=f"Conto {conto_id} does not exist",
                    severity="error",
                    suggested_fix="Pick an existing conto",
                ))
            elif conto.account_id != tx.account_id:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="wrong_account",
                    message=f"Conto '{conto.name}' belongs to another account",
                    severity="error",
                ))

        if (
            tx.type == TransactionType.TRANSFER
            and tx.from_conto_id is not None
            and tx.from_conto_id == tx.to_conto_id
        ):
            issues.append(ValidationIssue(
                field="to_conto_id",
                issue_type="invalid_value",
                message="A transfer needs two different conti",
                severity="error",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    async def _validate_semantic(
        self,
        tx: Transaction,
        now: datetime,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        max_future = now + timedelta(days=self._settings.future_date_tolerance_days)
        if tx.date > max_future:
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Transaction date ({tx.date:%Y-%m-%d}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        large_amount = Decimal(str(self._settings.large_amount_threshold))
        if tx.amount > large_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({tx.amount:,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        for conto_id in tx.conto_ids:
            conto = await self._storage.get_conto_by_id(conto_id)
            if conto is None:
                continue
            if not conto.is_active:
                issues.append(ValidationIssue(
                    field="conto",
                    issue_type="inactive",
                    message=f"Conto '{conto.name}' is inactive",
                    severity="warning",
                ))
            if (
                conto_id == tx.from_conto_id
                and conto.type == ContoType.CREDIT
                and conto.credit_limit is not None
            ):
                # An edited transaction replaces its stored copy
                history = [
                    t for t in await self._storage.list_transactions(conto_id=conto_id)
                    if t.id != tx.id
                ]
                spent = current_month_spending(conto, history, now)
                if spent + tx.amount > conto.credit_limit:
                    issues.append(ValidationIssue(
                        field="amount",
                        issue_type="credit_limit_exceeded",
                        message=(
                            f"This would bring '{conto.name}' to {spent + tx.amount:,.2f} "
                            f"of a {conto.credit_limit:,.2f} credit limit"
                        ),
                        severity="warning",
                    ))

        if tx.category_id is not None:
            category = await self._storage.get_category_by_id(tx.category_id)
            if category is None:
                issues.append(ValidationIssue(
                    field="category_id",
                    issue_type="not_found",
                    message=f"Category {tx.category_id} does not exist",
                    severity="error",
                ))
            elif category.account_id != tx.account_id:
                issues.append(ValidationIssue(
                    field="category_id",
                    issue_type="wrong_account",
                    message=f"Category '{category.name}' belongs to another account",
                    severity="error",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    async def _check_duplicates(self, tx: Transaction) -> list[ValidationIssue]:
        window = self._integrity.window
        try:
            candidates = await self._storage.list_transactions(
                account_id=tx.account_id,
                transaction_type=tx.type,
                date_from=tx.date - window,
                date_to=tx.date + window + timedelta(microseconds=1),
            )
        except StorageError as e:
            logger.warning("duplicate_check_failed", error=str(e), transaction_id=str(tx.id))
            return []

        if any(self._integrity.is_duplicate_transaction(other, tx) for other in candidates):
            return [ValidationIssue(
                field="duplicate",
                issue_type="potential_duplicate",
                message=(
                    f"A {tx.type.display_name.lower()} of {tx.amount:,.2f} "
                    "on the same conti was recorded moments apart"
                ),
                severity="warning",
                suggested_fix="Please verify this isn't a duplicate entry",
            )]
        return []

    async def validate(
        self,
        tx: Transaction,
        check_duplicates: bool = True,
        now: Optional[datetime] = None,
    ) -> ValidationResult:
        """
        Run full two-stage validation pipeline.

        Args:
            tx: The transaction to validate (not yet saved, or being updated)
            check_duplicates: Whether to look for near-identical transactions
            now: Reference time for date checks

        Returns:
            ValidationResult with all issues found
        """
        now = now or utc_now()
        all_issues = []

        # Stage 1: Schema validation
        schema_valid, schema_issues = await self._validate_schema(tx)
        all_issues.extend(schema_issues)

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = await self._validate_semantic(tx, now)
            all_issues.extend(semantic_issues)

            if check_duplicates:
                all_issues.extend(await self._check_duplicates(tx))

        warnings = [issue.message for issue in all_issues if issue.severity == "warning"]
        is_valid = schema_valid and semantic_valid

        return ValidationResult(
            transaction_id=tx.id,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=is_valid,
            can_proceed=not any(issue.severity == "error" for issue in all_issues),
            issues=all_issues,
            warnings=warnings,
        )

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed!"

        lines = []

        if result.has_errors:
            lines.append("❌ This transaction cannot be saved:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        lines.append("")
        if result.can_proceed:
            lines.append("You can still proceed, but please review carefully.")
        else:
            lines.append("Please fix the issues above before continuing.")

        return "\n".join(lines)
