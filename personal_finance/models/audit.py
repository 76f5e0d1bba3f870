"""
Audit Models for Personal Finance

Every mutation of the ledger is logged for audit purposes.
This provides:
1. Complete traceability of all changes to money records
2. Debugging information when an import or a cascade goes wrong
3. The ability to reconstruct how a balance came to be

DESIGN DECISION: Audit logs are append-only. We never delete or modify them,
not even when the account they describe is deleted.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from personal_finance.models.ledger import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each ledger entity has its own lifecycle events.
    """
    # Accounts
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"

    # Conti
    CONTO_CREATED = "conto_created"
    CONTO_UPDATED = "conto_updated"
    CONTO_DELETED = "conto_deleted"

    # Categories
    CATEGORY_CREATED = "category_created"
    CATEGORY_UPDATED = "category_updated"
    CATEGORY_DELETED = "category_deleted"

    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    TRANSFER_CREATED = "transfer_created"

    # Budgets and goals
    BUDGET_CREATED = "budget_created"
    BUDGET_UPDATED = "budget_updated"
    BUDGET_DELETED = "budget_deleted"
    GOAL_CREATED = "goal_created"
    GOAL_UPDATED = "goal_updated"
    GOAL_DELETED = "goal_deleted"
    GOAL_PROGRESS_ADDED = "goal_progress_added"
    GOAL_COMPLETED = "goal_completed"

    # Validation
    VALIDATION_FAILED = "validation_failed"

    # CSV
    CSV_IMPORT_COMPLETED = "csv_import_completed"
    CSV_EXPORT_COMPLETED = "csv_export_completed"

    # Maintenance
    DUPLICATES_REMOVED = "duplicates_removed"

    # Queries
    QUERY_EXECUTED = "query_executed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every ledger mutation creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'conto', 'transaction')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    account_id: Optional[UUID] = Field(
        default=None,
        description="Account the entity belongs to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all rows of one CSV import)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "account_id": str(self.account_id) if self.account_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.entity_created("conto", conto.id, conto.name, account_id)
        event = AuditEventBuilder.csv_import_completed(account_id, result, correlation_id)
    """

    _CREATED = {
        "account": AuditEventType.ACCOUNT_CREATED,
        "conto": AuditEventType.CONTO_CREATED,
        "category": AuditEventType.CATEGORY_CREATED,
        "transaction": AuditEventType.TRANSACTION_CREATED,
        "budget": AuditEventType.BUDGET_CREATED,
        "goal": AuditEventType.GOAL_CREATED,
    }
    _UPDATED = {
        "account": AuditEventType.ACCOUNT_UPDATED,
        "conto": AuditEventType.CONTO_UPDATED,
        "category": AuditEventType.CATEGORY_UPDATED,
        "transaction": AuditEventType.TRANSACTION_UPDATED,
        "budget": AuditEventType.BUDGET_UPDATED,
        "goal": AuditEventType.GOAL_UPDATED,
    }
    _DELETED = {
        "account": AuditEventType.ACCOUNT_DELETED,
        "conto": AuditEventType.CONTO_DELETED,
        "category": AuditEventType.CATEGORY_DELETED,
        "transaction": AuditEventType.TRANSACTION_DELETED,
        "budget": AuditEventType.BUDGET_DELETED,
        "goal": AuditEventType.GOAL_DELETED,
    }

    @staticmethod
    def entity_created(
        entity_type: str,
        entity_id: UUID,
        name: str,
        account_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventBuilder._CREATED[entity_type],
            entity_type=entity_type,
            entity_id=entity_id,
            account_id=account_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} created: {name}",
            details={"name": name},
        )

    @staticmethod
    def entity_updated(
        entity_type: str,
        entity_id: UUID,
        changed_fields: list[str],
        account_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventBuilder._UPDATED[entity_type],
            entity_type=entity_type,
            entity_id=entity_id,
            account_id=account_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} updated: {', '.join(changed_fields) or 'no changes'}",
            details={"changed_fields": changed_fields},
        )

    @staticmethod
    def entity_deleted(
        entity_type: str,
        entity_id: UUID,
        account_id: Optional[UUID],
        cascade: Optional[dict[str, int]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventBuilder._DELETED[entity_type],
            severity=AuditSeverity.WARNING if cascade else AuditSeverity.INFO,
            entity_type=entity_type,
            entity_id=entity_id,
            account_id=account_id,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} deleted",
            details={"cascade": cascade or {}},
        )

    @staticmethod
    def transfer_created(
        transaction_id: UUID,
        account_id: UUID,
        from_conto: str,
        to_conto: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSFER_CREATED,
            entity_type="transaction",
            entity_id=transaction_id,
            account_id=account_id,
            correlation_id=correlation_id,
            description=f"Transfer of {amount} from {from_conto} to {to_conto}",
            details={
                "from_conto": from_conto,
                "to_conto": to_conto,
                "amount": str(amount),
            },
        )

    @staticmethod
    def goal_progress_added(
        goal_id: UUID,
        account_id: UUID,
        amount: Decimal,
        completed: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.GOAL_COMPLETED
                if completed
                else AuditEventType.GOAL_PROGRESS_ADDED
            ),
            entity_type="goal",
            entity_id=goal_id,
            account_id=account_id,
            correlation_id=correlation_id,
            description=(
                "Savings goal completed" if completed
                else f"Added {amount} to savings goal"
            ),
            details={"amount": str(amount)},
        )

    @staticmethod
    def validation_failed(
        transaction_id: UUID,
        account_id: UUID,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_id=transaction_id,
            account_id=account_id,
            correlation_id=correlation_id,
            description=f"Transaction validation failed with {len(issues)} issues",
            details={"issues": issues},
        )

    @staticmethod
    def csv_import_completed(
        account_id: UUID,
        total_rows: int,
        imported: int,
        skipped: int,
        errors: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CSV_IMPORT_COMPLETED,
            severity=AuditSeverity.WARNING if errors else AuditSeverity.INFO,
            entity_type="account",
            entity_id=account_id,
            account_id=account_id,
            correlation_id=correlation_id,
            description=f"CSV import: {imported}/{total_rows} rows imported",
            details={
                "total_rows": total_rows,
                "imported": imported,
                "skipped": skipped,
                "errors": errors,
            },
        )

    @staticmethod
    def csv_export_completed(
        account_id: UUID,
        row_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CSV_EXPORT_COMPLETED,
            entity_type="account",
            entity_id=account_id,
            account_id=account_id,
            correlation_id=correlation_id,
            description=f"CSV export: {row_count} transactions",
            details={"row_count": row_count},
        )

    @staticmethod
    def duplicates_removed(
        account_id: Optional[UUID],
        removed: dict[str, int],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATES_REMOVED,
            severity=AuditSeverity.WARNING,
            account_id=account_id,
            correlation_id=correlation_id,
            description=f"Removed {sum(removed.values())} duplicate records",
            details={"removed": removed},
        )

    @staticmethod
    def query_executed(
        query_id: UUID,
        query_type: str,
        result_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUERY_EXECUTED,
            entity_type="query",
            entity_id=query_id,
            correlation_id=correlation_id,
            description=f"Query executed: {query_type} returned {result_count} results",
            details={
                "query_type": query_type,
                "result_count": result_count,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
