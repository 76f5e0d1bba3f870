"""
Audit Logger

DESIGN DECISION: Every mutation of the ledger is logged.
This provides:
1. Complete traceability of balances
2. Debugging capability for imports and cascades
3. A history the user can browse

The audit logger:
- Is async to match the storage interface
- Gracefully handles storage failures (a failed audit write never undoes
  a ledger write)
- Supports correlation IDs to trace related events
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from personal_finance.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from personal_finance.services.storage import AuditStorageInterface, StorageError


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and history)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except StorageError as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_created(
        self,
        entity_type: str,
        entity_id: UUID,
        name: str,
        account_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.entity_created(
            entity_type=entity_type,
            entity_id=entity_id,
            name=name,
            account_id=account_id,
            correlation_id=correlation_id,
        ))

    async def log_updated(
        self,
        entity_type: str,
        entity_id: UUID,
        changed_fields: list[str],
        account_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.entity_updated(
            entity_type=entity_type,
            entity_id=entity_id,
            changed_fields=changed_fields,
            account_id=account_id,
            correlation_id=correlation_id,
        ))

    async def log_deleted(
        self,
        entity_type: str,
        entity_id: UUID,
        account_id: Optional[UUID],
        cascade: Optional[dict[str, int]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.entity_deleted(
            entity_type=entity_type,
            entity_id=entity_id,
            account_id=account_id,
            cascade=cascade,
            correlation_id=correlation_id,
        ))

    async def log_transfer_created(
        self,
        transaction_id: UUID,
        account_id: UUID,
        from_conto: str,
        to_conto: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transfer_created(
            transaction_id=transaction_id,
            account_id=account_id,
            from_conto=from_conto,
            to_conto=to_conto,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_goal_progress(
        self,
        goal_id: UUID,
        account_id: UUID,
        amount: Decimal,
        completed: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.goal_progress_added(
            goal_id=goal_id,
            account_id=account_id,
            amount=amount,
            completed=completed,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        transaction_id: UUID,
        account_id: UUID,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log validation failure."""
        await self.log(AuditEventBuilder.validation_failed(
            transaction_id=transaction_id,
            account_id=account_id,
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_csv_import(
        self,
        account_id: UUID,
        total_rows: int,
        imported: int,
        skipped: int,
        errors: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.csv_import_completed(
            account_id=account_id,
            total_rows=total_rows,
            imported=imported,
            skipped=skipped,
            errors=errors,
            correlation_id=correlation_id,
        ))

    async def log_csv_export(
        self,
        account_id: UUID,
        row_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.csv_export_completed(
            account_id=account_id,
            row_count=row_count,
            correlation_id=correlation_id,
        ))

    async def log_duplicates_removed(
        self,
        account_id: Optional[UUID],
        removed: dict[str, int],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.duplicates_removed(
            account_id=account_id,
            removed=removed,
            correlation_id=correlation_id,
        ))

    async def log_query_executed(
        self,
        query_id: UUID,
        query_type: str,
        result_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log query execution."""
        await self.log(AuditEventBuilder.query_executed(
            query_id=query_id,
            query_type=query_type,
            result_count=result_count,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a compound action (e.g., a CSV import or a
    cascading delete). Pass it through all subsequent operations.
    """
    return uuid4()
