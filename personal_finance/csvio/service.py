"""
CSV Import / Export

Import turns mapped CSV rows into validated ledger transactions, creating
categories and conti on the way when the options allow it. Export writes
an account's transactions back out with the same Italian column labels,
so an export can be re-imported without remapping.

DESIGN DECISION: A bad row never aborts an import. Each failure becomes a
CSVRowError in the result and the next row is processed; only a mapping
without amount and date is rejected up front.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog
from pydantic import ValidationError

from personal_finance.audit import AuditLogger, create_correlation_id
from personal_finance.config import CSVSettings, LedgerSettings, get_settings
from personal_finance.csvio.parser import (
    determine_transaction_type,
    detect_column_mapping,
    escape_csv_value,
    filter_rows,
    parse_amount,
    parse_csv_content,
    parse_date,
    require_valid_mapping,
)
from personal_finance.models.csv_import import (
    ColumnMapping,
    CSVExportOptions,
    CSVField,
    CSVImportOptions,
    CSVImportResult,
    CSVRowError,
    DateFormat,
    ImportErrorKind,
)
from personal_finance.models.ledger import (
    Account,
    Category,
    Conto,
    Transaction,
    TransactionType,
)
from personal_finance.services.ledger_service import LedgerService, LedgerValidationError


logger = structlog.get_logger(__name__)

# Two amounts closer than this are the same amount
AMOUNT_TOLERANCE = Decimal("0.01")


class _RowError(Exception):
    """Internal: aborts one row and becomes a CSVRowError."""

    def __init__(
        self,
        kind: ImportErrorKind,
        message: str,
        field: Optional[CSVField] = None,
        raw_value: Optional[str] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.field = field
        self.raw_value = raw_value


def format_italian_amount(amount: Decimal) -> str:
    """1234.5 -> "1.234,50"."""
    return f"{amount:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")


class CSVImportService:
    """Imports CSV rows into one account through the LedgerService."""

    def __init__(
        self,
        ledger: LedgerService,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
        csv_settings: Optional[CSVSettings] = None,
    ):
        self._ledger = ledger
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().ledger
        self._csv_settings = csv_settings or get_settings().csv

    def default_options(self) -> CSVImportOptions:
        return CSVImportOptions(
            date_format=DateFormat(self._csv_settings.date_format),
            delimiter=self._csv_settings.delimiter,
            has_header=self._csv_settings.has_header,
        )

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def _resolve_category(
        self,
        account: Account,
        name: str,
        categories: dict[str, Category],
        options: CSVImportOptions,
        result: CSVImportResult,
    ) -> Category:
        key = name.casefold()
        if key in categories:
            return categories[key]
        if not options.create_missing_categories:
            raise _RowError(
                ImportErrorKind.CATEGORY_NOT_FOUND,
                f"Categoria non trovata: {name}",
                CSVField.CATEGORY,
                name,
            )
        category = await self._ledger.create_category(Category(account_id=account.id, name=name))
        categories[key] = category
        result.created_categories.append(category.name)
        return category

    async def _find_or_create_conto(
        self,
        account: Account,
        name: Optional[str],
        conti: dict[str, Conto],
        options: CSVImportOptions,
        result: CSVImportResult,
    ) -> Optional[Conto]:
        """Name match, then creation if allowed. No fallbacks."""
        if not name:
            return None
        key = name.casefold()
        if key in conti:
            return conti[key]
        if not options.create_missing_conti:
            return None
        conto = await self._ledger.create_conto(Conto(account_id=account.id, name=name))
        conti[key] = conto
        result.created_conti.append(conto.name)
        return conto

    async def _resolve_conto(
        self,
        account: Account,
        name: Optional[str],
        conti: dict[str, Conto],
        options: CSVImportOptions,
        result: CSVImportResult,
    ) -> Conto:
        """Default conto, then name match or creation, then the first active conto."""
        if options.default_conto_id is not None:
            for conto in conti.values():
                if conto.id == options.default_conto_id:
                    return conto

        conto = await self._find_or_create_conto(account, name, conti, options, result)
        if conto is not None:
            return conto

        for conto in conti.values():
            if conto.is_active:
                return conto

        raise _RowError(
            ImportErrorKind.CONTO_NOT_FOUND,
            f"Conto non trovato: {name}" if name else "Nessun conto disponibile",
            CSVField.SOURCE_ACCOUNT,
            name,
        )

    def _is_duplicate(
        self,
        date: datetime,
        amount: Decimal,
        description: Optional[str],
        existing: list[Transaction],
    ) -> bool:
        window = timedelta(seconds=self._settings.import_duplicate_window_seconds)
        target = abs(amount)
        return any(
            abs(tx.date - date) <= window
            and abs(tx.amount - target) < AMOUNT_TOLERANCE
            and (tx.description or None) == (description or None)
            for tx in existing
        )

    # =========================================================================
    # IMPORT
    # =========================================================================

    async def _import_row(
        self,
        account: Account,
        row: list[str],
        mapping: ColumnMapping,
        options: CSVImportOptions,
        categories: dict[str, Category],
        conti: dict[str, Conto],
        existing: list[Transaction],
        result: CSVImportResult,
        correlation_id: UUID,
    ) -> Optional[Transaction]:
        """Import one row. Returns None when the row was skipped on purpose."""
        amount_text = mapping.value(row, CSVField.AMOUNT)
        if not amount_text:
            raise _RowError(
                ImportErrorKind.MISSING_FIELD, "Importo mancante", CSVField.AMOUNT
            )
        amount = parse_amount(amount_text)
        if amount is None:
            raise _RowError(
                ImportErrorKind.INVALID_AMOUNT,
                f"Importo non valido: {amount_text}",
                CSVField.AMOUNT,
                amount_text,
            )

        date_text = mapping.value(row, CSVField.DATE)
        if not date_text:
            raise _RowError(ImportErrorKind.MISSING_FIELD, "Data mancante", CSVField.DATE)
        date = parse_date(date_text, options.date_format)
        if date is None:
            raise _RowError(
                ImportErrorKind.INVALID_DATE,
                f"Data non valida: {date_text}",
                CSVField.DATE,
                date_text,
            )

        if amount == 0:
            if options.ignore_zero_amounts:
                result.zero_amounts_skipped += 1
                return None
            raise _RowError(
                ImportErrorKind.INVALID_AMOUNT,
                "Importo pari a zero",
                CSVField.AMOUNT,
                amount_text,
            )

        description = (
            mapping.value(row, CSVField.DESCRIPTION)
            or mapping.value(row, CSVField.PAYEE)
            or None
        )
        notes = mapping.value(row, CSVField.NOTES) or None

        if options.ignore_duplicates and self._is_duplicate(date, amount, description, existing):
            result.duplicates_skipped += 1
            return None

        from_name = mapping.value(row, CSVField.SOURCE_ACCOUNT) or None
        to_name = mapping.value(row, CSVField.TARGET_ACCOUNT) or None
        tx_type = determine_transaction_type(
            mapping.value(row, CSVField.TRANSACTION_TYPE), amount, from_name, to_name
        )

        from_conto = None
        to_conto = None
        if tx_type == TransactionType.TRANSFER:
            source = await self._find_or_create_conto(account, from_name, conti, options, result)
            target = await self._find_or_create_conto(account, to_name, conti, options, result)
            if source is not None and target is not None and source.id != target.id:
                from_conto, to_conto = source, target
            else:
                # Only one side is known: the sign decides the direction
                tx_type = TransactionType.EXPENSE if amount < 0 else TransactionType.INCOME

        if tx_type == TransactionType.INCOME:
            to_conto = await self._resolve_conto(account, to_name or from_name, conti, options, result)
        elif tx_type == TransactionType.EXPENSE:
            from_conto = await self._resolve_conto(account, from_name or to_name, conti, options, result)

        category = None
        category_name = mapping.value(row, CSVField.CATEGORY)
        if category_name and tx_type != TransactionType.TRANSFER:
            category = await self._resolve_category(account, category_name, categories, options, result)

        try:
            tx = Transaction(
                account_id=account.id,
                type=tx_type,
                amount=abs(amount),
                date=date,
                description=description,
                notes=notes,
                from_conto_id=from_conto.id if from_conto else None,
                to_conto_id=to_conto.id if to_conto else None,
                category_id=category.id if category else None,
            )
        except ValidationError as e:
            raise _RowError(ImportErrorKind.INVALID_TRANSACTION, str(e)) from e

        try:
            return await self._ledger.create_transaction(
                tx, check_duplicates=False, correlation_id=correlation_id
            )
        except LedgerValidationError as e:
            raise _RowError(ImportErrorKind.INVALID_TRANSACTION, str(e)) from e

    async def import_csv(
        self,
        account_id: UUID,
        text: str,
        mapping: Optional[ColumnMapping] = None,
        options: Optional[CSVImportOptions] = None,
    ) -> CSVImportResult:
        """
        Import CSV text into an account.

        Args:
            account_id: Target account
            text: Raw CSV content
            mapping: Column mapping; detected from the headers when omitted
            options: Import options; defaults come from CSVSettings

        Returns:
            CSVImportResult with per-row errors

        Raises:
            CSVMappingError: amount or date has no column
            EntityNotFoundError: the account doesn't exist
        """
        options = options or self.default_options()
        parsed = parse_csv_content(text, options.delimiter, options.has_header)
        if options.account_filter is not None:
            parsed = filter_rows(
                parsed,
                options.account_filter.column_index,
                options.account_filter.selected_value,
            )

        mapping = mapping or detect_column_mapping(parsed.headers)
        require_valid_mapping(mapping)

        account = await self._ledger.get_account(account_id)
        storage = self._ledger.storage
        categories = {
            c.name.casefold(): c
            for c in await storage.list_categories(account_id=account_id)
        }
        conti = {
            c.name.casefold(): c
            for c in await storage.list_conti(account_id=account_id)
        }
        existing = await storage.list_transactions(account_id=account_id)

        correlation_id = create_correlation_id()
        result = CSVImportResult(total_rows=parsed.row_count)
        row_offset = 2 if options.has_header else 1

        for index, row in enumerate(parsed.rows):
            try:
                tx = await self._import_row(
                    account, row, mapping, options, categories, conti,
                    existing, result, correlation_id,
                )
            except _RowError as e:
                result.errors.append(CSVRowError(
                    row_number=index + row_offset,
                    kind=e.kind,
                    message=e.message,
                    field=e.field,
                    raw_value=e.raw_value,
                ))
                continue

            if tx is None:
                result.skipped_count += 1
            else:
                existing.append(tx)
                result.imported_count += 1

        result.error_count = len(result.errors)

        logger.info(
            "csv_import_completed",
            account_id=str(account_id),
            total_rows=result.total_rows,
            imported=result.imported_count,
            skipped=result.skipped_count,
            errors=result.error_count,
        )
        await self._audit.log_csv_import(
            account_id,
            result.total_rows,
            result.imported_count,
            result.skipped_count,
            result.error_count,
            correlation_id,
        )
        return result


class CSVExportService:
    """Writes an account's transactions as CSV."""

    def __init__(
        self,
        ledger: LedgerService,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._ledger = ledger
        self._audit = audit_logger or AuditLogger()

    @staticmethod
    def _value(
        field: CSVField,
        tx: Transaction,
        account: Account,
        conto_names: dict[UUID, str],
        category_names: dict[UUID, str],
        date_format: DateFormat,
    ) -> str:
        if field == CSVField.TRANSACTION_TYPE:
            return tx.type.display_name
        if field == CSVField.AMOUNT:
            return format_italian_amount(tx.amount)
        if field in (CSVField.SOURCE_CURRENCY, CSVField.TARGET_CURRENCY):
            return account.currency
        if field == CSVField.EXCHANGE_RATE:
            return "1"
        if field == CSVField.SOURCE_ACCOUNT:
            return conto_names.get(tx.from_conto_id, "")
        if field == CSVField.TARGET_ACCOUNT:
            return conto_names.get(tx.to_conto_id, "")
        if field == CSVField.CATEGORY:
            return category_names.get(tx.category_id, "")
        if field == CSVField.DATE:
            return date_format.render(tx.date)
        if field == CSVField.NOTES:
            return tx.notes or ""
        if field == CSVField.DESCRIPTION:
            return tx.description or ""
        return ""

    async def export(
        self,
        account_id: UUID,
        options: Optional[CSVExportOptions] = None,
    ) -> str:
        """
        Export transactions, newest first, columns sorted by label.

        Both ends of the date range are inclusive.
        """
        options = options or CSVExportOptions()
        account = await self._ledger.get_account(account_id)
        storage = self._ledger.storage

        conto_names = {c.id: c.name for c in await storage.list_conti(account_id=account_id)}
        category_names = {
            c.id: c.name for c in await storage.list_categories(account_id=account_id)
        }

        transactions = [
            tx for tx in await storage.list_transactions(account_id=account_id)
            if (options.date_from is None or tx.date >= options.date_from)
            and (options.date_to is None or tx.date <= options.date_to)
            and (not options.conto_ids or tx.conto_ids & options.conto_ids)
        ]
        transactions.sort(key=lambda t: t.date, reverse=True)

        fields = options.sorted_fields
        delimiter = options.delimiter
        lines = []
        if options.include_header:
            lines.append(delimiter.join(escape_csv_value(f.value, delimiter) for f in fields))
        for tx in transactions:
            lines.append(delimiter.join(
                escape_csv_value(
                    self._value(f, tx, account, conto_names, category_names, options.date_format),
                    delimiter,
                )
                for f in fields
            ))

        await self._audit.log_csv_export(account_id, len(transactions))
        return "\n".join(lines)
