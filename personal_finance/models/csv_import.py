"""
CSV Import/Export Models

DESIGN DECISION: Column mapping is explicit. The parser can guess a
mapping from the header names, but the import only ever runs against a
ColumnMapping the caller has seen (and possibly corrected). Nothing is
imported from a column the user did not assign.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from dateutil import tz
from pydantic import BaseModel, Field


# =============================================================================
# ENUMS
# =============================================================================

class CSVField(str, Enum):
    """
    Ledger fields a CSV column can be mapped to.

    The value is the Italian column label used for export headers.
    """
    TRANSACTION_TYPE = "Tipo"
    AMOUNT = "Importo"
    SOURCE_CURRENCY = "Valuta di origine"
    TARGET_CURRENCY = "Valuta di destinazione"
    EXCHANGE_RATE = "Tasso di cambio"
    SOURCE_ACCOUNT = "Conto (Da)"
    TARGET_ACCOUNT = "Conto (A)"
    CATEGORY = "Categoria"
    PAYEE = "Beneficiario"
    DATE = "Data"
    NOTES = "Note"
    DESCRIPTION = "Descrizione"

    @property
    def is_required(self) -> bool:
        return self in (CSVField.AMOUNT, CSVField.DATE)

    @property
    def keywords(self) -> list[str]:
        """Header fragments (lowercase) that suggest this field."""
        return FIELD_KEYWORDS[self]


FIELD_KEYWORDS: dict[CSVField, list[str]] = {
    CSVField.TRANSACTION_TYPE: ["tipo", "type", "transaction type", "tipo transazione"],
    CSVField.AMOUNT: ["importo", "amount", "valore", "value", "somma", "totale"],
    CSVField.SOURCE_CURRENCY: ["valuta origine", "source currency", "currency from"],
    CSVField.TARGET_CURRENCY: ["valuta destinazione", "target currency", "currency to"],
    CSVField.EXCHANGE_RATE: ["tasso", "exchange", "rate", "cambio"],
    CSVField.SOURCE_ACCOUNT: [
        "conto da", "conto origine", "from account", "source account", "conto",
    ],
    CSVField.TARGET_ACCOUNT: [
        "conto a", "conto destinazione", "to account", "target account",
    ],
    CSVField.CATEGORY: ["categoria", "category", "cat"],
    CSVField.PAYEE: ["beneficiario", "payee", "destinatario", "pagatore"],
    CSVField.DATE: ["data", "date", "giorno", "quando"],
    CSVField.NOTES: ["note", "notes", "commento", "memo"],
    CSVField.DESCRIPTION: ["descrizione", "description", "desc", "titolo", "oggetto"],
}


class DateFormat(str, Enum):
    """
    Supported CSV date layouts.

    Values are the display patterns users pick from. `strptime_format`
    is what actually parses them.
    """
    # ISO 8601
    ISO8601 = "yyyy-MM-dd'T'HH:mm:ss"
    ISO8601_Z = "yyyy-MM-dd'T'HH:mm:ssZ"
    ISO8601_OFFSET = "yyyy-MM-dd'T'HH:mm:ssZZZZZ"
    ISO8601_DATE_ONLY = "yyyy-MM-dd"

    # US
    US_SLASH = "MM/dd/yyyy HH:mm"
    US_DASH = "MM-dd-yyyy HH:mm"
    US_DOT = "MM.dd.yyyy HH:mm"
    US_SLASH_SHORT = "MM/dd/yy HH:mm"
    US_SLASH_DATE_ONLY = "MM/dd/yyyy"

    # European
    EU_SLASH = "dd/MM/yyyy HH:mm"
    EU_DASH = "dd-MM-yyyy HH:mm"
    EU_DOT = "dd.MM.yyyy HH:mm"
    EU_SLASH_SHORT = "dd/MM/yy HH:mm"
    EU_SLASH_DATE_ONLY = "dd/MM/yyyy"
    EU_DASH_DATE_ONLY = "dd-MM-yyyy"

    # Text
    LONG_WEEKDAY = "EEEE, MMM d, yyyy"
    SHORT_WEEKDAY = "EEEE, MMM d, yy"
    MONTH_YEAR = "MMMM yyyy"
    SHORT_MONTH = "MMM d, yyyy"

    RFC2822 = "E, d MMM yyyy HH:mm:ss Z"

    @property
    def strptime_format(self) -> str:
        return _STRPTIME_FORMATS[self]

    def parse(self, text: str) -> Optional[datetime]:
        """Parse text in this layout. Aware results are converted to naive UTC."""
        try:
            parsed = datetime.strptime(text.strip(), self.strptime_format)
        except ValueError:
            return None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(tz.UTC).replace(tzinfo=None)
        return parsed

    def render(self, value: datetime) -> str:
        """Render a naive UTC datetime in this layout."""
        if self == DateFormat.ISO8601_OFFSET:
            return value.replace(tzinfo=tz.UTC).isoformat(timespec="seconds")
        return value.replace(tzinfo=tz.UTC).strftime(self.strptime_format)


_STRPTIME_FORMATS: dict[DateFormat, str] = {
    DateFormat.ISO8601: "%Y-%m-%dT%H:%M:%S",
    DateFormat.ISO8601_Z: "%Y-%m-%dT%H:%M:%S%z",
    DateFormat.ISO8601_OFFSET: "%Y-%m-%dT%H:%M:%S%z",
    DateFormat.ISO8601_DATE_ONLY: "%Y-%m-%d",
    DateFormat.US_SLASH: "%m/%d/%Y %H:%M",
    DateFormat.US_DASH: "%m-%d-%Y %H:%M",
    DateFormat.US_DOT: "%m.%d.%Y %H:%M",
    DateFormat.US_SLASH_SHORT: "%m/%d/%y %H:%M",
    DateFormat.US_SLASH_DATE_ONLY: "%m/%d/%Y",
    DateFormat.EU_SLASH: "%d/%m/%Y %H:%M",
    DateFormat.EU_DASH: "%d-%m-%Y %H:%M",
    DateFormat.EU_DOT: "%d.%m.%Y %H:%M",
    DateFormat.EU_SLASH_SHORT: "%d/%m/%y %H:%M",
    DateFormat.EU_SLASH_DATE_ONLY: "%d/%m/%Y",
    DateFormat.EU_DASH_DATE_ONLY: "%d-%m-%Y",
    DateFormat.LONG_WEEKDAY: "%A, %b %d, %Y",
    DateFormat.SHORT_WEEKDAY: "%A, %b %d, %y",
    DateFormat.MONTH_YEAR: "%B %Y",
    DateFormat.SHORT_MONTH: "%b %d, %Y",
    DateFormat.RFC2822: "%a, %d %b %Y %H:%M:%S %z",
}

# European layouts first: exports from Italian banks are the common case
DATE_FALLBACK_ORDER: list[DateFormat] = [
    DateFormat.EU_SLASH_DATE_ONLY,
    DateFormat.EU_DASH_DATE_ONLY,
    DateFormat.EU_SLASH,
    DateFormat.EU_DASH,
    DateFormat.EU_DOT,
    DateFormat.EU_SLASH_SHORT,
    DateFormat.ISO8601_DATE_ONLY,
    DateFormat.ISO8601,
    DateFormat.ISO8601_Z,
    DateFormat.ISO8601_OFFSET,
    DateFormat.US_SLASH_DATE_ONLY,
    DateFormat.US_SLASH,
    DateFormat.US_DASH,
    DateFormat.US_DOT,
    DateFormat.US_SLASH_SHORT,
    DateFormat.LONG_WEEKDAY,
    DateFormat.SHORT_WEEKDAY,
    DateFormat.MONTH_YEAR,
    DateFormat.SHORT_MONTH,
    DateFormat.RFC2822,
]


class ImportErrorKind(str, Enum):
    MISSING_FIELD = "missing_field"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_DATE = "invalid_date"
    CONTO_NOT_FOUND = "conto_not_found"
    CATEGORY_NOT_FOUND = "category_not_found"
    INVALID_TRANSACTION = "invalid_transaction"


# =============================================================================
# PARSING MODELS
# =============================================================================

class ParsedCSV(BaseModel):
    """Raw cells of a CSV document, trimmed, blank lines removed."""

    headers: list[str] = Field(default_factory=list)
    rows: list[list[str]] = Field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        return len(self.headers)

    def value(self, row: int, column: int) -> Optional[str]:
        if row >= len(self.rows) or column >= len(self.rows[row]):
            return None
        return self.rows[row][column]


class ColumnMapping(BaseModel):
    """Which CSV column (by index) feeds each ledger field."""

    columns: dict[CSVField, int] = Field(default_factory=dict)

    def is_assigned(self, field: CSVField) -> bool:
        return field in self.columns

    def value(self, row: list[str], field: CSVField) -> Optional[str]:
        """Cell for `field` in `row`, or None if unmapped or the row is short."""
        index = self.columns.get(field)
        if index is None or index >= len(row):
            return None
        return row[index]


class CSVMappingIssue(BaseModel):
    field: CSVField
    message: str


class CSVAccountFilter(BaseModel):
    """Restrict a multi-account export to the rows of one account value."""
    column_index: int = Field(..., ge=0)
    selected_value: str


class CSVImportOptions(BaseModel):
    date_format: DateFormat = DateFormat.EU_SLASH_DATE_ONLY
    ignore_zero_amounts: bool = False
    ignore_duplicates: bool = True
    create_missing_categories: bool = True
    create_missing_conti: bool = False
    default_conto_id: Optional[UUID] = None

    delimiter: str = Field(default=",", min_length=1, max_length=1)
    has_header: bool = True

    account_filter: Optional[CSVAccountFilter] = None


class CSVPreviewRow(BaseModel):
    row_number: int
    date: Optional[datetime] = None
    amount: Optional[Decimal] = None
    type: Optional[str] = None
    category: Optional[str] = None
    conto: Optional[str] = None
    description: Optional[str] = None
    has_error: bool = False
    error_message: Optional[str] = None


# =============================================================================
# RESULT MODELS
# =============================================================================

class CSVRowError(BaseModel):
    row_number: int
    kind: ImportErrorKind
    message: str
    field: Optional[CSVField] = None
    raw_value: Optional[str] = None


class CSVImportResult(BaseModel):
    total_rows: int = 0
    imported_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    errors: list[CSVRowError] = Field(default_factory=list)
    duplicates_skipped: int = 0
    zero_amounts_skipped: int = 0
    created_categories: list[str] = Field(default_factory=list)
    created_conti: list[str] = Field(default_factory=list)

    @property
    def success_rate(self) -> float:
        """Imported rows as a fraction of all rows."""
        if self.total_rows == 0:
            return 0.0
        return self.imported_count / self.total_rows


class CSVExportOptions(BaseModel):
    include_header: bool = True
    date_format: DateFormat = DateFormat.ISO8601_OFFSET
    delimiter: str = Field(default=",", min_length=1, max_length=1)
    include_fields: set[CSVField] = Field(default_factory=lambda: set(CSVField))
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    conto_ids: set[UUID] = Field(default_factory=set)

    @property
    def sorted_fields(self) -> list[CSVField]:
        return sorted(self.include_fields, key=lambda f: f.value)
