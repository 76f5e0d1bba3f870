"""
CSV Parser

Turns bank-export CSV text into trimmed string cells and interprets the
cells the user mapped: amounts in either European or US notation, dates
in any of the supported layouts, and transaction types in Italian or
English.

DESIGN DECISION: pandas does the tokenizing (quotes, embedded delimiters,
embedded newlines) but every cell is read as a string. Interpretation is
ours, per column, so one malformed amount fails one row instead of the
dtype inference of the whole column.
"""

import io
from collections import Counter
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

import pandas as pd

from personal_finance.models.csv_import import (
    DATE_FALLBACK_ORDER,
    ColumnMapping,
    CSVField,
    CSVImportOptions,
    CSVMappingIssue,
    CSVPreviewRow,
    DateFormat,
    ParsedCSV,
)
from personal_finance.models.ledger import TransactionType


class CSVMappingError(ValueError):
    """A required field has no column assigned."""

    def __init__(self, issues: list[CSVMappingIssue]):
        super().__init__("; ".join(issue.message for issue in issues))
        self.issues = issues


_STRIPPED_FROM_AMOUNTS = ("\u00a0", " ", "€", "$", "'")

_INCOME_KEYWORDS = ("entrata", "income", "ricavo")
_TRANSFER_KEYWORDS = ("trasferimento", "transfer", "giroconto")
_EXPENSE_KEYWORDS = ("spesa", "expense", "uscita")


# =============================================================================
# TOKENIZING
# =============================================================================

def _max_field_count(text: str, delimiter: str) -> int:
    """Widest record in the text, honouring quotes (which may span lines)."""
    widest = 1
    fields = 1
    in_quotes = False
    for char in text:
        if char == '"':
            in_quotes = not in_quotes
        elif in_quotes:
            continue
        elif char == delimiter:
            fields += 1
        elif char == "\n":
            widest = max(widest, fields)
            fields = 1
    return max(widest, fields)


def parse_csv_content(
    text: str,
    delimiter: str = ",",
    has_header: bool = True,
) -> ParsedCSV:
    """
    Split CSV text into headers and rows of trimmed cells.

    Rows may be ragged; blank lines are dropped. Without a header the
    columns are named "Colonna 1", "Colonna 2", ...
    """
    if not text or not text.strip():
        return ParsedCSV()

    text = text.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n")
    frame = pd.read_csv(
        io.StringIO(text),
        sep=delimiter,
        header=None,
        names=range(_max_field_count(text, delimiter)),
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        engine="python",
        quotechar='"',
    )

    rows: list[list[str]] = []
    for record in frame.itertuples(index=False, name=None):
        cells = list(record)
        # Short rows are padded with NaN by pandas
        while cells and not isinstance(cells[-1], str):
            cells.pop()
        cells = [cell.strip() if isinstance(cell, str) else "" for cell in cells]
        if any(cells):
            rows.append(cells)

    if not rows:
        return ParsedCSV()

    if has_header:
        return ParsedCSV(headers=rows[0], rows=rows[1:])

    width = max(len(row) for row in rows)
    return ParsedCSV(headers=[f"Colonna {i + 1}" for i in range(width)], rows=rows)


# =============================================================================
# COLUMN MAPPING
# =============================================================================

def detect_column_mapping(headers: list[str]) -> ColumnMapping:
    """
    Guess which column feeds each field.

    An exact (case-insensitive) match on the field label wins; otherwise
    the first unused header containing one of the field keywords.
    """
    normalized = [h.strip().casefold() for h in headers]
    columns: dict[CSVField, int] = {}
    used: set[int] = set()

    for field in CSVField:
        label = field.value.casefold()
        for index, header in enumerate(normalized):
            if header == label and index not in used:
                columns[field] = index
                used.add(index)
                break

    for field in CSVField:
        if field in columns:
            continue
        for index, header in enumerate(normalized):
            if index in used:
                continue
            if any(keyword in header for keyword in field.keywords):
                columns[field] = index
                used.add(index)
                break

    return ColumnMapping(columns=columns)


def validate_mapping(mapping: ColumnMapping) -> list[CSVMappingIssue]:
    """Issues for every required field without a column."""
    return [
        CSVMappingIssue(field=field, message=f"Campo obbligatorio non mappato: {field.value}")
        for field in CSVField
        if field.is_required and not mapping.is_assigned(field)
    ]


def require_valid_mapping(mapping: ColumnMapping) -> None:
    issues = validate_mapping(mapping)
    if issues:
        raise CSVMappingError(issues)


# =============================================================================
# VALUE PARSING
# =============================================================================

def parse_amount(text: Optional[str]) -> Optional[Decimal]:
    """
    Parse "1.234,56", "1,234.56", "-50,00", "€ 12" and friends.

    Whichever of ',' and '.' comes last is the decimal separator. A single
    ',' on its own is decimal; repeated separators of one kind are
    thousands separators.
    """
    if text is None:
        return None
    cleaned = text.strip().replace("\u2212", "-")
    for token in _STRIPPED_FROM_AMOUNTS:
        cleaned = cleaned.replace(token, "")
    if not cleaned:
        return None

    last_comma = cleaned.rfind(",")
    last_dot = cleaned.rfind(".")
    if last_comma >= 0 and last_dot >= 0:
        if last_comma > last_dot:
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif last_comma >= 0:
        if cleaned.count(",") == 1:
            cleaned = cleaned.replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif cleaned.count(".") > 1:
        cleaned = cleaned.replace(".", "")

    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def parse_date(
    text: Optional[str],
    preferred: Optional[DateFormat] = None,
) -> Optional[datetime]:
    """Try the preferred layout, then every supported one (European first)."""
    if text is None or not text.strip():
        return None
    candidates = [preferred] if preferred else []
    candidates.extend(f for f in DATE_FALLBACK_ORDER if f != preferred)
    for date_format in candidates:
        parsed = date_format.parse(text)
        if parsed is not None:
            return parsed
    return None


def determine_transaction_type(
    type_value: Optional[str],
    amount: Decimal,
    from_name: Optional[str] = None,
    to_name: Optional[str] = None,
) -> TransactionType:
    """Explicit type keywords first, then both conti present, then the amount sign."""
    if type_value:
        lowered = type_value.strip().casefold()
        if any(k in lowered for k in _INCOME_KEYWORDS):
            return TransactionType.INCOME
        if any(k in lowered for k in _TRANSFER_KEYWORDS):
            return TransactionType.TRANSFER
        if any(k in lowered for k in _EXPENSE_KEYWORDS):
            return TransactionType.EXPENSE

    if from_name and to_name:
        return TransactionType.TRANSFER
    return TransactionType.INCOME if amount >= 0 else TransactionType.EXPENSE


# =============================================================================
# MULTI-ACCOUNT FILES
# =============================================================================

def extract_unique_account_values(parsed: ParsedCSV, column_index: int) -> list[tuple[str, int]]:
    """Distinct non-empty values of one column with their counts, most frequent first."""
    counts = Counter(
        row[column_index]
        for row in parsed.rows
        if column_index < len(row) and row[column_index]
    )
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))


def filter_rows(parsed: ParsedCSV, column_index: int, value: str) -> ParsedCSV:
    return ParsedCSV(
        headers=parsed.headers,
        rows=[
            row for row in parsed.rows
            if column_index < len(row) and row[column_index] == value
        ],
    )


# =============================================================================
# PREVIEW
# =============================================================================

def generate_preview(
    parsed: ParsedCSV,
    mapping: ColumnMapping,
    options: CSVImportOptions,
    max_rows: int = 10,
) -> list[CSVPreviewRow]:
    """How the first rows will be read, with per-row errors instead of exceptions."""
    offset = 2 if options.has_header else 1
    preview = []
    for index, row in enumerate(parsed.rows[:max_rows]):
        amount_text = mapping.value(row, CSVField.AMOUNT)
        date_text = mapping.value(row, CSVField.DATE)
        amount = parse_amount(amount_text)
        date = parse_date(date_text, options.date_format)
        from_name = mapping.value(row, CSVField.SOURCE_ACCOUNT) or None
        to_name = mapping.value(row, CSVField.TARGET_ACCOUNT) or None

        errors = []
        if amount is None:
            errors.append(f"Importo non valido: {amount_text or ''}".strip())
        if date is None:
            errors.append(f"Data non valida: {date_text or ''}".strip())

        tx_type = None
        conto = None
        if amount is not None:
            tx_type = determine_transaction_type(
                mapping.value(row, CSVField.TRANSACTION_TYPE), amount, from_name, to_name
            )
            conto = to_name if tx_type == TransactionType.INCOME else from_name

        preview.append(CSVPreviewRow(
            row_number=index + offset,
            date=date,
            amount=amount,
            type=tx_type.display_name if tx_type else None,
            category=mapping.value(row, CSVField.CATEGORY) or None,
            conto=conto,
            description=(
                mapping.value(row, CSVField.DESCRIPTION)
                or mapping.value(row, CSVField.PAYEE)
                or None
            ),
            has_error=bool(errors),
            error_message="; ".join(errors) if errors else None,
        ))
    return preview


# =============================================================================
# WRITING
# =============================================================================

def escape_csv_value(value: str, delimiter: str = ",") -> str:
    """Quote a cell if it contains the delimiter, a quote or a line break."""
    if any(ch in value for ch in (delimiter, '"', "\n", "\r")):
        return '"' + value.replace('"', '""') + '"'
    return value
