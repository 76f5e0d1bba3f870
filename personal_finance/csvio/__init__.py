"""
CSV import/export.
"""

from personal_finance.csvio.parser import (
    CSVMappingError,
    detect_column_mapping,
    determine_transaction_type,
    escape_csv_value,
    extract_unique_account_values,
    filter_rows,
    generate_preview,
    parse_amount,
    parse_csv_content,
    parse_date,
    require_valid_mapping,
    validate_mapping,
)
from personal_finance.csvio.service import (
    CSVExportService,
    CSVImportService,
    format_italian_amount,
)

__all__ = [
    "CSVMappingError",
    "detect_column_mapping",
    "determine_transaction_type",
    "escape_csv_value",
    "extract_unique_account_values",
    "filter_rows",
    "generate_preview",
    "parse_amount",
    "parse_csv_content",
    "parse_date",
    "require_valid_mapping",
    "validate_mapping",
    "CSVExportService",
    "CSVImportService",
    "format_italian_amount",
]
