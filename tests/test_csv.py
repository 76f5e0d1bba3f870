"""
Tests for CSV parsing, import and export.
"""

import asyncio
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from personal_finance.audit import AuditLogger
from personal_finance.config import CSVSettings
from personal_finance.csvio import (
    CSVExportService,
    CSVImportService,
    CSVMappingError,
    format_italian_amount,
)
from personal_finance.csvio.parser import (
    detect_column_mapping,
    determine_transaction_type,
    escape_csv_value,
    extract_unique_account_values,
    filter_rows,
    generate_preview,
    parse_amount,
    parse_csv_content,
    parse_date,
    validate_mapping,
)
from personal_finance.models.audit import AuditEventType
from personal_finance.models.csv_import import (
    ColumnMapping,
    CSVExportOptions,
    CSVField,
    CSVImportOptions,
    DateFormat,
    ImportErrorKind,
)
from personal_finance.models.ledger import Conto, Transaction, TransactionType
from personal_finance.services.ledger_service import EntityNotFoundError


@pytest.fixture
def importer(ledger, audit_storage, ledger_settings):
    return CSVImportService(
        ledger,
        audit_logger=AuditLogger(audit_storage),
        settings=ledger_settings,
        csv_settings=CSVSettings(),
    )


@pytest.fixture
def exporter(ledger, audit_storage):
    return CSVExportService(ledger, audit_logger=AuditLogger(audit_storage))


class TestParseAmount:
    """Tests for amount parsing in both notations."""

    @pytest.mark.parametrize("text,expected", [
        ("1.234,56", Decimal("1234.56")),
        ("1,234.56", Decimal("1234.56")),
        ("-50,00", Decimal("-50.00")),
        ("€ 12", Decimal("12")),
        ("12.5", Decimal("12.5")),
        ("1.234.567", Decimal("1234567")),
        ("1,234,567", Decimal("1234567")),
        ("1 234,56", Decimal("1234.56")),
        ("−12,5", Decimal("-12.5")),
    ])
    def test_valid(self, text, expected):
        assert parse_amount(text) == expected

    @pytest.mark.parametrize("text", [None, "", "   ", "abc", "12abc", "NaN"])
    def test_invalid(self, text):
        assert parse_amount(text) is None


class TestParseDate:
    """Tests for date parsing with fallbacks."""

    def test_european_is_tried_first(self):
        assert parse_date("03/04/2024") == datetime(2024, 4, 3)

    def test_preferred_format_wins(self):
        assert parse_date("03/04/2024", DateFormat.US_SLASH_DATE_ONLY) == datetime(2024, 3, 4)

    def test_falls_back_to_us(self):
        assert parse_date("05/15/2024") == datetime(2024, 5, 15)

    def test_iso_and_offsets(self):
        assert parse_date("2024-05-15") == datetime(2024, 5, 15)
        assert parse_date("2024-05-15T10:30:00") == datetime(2024, 5, 15, 10, 30)
        assert parse_date("2024-05-15T10:30:00+02:00") == datetime(2024, 5, 15, 8, 30)

    def test_with_time(self):
        assert parse_date("15/05/2024 18:45") == datetime(2024, 5, 15, 18, 45)

    @pytest.mark.parametrize("text", [None, "", "32/13/2024", "ieri"])
    def test_invalid(self, text):
        assert parse_date(text) is None


class TestParseCSVContent:
    """Tests for tokenizing."""

    def test_quotes_blank_lines_and_ragged_rows(self):
        text = (
            '\ufeffData,Descrizione,Importo\r\n'
            '01/05/2024,"Cena, amici",-45\r\n'
            '\r\n'
            '02/05/2024,"Detto ""ok"""\r\n'
        )
        parsed = parse_csv_content(text)
        assert parsed.headers == ["Data", "Descrizione", "Importo"]
        assert parsed.row_count == 2
        assert parsed.rows[0] == ["01/05/2024", "Cena, amici", "-45"]
        assert parsed.rows[1][:2] == ["02/05/2024", 'Detto "ok"']
        assert parsed.value(1, 2) in (None, "")

    def test_embedded_newline(self):
        text = 'Data,Note\n01/05/2024,"riga uno\nriga due"\n'
        parsed = parse_csv_content(text)
        assert parsed.rows == [["01/05/2024", "riga uno\nriga due"]]

    def test_cells_are_trimmed(self):
        parsed = parse_csv_content("Data , Importo\n 01/05/2024 ,  12 \n")
        assert parsed.headers == ["Data", "Importo"]
        assert parsed.rows == [["01/05/2024", "12"]]

    def test_without_header(self):
        parsed = parse_csv_content("01/05/2024;12\n02/05/2024;13\n", delimiter=";", has_header=False)
        assert parsed.headers == ["Colonna 1", "Colonna 2"]
        assert parsed.row_count == 2

    def test_empty(self):
        assert parse_csv_content("").row_count == 0
        assert parse_csv_content("  \n \n").headers == []

    def test_header_only(self):
        parsed = parse_csv_content("Data,Importo\n")
        assert parsed.headers == ["Data", "Importo"]
        assert parsed.rows == []


class TestColumnMapping:
    """Tests for mapping detection and validation."""

    def test_italian_labels(self):
        mapping = detect_column_mapping(["Data", "Descrizione", "Importo", "Categoria", "Conto"])
        assert mapping.columns == {
            CSVField.DATE: 0,
            CSVField.DESCRIPTION: 1,
            CSVField.AMOUNT: 2,
            CSVField.CATEGORY: 3,
            CSVField.SOURCE_ACCOUNT: 4,
        }

    def test_english_keywords(self):
        mapping = detect_column_mapping(["Date", "Description", "Amount", "Category"])
        assert mapping.columns == {
            CSVField.DATE: 0,
            CSVField.DESCRIPTION: 1,
            CSVField.AMOUNT: 2,
            CSVField.CATEGORY: 3,
        }

    def test_exact_label_beats_keyword(self):
        """Test that "Conto (A)" is not taken by the source account keyword."""
        mapping = detect_column_mapping(["Conto (A)", "Conto (Da)", "Importo", "Data"])
        assert mapping.columns[CSVField.TARGET_ACCOUNT] == 0
        assert mapping.columns[CSVField.SOURCE_ACCOUNT] == 1

    def test_missing_required_fields(self):
        issues = validate_mapping(ColumnMapping(columns={CSVField.DESCRIPTION: 0}))
        assert {issue.field for issue in issues} == {CSVField.AMOUNT, CSVField.DATE}

    def test_value_on_short_row(self):
        mapping = ColumnMapping(columns={CSVField.NOTES: 5})
        assert mapping.value(["a"], CSVField.NOTES) is None
        assert mapping.value(["a"], CSVField.AMOUNT) is None


class TestTransactionTypeDetection:
    def test_keywords(self):
        assert determine_transaction_type("Entrata", Decimal("-5")) == TransactionType.INCOME
        assert determine_transaction_type("Giroconto", Decimal("5")) == TransactionType.TRANSFER
        assert determine_transaction_type("USCITA", Decimal("5")) == TransactionType.EXPENSE

    def test_both_conti_mean_transfer(self):
        assert determine_transaction_type(None, Decimal("5"), "Banca", "Risparmi") == TransactionType.TRANSFER

    def test_sign(self):
        assert determine_transaction_type("", Decimal("-5")) == TransactionType.EXPENSE
        assert determine_transaction_type("boh", Decimal("5")) == TransactionType.INCOME


class TestHelpers:
    def test_escape_csv_value(self):
        assert escape_csv_value("semplice") == "semplice"
        assert escape_csv_value("a,b") == '"a,b"'
        assert escape_csv_value('dice "ciao"') == '"dice ""ciao"""'
        assert escape_csv_value("a,b", delimiter=";") == "a,b"
        assert escape_csv_value("riga\nnuova") == '"riga\nnuova"'

    def test_format_italian_amount(self):
        assert format_italian_amount(Decimal("1234.5")) == "1.234,50"
        assert format_italian_amount(Decimal("0.5")) == "0,50"
        assert format_italian_amount(Decimal("1234567.891")) == "1.234.567,89"

    def test_account_values_and_filter(self):
        parsed = parse_csv_content("Conto,Importo\nBanca,1\nCarta,2\nBanca,3\n")
        assert extract_unique_account_values(parsed, 0) == [("Banca", 2), ("Carta", 1)]
        only_bank = filter_rows(parsed, 0, "Banca")
        assert [row[1] for row in only_bank.rows] == ["1", "3"]

    def test_preview(self):
        parsed = parse_csv_content("Data,Importo,Beneficiario\n01/05/2024,-10,Bar\nieri,xx,\n")
        preview = generate_preview(parsed, detect_column_mapping(parsed.headers), CSVImportOptions())
        assert preview[0].row_number == 2
        assert preview[0].type == "Spesa"
        assert preview[0].description == "Bar"
        assert preview[0].has_error is False
        assert preview[1].has_error is True
        assert "Importo non valido" in preview[1].error_message
        assert "Data non valida" in preview[1].error_message


class TestCSVImport:
    """Tests for CSVImportService."""

    def test_import_creates_transactions_and_categories(self, importer, ledger, household):
        account, checking, _ = household
        text = (
            "Data,Descrizione,Importo,Categoria,Conto\n"
            '01/05/2024,Supermercato,"-45,50",Alimentari,Banca\n'
            '02/05/2024,Stipendio maggio,"2.000,00",Stipendio,Banca\n'
            "03/05/2024,Palestra,-30,Fitness,Banca\n"
        )

        async def scenario():
            result = await importer.import_csv(account.id, text)
            return result, await ledger.conto_balance(checking.id), await ledger.list_transactions(account.id)

        result, balance, transactions = asyncio.run(scenario())
        assert result.total_rows == 3
        assert result.imported_count == 3
        assert result.error_count == 0
        assert result.created_categories == ["Fitness"]
        assert result.success_rate == pytest.approx(1.0)
        assert balance == Decimal("2924.50")
        assert {t.type for t in transactions} == {TransactionType.INCOME, TransactionType.EXPENSE}
        assert all(t.amount > 0 for t in transactions)

    def test_row_errors_do_not_abort(self, importer, household):
        account, _, _ = household
        text = (
            "Data,Descrizione,Importo\n"
            "01/05/2024,A,abc\n"
            "32/13/2024,B,10\n"
            ",C,10\n"
            "02/05/2024,D,\n"
            "03/05/2024,E,12\n"
        )
        result = asyncio.run(importer.import_csv(account.id, text))
        assert result.imported_count == 1
        assert result.error_count == 4
        assert [(e.row_number, e.kind) for e in result.errors] == [
            (2, ImportErrorKind.INVALID_AMOUNT),
            (3, ImportErrorKind.INVALID_DATE),
            (4, ImportErrorKind.MISSING_FIELD),
            (5, ImportErrorKind.MISSING_FIELD),
        ]
        assert result.errors[0].raw_value == "abc"

    def test_row_numbers_without_header(self, importer, household):
        account, _, _ = household
        options = CSVImportOptions(has_header=False)
        mapping = ColumnMapping(columns={CSVField.DATE: 0, CSVField.AMOUNT: 1})
        result = asyncio.run(importer.import_csv(account.id, "01/05/2024,x\n", mapping, options))
        assert result.errors[0].row_number == 1

    def test_duplicates_skipped(self, importer, household):
        account, _, _ = household
        text = (
            "Data,Descrizione,Importo\n"
            '01/05/2024,Caffè,"-1,50"\n'
            '01/05/2024,Caffè,"-1,50"\n'
        )

        async def scenario():
            first = await importer.import_csv(account.id, text)
            second = await importer.import_csv(account.id, text)
            return first, second

        first, second = asyncio.run(scenario())
        assert first.imported_count == 1
        assert first.duplicates_skipped == 1
        assert second.imported_count == 0
        assert second.duplicates_skipped == 2
        assert second.skipped_count == 2

    def test_duplicates_kept_when_not_ignored(self, importer, household):
        account, _, _ = household
        text = "Data,Descrizione,Importo\n01/05/2024,Pane,-2\n01/05/2024,Pane,-2\n"
        options = CSVImportOptions(ignore_duplicates=False)
        result = asyncio.run(importer.import_csv(account.id, text, options=options))
        assert result.imported_count == 2

    def test_zero_amounts(self, importer, household):
        account, _, _ = household
        text = "Data,Descrizione,Importo\n01/05/2024,Zero,\"0,00\"\n"

        rejected = asyncio.run(importer.import_csv(account.id, text))
        assert rejected.errors[0].kind == ImportErrorKind.INVALID_AMOUNT

        skipped = asyncio.run(importer.import_csv(
            account.id, text, options=CSVImportOptions(ignore_zero_amounts=True)
        ))
        assert skipped.zero_amounts_skipped == 1
        assert skipped.skipped_count == 1
        assert skipped.error_count == 0

    def test_missing_category_not_created(self, importer, household):
        account, _, _ = household
        text = "Data,Importo,Categoria\n01/05/2024,-5,Nuova\n"
        options = CSVImportOptions(create_missing_categories=False)
        result = asyncio.run(importer.import_csv(account.id, text, options=options))
        assert result.errors[0].kind == ImportErrorKind.CATEGORY_NOT_FOUND
        assert result.created_categories == []

    def test_transfer_between_known_conti(self, importer, ledger, household):
        account, checking, savings = household
        text = "Tipo,Data,Importo,Conto (Da),Conto (A)\nTrasferimento,01/05/2024,100,Banca,Risparmi\n"

        async def scenario():
            result = await importer.import_csv(account.id, text)
            return (
                result,
                await ledger.conto_balance(checking.id),
                await ledger.conto_balance(savings.id),
            )

        result, checking_balance, savings_balance = asyncio.run(scenario())
        assert result.imported_count == 1
        assert checking_balance == Decimal("900")
        assert savings_balance == Decimal("100")

    def test_transfer_with_unknown_side_uses_sign(self, importer, ledger, household):
        account, _, _ = household
        text = "Data,Importo,Conto (Da),Conto (A)\n01/05/2024,-20,Banca,Altrove\n"

        async def scenario():
            await importer.import_csv(account.id, text)
            return await ledger.list_transactions(account.id)

        [tx] = asyncio.run(scenario())
        assert tx.type == TransactionType.EXPENSE
        assert tx.amount == Decimal("20")

    def test_missing_conti_created(self, importer, ledger, household):
        account, _, _ = household
        text = "Data,Importo,Conto\n01/05/2024,-20,Carta\n"
        options = CSVImportOptions(create_missing_conti=True)

        async def scenario():
            result = await importer.import_csv(account.id, text, options=options)
            return result, [c.name for c in await ledger.list_conti(account.id)]

        result, names = asyncio.run(scenario())
        assert result.created_conti == ["Carta"]
        assert "Carta" in names

    def test_default_conto(self, importer, ledger, household):
        account, _, savings = household
        text = "Data,Importo,Conto\n01/05/2024,50,Banca\n"
        options = CSVImportOptions(default_conto_id=savings.id)

        async def scenario():
            await importer.import_csv(account.id, text, options=options)
            return await ledger.list_transactions(account.id)

        [tx] = asyncio.run(scenario())
        assert tx.to_conto_id == savings.id

    def test_no_conto_available(self, importer, ledger):
        async def scenario():
            account = await ledger.create_account("Vuoto", with_default_categories=False)
            return await importer.import_csv(account.id, "Data,Importo\n01/05/2024,5\n")

        result = asyncio.run(scenario())
        assert result.errors[0].kind == ImportErrorKind.CONTO_NOT_FOUND

    def test_account_filter(self, importer, ledger, household):
        account, _, _ = household
        text = "Data,Importo,Titolare\n01/05/2024,5,Anna\n02/05/2024,7,Luca\n"
        options = CSVImportOptions(account_filter={"column_index": 2, "selected_value": "Luca"})

        async def scenario():
            result = await importer.import_csv(account.id, text, options=options)
            return result, await ledger.list_transactions(account.id)

        result, [tx] = asyncio.run(scenario())
        assert result.total_rows == 1
        assert tx.amount == Decimal("7")

    def test_mapping_error(self, importer, household):
        account, _, _ = household
        with pytest.raises(CSVMappingError) as exc_info:
            asyncio.run(importer.import_csv(account.id, "Descrizione,Note\nA,B\n"))
        assert {i.field for i in exc_info.value.issues} == {CSVField.AMOUNT, CSVField.DATE}

    def test_unknown_account(self, importer):
        with pytest.raises(EntityNotFoundError):
            asyncio.run(importer.import_csv(uuid4(), "Data,Importo\n01/05/2024,5\n"))

    def test_import_is_audited(self, importer, household, audit_storage):
        account, _, _ = household
        asyncio.run(importer.import_csv(account.id, "Data,Importo\n01/05/2024,5\n"))
        events = asyncio.run(audit_storage.get_events_by_entity("account", account.id))
        [event] = [e for e in events if e.event_type == AuditEventType.CSV_IMPORT_COMPLETED]
        assert event.details["imported"] == 1


class TestCSVExport:
    """Tests for CSVExportService."""

    @pytest.fixture
    def booked(self, ledger, household):
        account, checking, savings = household

        async def build():
            food = await ledger.find_category_by_name(account.id, "Alimentari")
            await ledger.create_transaction(Transaction(
                account_id=account.id,
                type=TransactionType.EXPENSE,
                amount=Decimal("1234.5"),
                date=datetime(2024, 5, 10, 12, 0),
                description="Spesa, grande",
                from_conto_id=checking.id,
                category_id=food.id,
            ))
            await ledger.create_transfer(
                checking.id, savings.id, Decimal("200"), date=datetime(2024, 5, 12, 9, 0)
            )

        asyncio.run(build())
        return household

    def test_default_format(self, exporter, booked):
        account, _, _ = booked
        lines = asyncio.run(exporter.export(account.id)).split("\n")

        assert lines[0] == (
            "Beneficiario,Categoria,Conto (A),Conto (Da),Data,Descrizione,Importo,"
            "Note,Tasso di cambio,Tipo,Valuta di destinazione,Valuta di origine"
        )
        assert lines[1] == (
            ",,Risparmi,Banca,2024-05-12T09:00:00+00:00,Trasferimento da Banca a Risparmi,"
            '"200,00",,1,Trasferimento,EUR,EUR'
        )
        assert lines[2] == (
            ',Alimentari,,Banca,2024-05-10T12:00:00+00:00,"Spesa, grande","1.234,50",'
            ",1,Spesa,EUR,EUR"
        )
        assert len(lines) == 3

    def test_fields_delimiter_and_range(self, exporter, booked):
        account, _, _ = booked
        options = CSVExportOptions(
            include_fields={CSVField.AMOUNT, CSVField.DATE},
            delimiter=";",
            date_format=DateFormat.EU_SLASH_DATE_ONLY,
            date_from=datetime(2024, 5, 1),
            date_to=datetime(2024, 5, 10, 12, 0),
        )
        text = asyncio.run(exporter.export(account.id, options))
        assert text == "Data;Importo\n10/05/2024;1.234,50"

    def test_conto_filter_without_header(self, exporter, booked):
        account, _, savings = booked
        options = CSVExportOptions(
            include_header=False,
            include_fields={CSVField.TRANSACTION_TYPE},
            conto_ids={savings.id},
        )
        assert asyncio.run(exporter.export(account.id, options)) == "Trasferimento"

    def test_export_reimports(self, exporter, importer, ledger, booked):
        account, _, _ = booked

        async def scenario():
            text = await exporter.export(account.id)
            copy = await ledger.create_account("Copia")
            await ledger.create_conto(Conto(account_id=copy.id, name="Banca"))
            await ledger.create_conto(Conto(account_id=copy.id, name="Risparmi"))
            result = await importer.import_csv(copy.id, text)
            return result, await ledger.list_transactions(copy.id)

        result, transactions = asyncio.run(scenario())
        assert result.imported_count == 2
        assert result.created_categories == []
        transfer, expense = transactions
        assert transfer.type == TransactionType.TRANSFER
        assert transfer.amount == Decimal("200")
        assert expense.amount == Decimal("1234.50")
        assert expense.date == datetime(2024, 5, 10, 12, 0)
        assert expense.description == "Spesa, grande"
