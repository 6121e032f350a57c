import base64
from datetime import date
from decimal import Decimal
from io import BytesIO

import pytest
from pypdf import PdfWriter

from csv_utils import parse_amount
from importer import (
    STATEMENT_SOURCE,
    NothingExtracted,
    StatementImporter,
    StatementImportError,
    StatementTooLarge,
    classify_category,
    decode_payload,
    extract_text,
    extract_transactions,
)
from models import Category, TransactionType
from storage import MemoryStorage, ensure_user

STATEMENT = """
ACME BANK  Statement period March 2024

03/01 Payroll salary deposit $2,500.00
03/02 Monthly rent payment $1,200.00
03/04 Uber trip downtown $23.45
03/05 Corner grocery store $54.10
03/09 Electric company $80.00
03/11 Bookstore $15.99
Balance forward 1,234.00
"""


def test_extract_transactions_classifies_lines() -> None:
    today = date(2024, 3, 15)
    candidates = extract_transactions(STATEMENT, today)

    assert [(c.category, c.type, c.amount) for c in candidates] == [
        (Category.income, TransactionType.income, Decimal("2500.00")),
        (Category.housing, TransactionType.expense, Decimal("1200.00")),
        (Category.transportation, TransactionType.expense, Decimal("23.45")),
        (Category.food, TransactionType.expense, Decimal("54.10")),
        (Category.utilities, TransactionType.expense, Decimal("80.00")),
        (Category.other, TransactionType.expense, Decimal("15.99")),
    ]
    assert all(c.date == today for c in candidates)
    assert candidates[1].description == "03/02 Monthly rent payment $1,200.00"


def test_category_rules_apply_in_priority_order() -> None:
    assert classify_category("Uber ride home $12.00") == Category.housing
    assert classify_category("Phone bill at restaurant") == Category.food
    assert classify_category("Transfer in from savings") == Category.other


def test_transfer_in_counts_as_income() -> None:
    [candidate] = extract_transactions("Transfer in from savings $40.00", date(2024, 1, 1))
    assert candidate.type == TransactionType.income


def test_description_is_truncated() -> None:
    line = "Coffee " + "x" * 200 + " $3.50"
    [candidate] = extract_transactions(line, date(2024, 1, 1))
    assert len(candidate.description) == 100


def test_lines_without_dollar_amount_are_ignored() -> None:
    assert extract_transactions("Deposit 100.00\nRent 12 USD\n\n", date(2024, 1, 1)) == []


def test_oversized_statement_amount_raises_import_error() -> None:
    with pytest.raises(StatementImportError, match="Line 1"):
        extract_transactions("Rent $100,000,000.00", date(2024, 1, 1))
    with pytest.raises(StatementImportError, match="Line 3"):
        extract_transactions(
            "Coffee $3.50\n\nRent $" + "9" * 40 + ".00", date(2024, 1, 1)
        )


def test_parse_amount_rejects_unrepresentable_values() -> None:
    assert parse_amount("$1,234.56") == Decimal("1234.56")
    for value in ("9" * 40 + ".00", "NaN", "abc"):
        with pytest.raises(ValueError):
            parse_amount(value)


def test_decode_payload_accepts_data_uri() -> None:
    payload = "data:application/pdf;base64," + base64.b64encode(b"hello").decode()
    assert decode_payload(payload, 1024) == b"hello"


def test_decode_payload_rejects_bad_input() -> None:
    with pytest.raises(StatementImportError):
        decode_payload("not base64!!", 1024)
    with pytest.raises(StatementTooLarge):
        decode_payload(base64.b64encode(b"x" * 100).decode(), 10)


def test_extract_text_decodes_plain_text_and_rejects_binary() -> None:
    assert extract_text("Rent $10.00".encode()) == "Rent $10.00"
    with pytest.raises(StatementImportError):
        extract_text(b"\xff\xfe\x00\x81")


def test_extract_text_reads_pdf_pages() -> None:
    writer = PdfWriter()
    writer.add_blank_page(width=200, height=200)
    buffer = BytesIO()
    writer.write(buffer)

    assert extract_text(buffer.getvalue()).strip() == ""


def test_import_creates_transactions_and_summary(settings, monkeypatch) -> None:
    storage = MemoryStorage()
    user = ensure_user(storage, "demo", "password")
    monkeypatch.setattr(StatementImporter, "today", lambda self: date(2024, 3, 15))
    importer = StatementImporter(storage, user.id, settings)

    payload = base64.b64encode(STATEMENT.encode()).decode()
    result = importer.import_base64(payload)

    assert len(result.transactions) == 6
    assert all(t.pdf_source == STATEMENT_SOURCE for t in result.transactions)
    assert result.months == [(2024, 3)]
    assert result.summary.total_income == Decimal("2500.00")
    assert result.summary.total_expenses == Decimal("1373.54")
    assert result.summary.net_balance == Decimal("1126.46")
    assert result.message == "Successfully extracted 6 transactions"
    assert len(storage.list_transactions_for_month(user.id, 2024, 3)) == 6


def test_import_without_candidates_persists_nothing(settings) -> None:
    storage = MemoryStorage()
    user = ensure_user(storage, "demo", "password")
    importer = StatementImporter(storage, user.id, settings)

    with pytest.raises(NothingExtracted):
        importer.import_text("Opening balance 100.00\nThank you for banking with us")

    assert storage.list_transactions(user.id) == []
    assert storage.list_summaries(user.id) == []
