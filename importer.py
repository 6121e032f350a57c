"""Bank statement import.

Uploaded statements are turned into text (pypdf for PDFs, UTF-8 otherwise),
lines carrying a ``$N.NN`` amount become candidate transactions, and the
candidates go through normal transaction creation and month recomputation.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from io import BytesIO
from typing import Optional
from zoneinfo import ZoneInfo

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from aggregation import recompute_months
from config import Settings, get_settings
from csv_utils import parse_amount
from models import Category, TransactionType
from periods import months_for_dates
from schemas import MonthlySummaryOut, TransactionIn, TransactionOut
from storage import Storage

logger = logging.getLogger(__name__)

STATEMENT_SOURCE = "Uploaded PDF"
MAX_DESCRIPTION_LENGTH = 100

AMOUNT_PATTERN = re.compile(r"\$(\d{1,3}(?:,\d{3})+|\d+)\.(\d{2})")
INCOME_PATTERN = re.compile(r"deposit|salary|income|transfer in", re.IGNORECASE)

# first match wins
CATEGORY_RULES: list[tuple[Category, re.Pattern[str]]] = [
    (Category.housing, re.compile(r"rent|mortgage|home", re.IGNORECASE)),
    (Category.transportation, re.compile(r"car|gas|uber|lyft|transit", re.IGNORECASE)),
    (Category.food, re.compile(r"grocery|restaurant|food", re.IGNORECASE)),
    (Category.utilities, re.compile(r"electric|water|phone|internet", re.IGNORECASE)),
    (Category.income, re.compile(r"salary|deposit|income", re.IGNORECASE)),
]


class StatementImportError(ValueError):
    pass


class StatementTooLarge(StatementImportError):
    pass


class NothingExtracted(StatementImportError):
    pass


def classify_category(line: str) -> Category:
    for category, pattern in CATEGORY_RULES:
        if pattern.search(line):
            return category
    return Category.other


def extract_transactions(
    text: str, today: date, source: Optional[str] = None
) -> list[TransactionIn]:
    candidates: list[TransactionIn] = []
    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line:
            continue
        match = AMOUNT_PATTERN.search(line)
        if not match:
            continue
        is_income = bool(INCOME_PATTERN.search(line))
        try:
            candidates.append(
                TransactionIn(
                    date=today,
                    description=line[:MAX_DESCRIPTION_LENGTH],
                    category=classify_category(line),
                    amount=parse_amount(f"{match.group(1)}.{match.group(2)}"),
                    type=TransactionType.income if is_income else TransactionType.expense,
                    pdf_source=source,
                )
            )
        except ValueError as exc:
            raise StatementImportError(
                f"Line {lineno} has an unusable amount: {match.group(0)}"
            ) from exc
    return candidates


def decode_payload(payload: str, max_bytes: int) -> bytes:
    data = payload.strip()
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    if len(data) * 3 // 4 > max_bytes + 3:
        raise StatementTooLarge(f"Statement exceeds {max_bytes} bytes")
    try:
        content = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise StatementImportError("Statement content is not valid base64") from exc
    if len(content) > max_bytes:
        raise StatementTooLarge(f"Statement exceeds {max_bytes} bytes")
    if not content:
        raise StatementImportError("Statement content is empty")
    return content


def extract_text(content: bytes) -> str:
    if content.lstrip()[:5] == b"%PDF-":
        try:
            reader = PdfReader(BytesIO(content))
            pages = [page.extract_text() or "" for page in reader.pages]
        except (PdfReadError, ValueError) as exc:
            raise StatementImportError("Failed to parse PDF content") from exc
        return "\n".join(pages)
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise StatementImportError("Statement is neither a PDF nor UTF-8 text") from exc


@dataclass
class StatementImportResult:
    transactions: list[TransactionOut]
    summary: Optional[MonthlySummaryOut]
    months: list[tuple[int, int]]

    @property
    def message(self) -> str:
        return f"Successfully extracted {len(self.transactions)} transactions"


class StatementImporter:
    def __init__(
        self, storage: Storage, user_id: int, settings: Optional[Settings] = None
    ) -> None:
        self.storage = storage
        self.user_id = user_id
        self.settings = settings or get_settings()

    def today(self) -> date:
        return datetime.now(ZoneInfo(self.settings.timezone)).date()

    def import_base64(self, payload: str) -> StatementImportResult:
        content = decode_payload(payload, self.settings.max_statement_bytes)
        return self.import_text(extract_text(content))

    def import_text(self, text: str) -> StatementImportResult:
        candidates = extract_transactions(text, self.today(), source=STATEMENT_SOURCE)
        if not candidates:
            raise NothingExtracted(
                "No transactions could be extracted from the statement. "
                "Please check the format or try manual entry."
            )
        created = [
            self.storage.create_transaction(self.user_id, candidate)
            for candidate in candidates
        ]
        results = recompute_months(
            self.storage, self.user_id, months_for_dates(t.date for t in created)
        )
        first = created[0].date
        recomputed = results.get((first.year, first.month))
        logger.info(
            f"statement_import: user_id={self.user_id} created={len(created)} "
            f"months={sorted(results)}"
        )
        return StatementImportResult(
            transactions=created,
            summary=recomputed.summary if recomputed else None,
            months=sorted(results),
        )
