import csv
import re
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Sequence

from schemas import TransactionOut

EXPORT_HEADER = ["Date", "Description", "Category", "Amount", "Type"]


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_amount(value: str) -> Decimal:
    """Parse ``$1,234.56`` style text into a Decimal; the sign is kept."""
    clean = value.strip().replace("$", "").replace(" ", "").replace(",", "")
    try:
        amount = Decimal(clean)
        if not amount.is_finite():
            raise ValueError("Invalid amount")
        return amount.quantize(Decimal("0.01"))
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc


def format_export_date(txn: TransactionOut) -> str:
    return f"{txn.date.month}/{txn.date.day}/{txn.date.year}"


def export_transactions(transactions: Sequence[TransactionOut]) -> str:
    output = StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(EXPORT_HEADER)
    for txn in transactions:
        writer.writerow(
            [
                format_export_date(txn),
                sanitize_csv_value(txn.description),
                txn.category.value,
                f"{abs(txn.amount):.2f}",
                txn.type.value,
            ]
        )
    return output.getvalue()


def export_filename(year: int, month: int) -> str:
    return f"transactions-{year}-{month}.csv"
