import datetime as dt
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated, Any, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
)

from models import Category, TransactionType

CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("99999999.99")


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def normalize_amount(value: Decimal) -> Decimal:
    """Magnitude of ``value`` at cent precision; the type tag carries the sign."""
    try:
        amount = abs(Decimal(value))
    except (InvalidOperation, TypeError) as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Amount must be a finite number")
    if amount > MAX_AMOUNT:
        raise ValueError(f"Amount must not exceed {MAX_AMOUNT}")
    return quantize_money(amount)


def coerce_date(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and len(value.strip()) > 10:
        raw = value.strip().replace("Z", "+00:00")
        try:
            return datetime.fromisoformat(raw).date()
        except ValueError:
            return value
    return value


DateOnly = Annotated[dt.date, BeforeValidator(coerce_date)]


class UserIn(BaseModel):
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=255)


class TransactionIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: DateOnly
    description: str = Field(..., min_length=1, max_length=500)
    category: Category
    amount: Decimal
    type: TransactionType
    pdf_source: Optional[str] = Field(
        default=None,
        max_length=255,
        validation_alias=AliasChoices("pdf_source", "pdfSource", "source"),
    )

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Description must not be blank")
        return value

    @field_validator("amount")
    @classmethod
    def _normalize_amount(cls, value: Decimal) -> Decimal:
        return normalize_amount(value)


class TransactionPatch(BaseModel):
    """Partial update; only fields present in the payload are applied."""

    model_config = ConfigDict(populate_by_name=True)

    date: Optional[DateOnly] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    category: Optional[Category] = None
    amount: Optional[Decimal] = None
    type: Optional[TransactionType] = None
    pdf_source: Optional[str] = Field(
        default=None,
        max_length=255,
        validation_alias=AliasChoices("pdf_source", "pdfSource", "source"),
    )

    @field_validator("date", "description", "category", "amount", "type", mode="before")
    @classmethod
    def _reject_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("Field may not be null")
        return value

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("Description must not be blank")
        return value

    @field_validator("amount")
    @classmethod
    def _normalize_amount(cls, value: Optional[Decimal]) -> Optional[Decimal]:
        if value is None:
            return value
        return normalize_amount(value)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class MonthlySummaryIn(BaseModel):
    year: int = Field(..., ge=1, le=9999)
    month: int = Field(..., ge=1, le=12)
    total_income: Decimal
    total_expenses: Decimal
    net_balance: Decimal


class CategoryBreakdownIn(BaseModel):
    category: Category
    amount: Decimal
    percentage: Decimal


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    password: str


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    date: date
    description: str
    category: Category
    amount: Decimal
    type: TransactionType
    pdf_source: Optional[str] = None
    created_at: datetime


class MonthlySummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    year: int
    month: int
    total_income: Decimal
    total_expenses: Decimal
    net_balance: Decimal
    last_updated: datetime


class CategoryBreakdownOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    summary_id: int
    category: Category
    amount: Decimal
    percentage: Decimal


class MonthDetailOut(BaseModel):
    summary: MonthlySummaryOut
    breakdowns: list[CategoryBreakdownOut]


class StatementUploadIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pdf_content: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("pdfContent", "pdf_content", "content"),
    )


class StatementImportOut(BaseModel):
    message: str
    transactions: list[TransactionOut]
    summary: Optional[MonthlySummaryOut] = None


class RebuildOut(BaseModel):
    rebuilt: int
