"""Relational (durable) backend over SQLAlchemy.

Every call runs in its own ``session_scope``. Persistence errors propagate to
the caller instead of being reported as empty results.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from database import Base, build_engine, build_session_factory, session_scope
from models import CategoryBreakdown, MonthlySummary, Transaction, User, utcnow
from periods import month_period
from schemas import (
    CategoryBreakdownIn,
    CategoryBreakdownOut,
    MonthlySummaryIn,
    MonthlySummaryOut,
    TransactionIn,
    TransactionOut,
    TransactionPatch,
    UserIn,
    UserOut,
    normalize_amount,
    quantize_money,
)
from storage import category_order


class SQLStorage:
    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str, *, create_schema: bool = True) -> "SQLStorage":
        engine = build_engine(database_url)
        if create_schema:
            Base.metadata.create_all(engine)
        return cls(build_session_factory(engine))

    # users

    def get_user(self, user_id: int) -> Optional[UserOut]:
        with session_scope(self.session_factory) as session:
            user = session.get(User, user_id)
            return UserOut.model_validate(user) if user else None

    def get_user_by_username(self, username: str) -> Optional[UserOut]:
        with session_scope(self.session_factory) as session:
            user = session.scalar(select(User).where(User.username == username))
            return UserOut.model_validate(user) if user else None

    def create_user(self, data: UserIn) -> UserOut:
        try:
            with session_scope(self.session_factory) as session:
                user = User(username=data.username, password=data.password)
                session.add(user)
                session.flush()
                return UserOut.model_validate(user)
        except IntegrityError as exc:
            raise ValueError(f"Username '{data.username}' already exists") from exc

    # transactions

    def list_transactions(self, user_id: int) -> list[TransactionOut]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        with session_scope(self.session_factory) as session:
            return [TransactionOut.model_validate(t) for t in session.scalars(stmt)]

    def list_transactions_for_month(
        self, user_id: int, year: int, month: int
    ) -> list[TransactionOut]:
        period = month_period(year, month)
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == user_id,
                Transaction.date.between(period.start, period.end),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        with session_scope(self.session_factory) as session:
            return [TransactionOut.model_validate(t) for t in session.scalars(stmt)]

    def get_transaction(self, transaction_id: int) -> Optional[TransactionOut]:
        with session_scope(self.session_factory) as session:
            txn = session.get(Transaction, transaction_id)
            return TransactionOut.model_validate(txn) if txn else None

    def create_transaction(self, user_id: int, data: TransactionIn) -> TransactionOut:
        with session_scope(self.session_factory) as session:
            txn = Transaction(
                user_id=user_id,
                date=data.date,
                description=data.description,
                category=data.category,
                amount=normalize_amount(data.amount),
                type=data.type,
                pdf_source=data.pdf_source,
                created_at=utcnow(),
            )
            session.add(txn)
            session.flush()
            return TransactionOut.model_validate(txn)

    def update_transaction(
        self, transaction_id: int, data: TransactionPatch
    ) -> Optional[TransactionOut]:
        with session_scope(self.session_factory) as session:
            txn = session.get(Transaction, transaction_id)
            if txn is None:
                return None
            changes = data.changes()
            if "amount" in changes:
                changes["amount"] = normalize_amount(changes["amount"])
            for field, value in changes.items():
                setattr(txn, field, value)
            session.flush()
            return TransactionOut.model_validate(txn)

    def delete_transaction(self, transaction_id: int) -> bool:
        with session_scope(self.session_factory) as session:
            result = session.execute(
                delete(Transaction).where(Transaction.id == transaction_id)
            )
            return result.rowcount > 0

    # summaries

    def list_summaries(self, user_id: int) -> list[MonthlySummaryOut]:
        stmt = (
            select(MonthlySummary)
            .where(MonthlySummary.user_id == user_id)
            .order_by(MonthlySummary.year.desc(), MonthlySummary.month.desc())
        )
        with session_scope(self.session_factory) as session:
            return [MonthlySummaryOut.model_validate(s) for s in session.scalars(stmt)]

    def get_summary(
        self, user_id: int, year: int, month: int
    ) -> Optional[MonthlySummaryOut]:
        with session_scope(self.session_factory) as session:
            summary = session.scalar(
                select(MonthlySummary).where(
                    MonthlySummary.user_id == user_id,
                    MonthlySummary.year == year,
                    MonthlySummary.month == month,
                )
            )
            return MonthlySummaryOut.model_validate(summary) if summary else None

    def upsert_summary(self, user_id: int, data: MonthlySummaryIn) -> MonthlySummaryOut:
        with session_scope(self.session_factory) as session:
            summary = session.scalar(
                select(MonthlySummary).where(
                    MonthlySummary.user_id == user_id,
                    MonthlySummary.year == data.year,
                    MonthlySummary.month == data.month,
                )
            )
            if summary is None:
                summary = MonthlySummary(user_id=user_id, year=data.year, month=data.month)
                session.add(summary)
            summary.total_income = quantize_money(data.total_income)
            summary.total_expenses = quantize_money(data.total_expenses)
            summary.net_balance = quantize_money(data.net_balance)
            summary.last_updated = utcnow()
            session.flush()
            return MonthlySummaryOut.model_validate(summary)

    # breakdowns

    def list_breakdowns(self, summary_id: int) -> list[CategoryBreakdownOut]:
        stmt = select(CategoryBreakdown).where(CategoryBreakdown.summary_id == summary_id)
        with session_scope(self.session_factory) as session:
            return category_order(
                [CategoryBreakdownOut.model_validate(b) for b in session.scalars(stmt)]
            )

    def replace_breakdowns(
        self, summary_id: int, breakdowns: list[CategoryBreakdownIn]
    ) -> list[CategoryBreakdownOut]:
        with session_scope(self.session_factory) as session:
            session.execute(
                delete(CategoryBreakdown).where(CategoryBreakdown.summary_id == summary_id)
            )
            rows = [
                CategoryBreakdown(
                    summary_id=summary_id,
                    category=item.category,
                    amount=quantize_money(item.amount),
                    percentage=quantize_money(item.percentage),
                )
                for item in breakdowns
            ]
            session.add_all(rows)
            session.flush()
            return [CategoryBreakdownOut.model_validate(b) for b in rows]
