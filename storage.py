"""Entity store contract and the in-process (volatile) backend.

Both backends return detached pydantic records, never ORM instances, so
callers cannot tell which one they are talking to. Transactions come back
newest first (date desc, id desc), summaries by (year desc, month desc) and
breakdowns in the canonical category order.
"""

from __future__ import annotations

import itertools
import logging
import threading
from typing import Optional, Protocol

from config import Settings
from models import CATEGORIES, utcnow
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

logger = logging.getLogger(__name__)

CATEGORY_RANK = {name: idx for idx, name in enumerate(CATEGORIES)}


class Storage(Protocol):
    def get_user(self, user_id: int) -> Optional[UserOut]: ...

    def get_user_by_username(self, username: str) -> Optional[UserOut]: ...

    def create_user(self, data: UserIn) -> UserOut: ...

    def list_transactions(self, user_id: int) -> list[TransactionOut]: ...

    def list_transactions_for_month(
        self, user_id: int, year: int, month: int
    ) -> list[TransactionOut]: ...

    def get_transaction(self, transaction_id: int) -> Optional[TransactionOut]: ...

    def create_transaction(self, user_id: int, data: TransactionIn) -> TransactionOut: ...

    def update_transaction(
        self, transaction_id: int, data: TransactionPatch
    ) -> Optional[TransactionOut]: ...

    def delete_transaction(self, transaction_id: int) -> bool: ...

    def list_summaries(self, user_id: int) -> list[MonthlySummaryOut]: ...

    def get_summary(
        self, user_id: int, year: int, month: int
    ) -> Optional[MonthlySummaryOut]: ...

    def upsert_summary(self, user_id: int, data: MonthlySummaryIn) -> MonthlySummaryOut: ...

    def list_breakdowns(self, summary_id: int) -> list[CategoryBreakdownOut]: ...

    def replace_breakdowns(
        self, summary_id: int, breakdowns: list[CategoryBreakdownIn]
    ) -> list[CategoryBreakdownOut]: ...


def newest_first(transactions: list[TransactionOut]) -> list[TransactionOut]:
    return sorted(transactions, key=lambda t: (t.date, t.id), reverse=True)


def category_order(breakdowns: list[CategoryBreakdownOut]) -> list[CategoryBreakdownOut]:
    return sorted(
        breakdowns, key=lambda b: (CATEGORY_RANK.get(b.category.value, 99), b.id)
    )


class MemoryStorage:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._users: dict[int, UserOut] = {}
        self._transactions: dict[int, TransactionOut] = {}
        self._summaries: dict[int, MonthlySummaryOut] = {}
        self._breakdowns: dict[int, CategoryBreakdownOut] = {}
        self._user_ids = itertools.count(1)
        self._transaction_ids = itertools.count(1)
        self._summary_ids = itertools.count(1)
        self._breakdown_ids = itertools.count(1)

    # users

    def get_user(self, user_id: int) -> Optional[UserOut]:
        with self._lock:
            user = self._users.get(user_id)
            return user.model_copy() if user else None

    def get_user_by_username(self, username: str) -> Optional[UserOut]:
        with self._lock:
            for user in self._users.values():
                if user.username == username:
                    return user.model_copy()
        return None

    def create_user(self, data: UserIn) -> UserOut:
        with self._lock:
            if any(u.username == data.username for u in self._users.values()):
                raise ValueError(f"Username '{data.username}' already exists")
            user = UserOut(
                id=next(self._user_ids),
                username=data.username,
                password=data.password,
            )
            self._users[user.id] = user
            return user.model_copy()

    # transactions

    def list_transactions(self, user_id: int) -> list[TransactionOut]:
        with self._lock:
            items = [
                t.model_copy()
                for t in self._transactions.values()
                if t.user_id == user_id
            ]
        return newest_first(items)

    def list_transactions_for_month(
        self, user_id: int, year: int, month: int
    ) -> list[TransactionOut]:
        period = month_period(year, month)
        with self._lock:
            items = [
                t.model_copy()
                for t in self._transactions.values()
                if t.user_id == user_id and period.contains(t.date)
            ]
        return newest_first(items)

    def get_transaction(self, transaction_id: int) -> Optional[TransactionOut]:
        with self._lock:
            txn = self._transactions.get(transaction_id)
            return txn.model_copy() if txn else None

    def create_transaction(self, user_id: int, data: TransactionIn) -> TransactionOut:
        with self._lock:
            txn = TransactionOut(
                id=next(self._transaction_ids),
                user_id=user_id,
                date=data.date,
                description=data.description,
                category=data.category,
                amount=normalize_amount(data.amount),
                type=data.type,
                pdf_source=data.pdf_source,
                created_at=utcnow(),
            )
            self._transactions[txn.id] = txn
            return txn.model_copy()

    def update_transaction(
        self, transaction_id: int, data: TransactionPatch
    ) -> Optional[TransactionOut]:
        with self._lock:
            txn = self._transactions.get(transaction_id)
            if txn is None:
                return None
            changes = data.changes()
            if "amount" in changes:
                changes["amount"] = normalize_amount(changes["amount"])
            updated = txn.model_copy(update=changes)
            self._transactions[transaction_id] = updated
            return updated.model_copy()

    def delete_transaction(self, transaction_id: int) -> bool:
        with self._lock:
            return self._transactions.pop(transaction_id, None) is not None

    # summaries

    def list_summaries(self, user_id: int) -> list[MonthlySummaryOut]:
        with self._lock:
            items = [
                s.model_copy() for s in self._summaries.values() if s.user_id == user_id
            ]
        return sorted(items, key=lambda s: (s.year, s.month), reverse=True)

    def _find_summary(
        self, user_id: int, year: int, month: int
    ) -> Optional[MonthlySummaryOut]:
        for summary in self._summaries.values():
            if (
                summary.user_id == user_id
                and summary.year == year
                and summary.month == month
            ):
                return summary
        return None

    def get_summary(
        self, user_id: int, year: int, month: int
    ) -> Optional[MonthlySummaryOut]:
        with self._lock:
            summary = self._find_summary(user_id, year, month)
            return summary.model_copy() if summary else None

    def upsert_summary(self, user_id: int, data: MonthlySummaryIn) -> MonthlySummaryOut:
        values = {
            "total_income": quantize_money(data.total_income),
            "total_expenses": quantize_money(data.total_expenses),
            "net_balance": quantize_money(data.net_balance),
            "last_updated": utcnow(),
        }
        with self._lock:
            existing = self._find_summary(user_id, data.year, data.month)
            if existing is not None:
                summary = existing.model_copy(update=values)
            else:
                summary = MonthlySummaryOut(
                    id=next(self._summary_ids),
                    user_id=user_id,
                    year=data.year,
                    month=data.month,
                    **values,
                )
            self._summaries[summary.id] = summary
            return summary.model_copy()

    # breakdowns

    def list_breakdowns(self, summary_id: int) -> list[CategoryBreakdownOut]:
        with self._lock:
            items = [
                b.model_copy()
                for b in self._breakdowns.values()
                if b.summary_id == summary_id
            ]
        return category_order(items)

    def replace_breakdowns(
        self, summary_id: int, breakdowns: list[CategoryBreakdownIn]
    ) -> list[CategoryBreakdownOut]:
        with self._lock:
            stale = [
                b.id for b in self._breakdowns.values() if b.summary_id == summary_id
            ]
            for breakdown_id in stale:
                del self._breakdowns[breakdown_id]
            created: list[CategoryBreakdownOut] = []
            for item in breakdowns:
                breakdown = CategoryBreakdownOut(
                    id=next(self._breakdown_ids),
                    summary_id=summary_id,
                    category=item.category,
                    amount=quantize_money(item.amount),
                    percentage=quantize_money(item.percentage),
                )
                self._breakdowns[breakdown.id] = breakdown
                created.append(breakdown.model_copy())
            return created


def ensure_user(storage: Storage, username: str, password: str) -> UserOut:
    existing = storage.get_user_by_username(username)
    if existing is not None:
        return existing
    user = storage.create_user(UserIn(username=username, password=password))
    logger.info(f"storage_seed: created user username={username} id={user.id}")
    return user


def build_storage(settings: Settings) -> Storage:
    """Pick the backend once per process: durable when a URL is configured."""
    if settings.durable:
        from db_storage import SQLStorage

        storage = SQLStorage.from_url(settings.database_url)
        logger.info("storage_init: backend=sql")
        return storage
    logger.info("storage_init: backend=memory (no database url configured)")
    return MemoryStorage()
