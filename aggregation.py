"""Monthly summary and category breakdown recomputation.

A month's summary and breakdowns are a pure function of that month's
transactions: ``summarize`` computes them, ``recompute_month`` writes them.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from models import Category, TransactionType
from schemas import (
    CategoryBreakdownIn,
    CategoryBreakdownOut,
    MonthlySummaryIn,
    MonthlySummaryOut,
    TransactionOut,
    quantize_money,
)
from storage import Storage

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")
# NUMERIC(15, 2) on the summary and breakdown columns
MAX_TOTAL = Decimal("9999999999999.99")


class MonthTotalsOverflow(ValueError):
    pass


@dataclass(frozen=True)
class MonthTotals:
    total_income: Decimal
    total_expenses: Decimal
    net_balance: Decimal


@dataclass(frozen=True)
class MonthRecompute:
    summary: MonthlySummaryOut
    breakdowns: list[CategoryBreakdownOut]


def percentage_of(amount: Decimal, total: Decimal) -> Decimal:
    if total <= 0:
        return ZERO
    return (amount / total * HUNDRED).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def summarize(
    transactions: Iterable[TransactionOut],
) -> tuple[MonthTotals, list[CategoryBreakdownIn]]:
    income = ZERO
    expenses = ZERO
    by_category: dict[Category, Decimal] = defaultdict(lambda: ZERO)
    for txn in transactions:
        amount = abs(txn.amount)
        if txn.type == TransactionType.income:
            income += amount
        else:
            expenses += amount
            by_category[txn.category] += amount

    income = quantize_money(income)
    expenses = quantize_money(expenses)
    if income > MAX_TOTAL or expenses > MAX_TOTAL:
        raise MonthTotalsOverflow(f"Monthly totals must not exceed {MAX_TOTAL}")
    totals = MonthTotals(
        total_income=income,
        total_expenses=expenses,
        net_balance=income - expenses,
    )
    breakdowns = [
        CategoryBreakdownIn(
            category=category,
            amount=quantize_money(by_category[category]),
            percentage=percentage_of(by_category[category], expenses),
        )
        for category in Category
        if by_category.get(category, ZERO) > 0
    ]
    return totals, breakdowns


class _MonthLocks:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[tuple[int, int, int], threading.Lock] = {}

    def get(self, user_id: int, year: int, month: int) -> threading.Lock:
        key = (user_id, year, month)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock


_month_locks = _MonthLocks()


def recompute_month(
    storage: Storage, user_id: int, year: int, month: int
) -> MonthRecompute:
    # an empty month still gets a zeroed summary and no breakdowns
    with _month_locks.get(user_id, year, month):
        transactions = storage.list_transactions_for_month(user_id, year, month)
        totals, breakdowns = summarize(transactions)
        summary = storage.upsert_summary(
            user_id,
            MonthlySummaryIn(
                year=year,
                month=month,
                total_income=totals.total_income,
                total_expenses=totals.total_expenses,
                net_balance=totals.net_balance,
            ),
        )
        stored = storage.replace_breakdowns(summary.id, breakdowns)
    logger.debug(
        f"recompute: user_id={user_id} month={year:04d}-{month:02d} "
        f"transactions={len(transactions)} categories={len(stored)}"
    )
    return MonthRecompute(summary=summary, breakdowns=stored)


def recompute_months(
    storage: Storage, user_id: int, months: Iterable[tuple[int, int]]
) -> dict[tuple[int, int], MonthRecompute]:
    results: dict[tuple[int, int], MonthRecompute] = {}
    for year, month in sorted(set(months)):
        results[(year, month)] = recompute_month(storage, user_id, year, month)
    return results


def rebuild_summaries(storage: Storage, user_id: int) -> int:
    """Recompute every month that has transactions or a stored summary."""
    months = {(t.date.year, t.date.month) for t in storage.list_transactions(user_id)}
    months.update((s.year, s.month) for s in storage.list_summaries(user_id))
    recompute_months(storage, user_id, months)
    logger.info(f"rebuild_summaries: user_id={user_id} months={len(months)}")
    return len(months)
