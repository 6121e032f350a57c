from datetime import date, datetime
from decimal import Decimal

import pytest

import aggregation
from aggregation import (
    MonthTotalsOverflow,
    rebuild_summaries,
    recompute_month,
    summarize,
)
from models import Category, TransactionType
from schemas import TransactionIn, TransactionOut, TransactionPatch


def _create(storage, user_id, day, amount, type_, category, description="Item"):
    return storage.create_transaction(
        user_id,
        TransactionIn(
            date=day,
            description=description,
            category=category,
            amount=Decimal(amount),
            type=type_,
        ),
    )


def _values(result):
    summary = result.summary
    return (
        (summary.total_income, summary.total_expenses, summary.net_balance),
        [(b.category, b.amount, b.percentage) for b in result.breakdowns],
    )


def test_income_and_food_expense_scenario(storage, user_id) -> None:
    _create(storage, user_id, date(2024, 3, 5), "1000", TransactionType.income, Category.income)
    _create(storage, user_id, date(2024, 3, 10), "-200", TransactionType.expense, Category.food)

    result = recompute_month(storage, user_id, 2024, 3)

    assert result.summary.total_income == Decimal("1000")
    assert result.summary.total_expenses == Decimal("200")
    assert result.summary.net_balance == Decimal("800")
    assert [(b.category, b.amount, b.percentage) for b in result.breakdowns] == [
        (Category.food, Decimal("200"), Decimal("100"))
    ]
    assert storage.list_breakdowns(result.summary.id) == result.breakdowns


def test_deleting_the_only_expense_zeroes_expenses(storage, user_id) -> None:
    _create(storage, user_id, date(2024, 3, 5), "1000", TransactionType.income, Category.income)
    food = _create(
        storage, user_id, date(2024, 3, 10), "200", TransactionType.expense, Category.food
    )
    first = recompute_month(storage, user_id, 2024, 3)

    storage.delete_transaction(food.id)
    second = recompute_month(storage, user_id, 2024, 3)

    assert second.summary.id == first.summary.id
    assert second.summary.total_expenses == Decimal("0")
    assert second.summary.net_balance == Decimal("1000")
    assert second.breakdowns == []
    assert storage.list_breakdowns(second.summary.id) == []


def test_empty_month_gets_zeroed_summary(storage, user_id) -> None:
    result = recompute_month(storage, user_id, 2024, 7)

    assert result.summary.total_income == Decimal("0")
    assert result.summary.total_expenses == Decimal("0")
    assert result.summary.net_balance == Decimal("0")
    assert result.breakdowns == []
    assert storage.get_summary(user_id, 2024, 7) is not None


def test_recompute_is_idempotent(storage, user_id) -> None:
    _create(storage, user_id, date(2024, 3, 1), "55.10", TransactionType.expense, Category.food)
    _create(storage, user_id, date(2024, 3, 2), "12.35", TransactionType.expense, Category.housing)
    _create(storage, user_id, date(2024, 3, 3), "900", TransactionType.income, Category.income)

    first = recompute_month(storage, user_id, 2024, 3)
    second = recompute_month(storage, user_id, 2024, 3)

    assert _values(first) == _values(second)
    assert first.summary.id == second.summary.id


def test_sum_and_percentage_invariants(storage, user_id) -> None:
    for category in (Category.food, Category.housing, Category.utilities):
        _create(storage, user_id, date(2024, 5, 9), "100", TransactionType.expense, category)
    _create(storage, user_id, date(2024, 5, 9), "250.75", TransactionType.income, Category.income)

    result = recompute_month(storage, user_id, 2024, 5)
    summary = result.summary

    assert summary.total_income - summary.total_expenses == summary.net_balance
    assert sum(b.amount for b in result.breakdowns) == summary.total_expenses
    total_pct = sum(b.percentage for b in result.breakdowns)
    assert abs(total_pct - Decimal("100")) <= Decimal("0.05")


def test_recompute_replaces_stale_categories(storage, user_id) -> None:
    txn = _create(
        storage, user_id, date(2024, 3, 10), "80", TransactionType.expense, Category.food
    )
    recompute_month(storage, user_id, 2024, 3)

    storage.update_transaction(txn.id, TransactionPatch(category=Category.entertainment))
    result = recompute_month(storage, user_id, 2024, 3)

    assert [b.category for b in result.breakdowns] == [Category.entertainment]
    assert [b.category for b in storage.list_breakdowns(result.summary.id)] == [
        Category.entertainment
    ]


def test_recompute_ignores_other_months(storage, user_id) -> None:
    _create(storage, user_id, date(2024, 3, 31), "10", TransactionType.expense, Category.food)
    _create(storage, user_id, date(2024, 4, 1), "99", TransactionType.expense, Category.food)

    result = recompute_month(storage, user_id, 2024, 3)

    assert result.summary.total_expenses == Decimal("10")


def test_rebuild_summaries_covers_every_month(storage, user_id) -> None:
    _create(storage, user_id, date(2024, 1, 3), "10", TransactionType.expense, Category.food)
    _create(storage, user_id, date(2024, 2, 3), "20", TransactionType.expense, Category.food)
    recompute_month(storage, user_id, 2023, 12)

    assert rebuild_summaries(storage, user_id) == 3
    assert storage.get_summary(user_id, 2024, 2).total_expenses == Decimal("20")
    assert storage.get_summary(user_id, 2023, 12).total_expenses == Decimal("0")


def _record(idx, amount, type_, category):
    return TransactionOut(
        id=idx,
        user_id=1,
        date=date(2024, 3, idx),
        description=f"txn {idx}",
        category=category,
        amount=Decimal(amount),
        type=type_,
        created_at=datetime(2024, 3, idx),
    )


def test_summarize_is_order_independent() -> None:
    records = [
        _record(1, "10.00", TransactionType.expense, Category.food),
        _record(2, "30.00", TransactionType.expense, Category.shopping),
        _record(3, "500.00", TransactionType.income, Category.income),
        _record(4, "5.50", TransactionType.expense, Category.food),
    ]

    assert summarize(records) == summarize(list(reversed(records)))


def test_summarize_trusts_type_tag_over_category() -> None:
    records = [
        _record(1, "40.00", TransactionType.income, Category.food),
        _record(2, "10.00", TransactionType.expense, Category.income),
    ]

    totals, breakdowns = summarize(records)

    assert totals.total_income == Decimal("40.00")
    assert totals.total_expenses == Decimal("10.00")
    assert [(b.category, b.percentage) for b in breakdowns] == [
        (Category.income, Decimal("100.00"))
    ]


def test_summarize_without_expenses_has_no_breakdowns() -> None:
    totals, breakdowns = summarize(
        [_record(1, "40.00", TransactionType.income, Category.income)]
    )

    assert totals.net_balance == Decimal("40.00")
    assert breakdowns == []


def test_month_totals_may_exceed_single_amount_limit(storage, user_id) -> None:
    for day in (1, 2, 3):
        _create(
            storage,
            user_id,
            date(2024, 6, day),
            "99999999.99",
            TransactionType.expense,
            Category.housing,
        )

    recompute_month(storage, user_id, 2024, 6)

    stored = storage.get_summary(user_id, 2024, 6)
    assert stored.total_expenses == Decimal("299999999.97")
    assert storage.list_breakdowns(stored.id)[0].amount == Decimal("299999999.97")


def test_summarize_rejects_totals_over_column_limit(monkeypatch) -> None:
    monkeypatch.setattr(aggregation, "MAX_TOTAL", Decimal("100.00"))
    records = [
        _record(1, "60.00", TransactionType.expense, Category.food),
        _record(2, "60.00", TransactionType.expense, Category.food),
    ]

    with pytest.raises(MonthTotalsOverflow):
        summarize(records)
    assert summarize(records[:1])[0].total_expenses == Decimal("60.00")
