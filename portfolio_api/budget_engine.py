from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class BudgetEntry:
    amount: Decimal
    category: str
    date: date


@dataclass(frozen=True)
class CategoryTotal:
    category: str
    amount: Decimal
    percentage: Decimal


@dataclass(frozen=True)
class BudgetSummary:
    total_income: Decimal
    total_expense: Decimal
    balance: Decimal
    income_by_category: List[CategoryTotal]
    expense_by_category: List[CategoryTotal]


def summarize_budget(
    incomes: Iterable[BudgetEntry],
    expenses: Iterable[BudgetEntry],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> BudgetSummary:
    if start_date is not None and end_date is not None and start_date > end_date:
        raise ValueError("start_date must be on or before end_date.")

    filtered_incomes = _filter_range(incomes, start_date, end_date)
    filtered_expenses = _filter_range(expenses, start_date, end_date)

    total_income = _sum_amounts(filtered_incomes)
    total_expense = _sum_amounts(filtered_expenses)

    return BudgetSummary(
        total_income=total_income,
        total_expense=total_expense,
        balance=total_income - total_expense,
        income_by_category=_group_by_category(filtered_incomes, total_income),
        expense_by_category=_group_by_category(filtered_expenses, total_expense),
    )


def _filter_range(
    entries: Iterable[BudgetEntry],
    start_date: Optional[date],
    end_date: Optional[date],
) -> List[BudgetEntry]:
    filtered = []
    for entry in entries:
        if start_date is not None and entry.date < start_date:
            continue
        if end_date is not None and entry.date > end_date:
            continue
        filtered.append(entry)
    return filtered


def _sum_amounts(entries: Iterable[BudgetEntry]) -> Decimal:
    total = ZERO
    for entry in entries:
        total += _coerce_amount(entry.amount)
    return total


def _group_by_category(
    entries: Iterable[BudgetEntry], total: Decimal
) -> List[CategoryTotal]:
    # dicts keep first-seen order, which is the order the rows were listed in
    totals: dict[str, Decimal] = {}
    for entry in entries:
        totals[entry.category] = totals.get(entry.category, ZERO) + _coerce_amount(entry.amount)
    return [
        CategoryTotal(
            category=category,
            amount=amount,
            percentage=(amount / total * HUNDRED) if total > ZERO else ZERO,
        )
        for category, amount in totals.items()
    ]


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
