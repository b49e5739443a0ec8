"""
Derived Aggregations

DESIGN DECISION: Aggregations are PURE.
Every function here is computed from the records it is given and an
explicit as_of date. Nothing reads the clock or the store, so the same
inputs always produce the same figures.

Amounts stay Decimal end to end; only percentages are floats.
"""

from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from src.models.expense import Budget, BudgetPeriod, Expense, ExpenseCategory


ZERO = Decimal("0")


class BudgetStatus(str, Enum):
    UNDER_BUDGET = "under_budget"
    OVER_BUDGET = "over_budget"
    NO_BUDGET = "no_budget"


class DateRange(str, Enum):
    """Windows offered by the expense list filter."""
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    ALL = "all"


_RANGE_DAYS = {
    DateRange.TODAY: 0,
    DateRange.WEEK: 7,
    DateRange.MONTH: 30,
    DateRange.YEAR: 365,
}


class CategoryUsage(BaseModel):
    category: ExpenseCategory
    limit: Decimal
    spent: Decimal
    percentage: float


class BudgetUsage(BaseModel):
    """Spend against one account's budget for the current period."""

    user_id: str
    period: Optional[BudgetPeriod] = None
    amount: Optional[Decimal] = Field(default=None, description="None when no budget is set")
    spent: Decimal = ZERO
    remaining: Optional[Decimal] = None
    percentage: float = 0.0
    status: BudgetStatus = BudgetStatus.NO_BUDGET
    category_usage: list[CategoryUsage] = Field(default_factory=list)


class SpendingSummary(BaseModel):
    total: Decimal
    expense_count: int
    monthly_average: Decimal
    daily_average: Decimal
    average_expense: Decimal
    highest_day: Optional[date] = None
    highest_day_total: Decimal = ZERO


class ChildOverview(BaseModel):
    user_id: str
    total: Decimal
    budget: Decimal
    percentage: float


def _owned(expenses: Iterable[Expense], user_id: Optional[str]) -> list[Expense]:
    if user_id is None:
        return list(expenses)
    return [e for e in expenses if e.user_id == user_id]


def _total(expenses: Iterable[Expense]) -> Decimal:
    return sum((e.amount for e in expenses), ZERO)


def _percentage(part: Decimal, whole: Decimal) -> float:
    if whole <= 0:
        return 0.0
    return round(float(part / whole * 100), 2)


def _month_start(day: date, months_back: int = 0) -> date:
    index = day.year * 12 + day.month - 1 - months_back
    return date(index // 12, index % 12 + 1, 1)


def _newest_first(expenses: Iterable[Expense]) -> list[Expense]:
    return sorted(expenses, key=lambda e: (e.date, e.created_at), reverse=True)


def category_totals(
    expenses: Iterable[Expense],
    user_id: Optional[str] = None,
) -> list[tuple[ExpenseCategory, Decimal]]:
    """Spend per category, largest first. Categories with no spend are omitted."""
    totals: dict[ExpenseCategory, Decimal] = {}
    for expense in _owned(expenses, user_id):
        totals[expense.category] = totals.get(expense.category, ZERO) + expense.amount
    return sorted(totals.items(), key=lambda item: (-item[1], item[0].value))


def daily_totals(
    expenses: Iterable[Expense],
    as_of: date,
    days: int = 30,
    user_id: Optional[str] = None,
) -> list[tuple[date, Decimal]]:
    """
    Spend per day over the trailing window ending at as_of.

    One entry per day, oldest first, zero-filled.
    """
    window = [as_of - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
    totals = {day: ZERO for day in window}
    for expense in _owned(expenses, user_id):
        if expense.date in totals:
            totals[expense.date] += expense.amount
    return [(day, totals[day]) for day in window]


def monthly_totals(
    expenses: Iterable[Expense],
    as_of: date,
    months: int = 12,
    user_id: Optional[str] = None,
) -> list[tuple[date, Decimal]]:
    """
    Spend per calendar month, keyed by the first day of the month.

    Covers the trailing months ending with as_of's month, oldest first,
    zero-filled.
    """
    window = [_month_start(as_of, back) for back in range(months - 1, -1, -1)]
    totals = {month: ZERO for month in window}
    for expense in _owned(expenses, user_id):
        month = _month_start(expense.date)
        if month in totals:
            totals[month] += expense.amount
    return [(month, totals[month]) for month in window]


def period_bounds(period: BudgetPeriod, as_of: date) -> tuple[date, date]:
    """Inclusive first and last day of the budget period containing as_of."""
    if period == BudgetPeriod.WEEKLY:
        return as_of - timedelta(days=6), as_of
    start = _month_start(as_of)
    return start, _month_start(as_of, -1) - timedelta(days=1)


def _in_period(expenses: Iterable[Expense], period: BudgetPeriod, as_of: date) -> list[Expense]:
    start, end = period_bounds(period, as_of)
    return [e for e in expenses if start <= e.date <= end]


def period_spend(
    expenses: Iterable[Expense],
    user_id: str,
    period: BudgetPeriod,
    as_of: date,
) -> Decimal:
    """Spend of user_id in the current budget period."""
    return _total(_in_period(_owned(expenses, user_id), period, as_of))


def _find_budget(budgets: Iterable[Budget], user_id: str) -> Optional[Budget]:
    for budget in budgets:
        if budget.user_id == user_id:
            return budget
    return None


def budget_usage(
    expenses: Iterable[Expense],
    budgets: Iterable[Budget],
    user_id: str,
    as_of: date,
) -> BudgetUsage:
    """
    Compare user_id's spend with its budget.

    Without a budget the status is no_budget and spend is reported for the
    calendar month. Spending exactly the budget counts as under budget.
    """
    owned = _owned(expenses, user_id)
    budget = _find_budget(budgets, user_id)
    if budget is None:
        return BudgetUsage(
            user_id=user_id,
            spent=period_spend(owned, user_id, BudgetPeriod.MONTHLY, as_of),
        )

    in_period = _in_period(owned, budget.period, as_of)
    spent = _total(in_period)
    category_usage = []
    for category, limit in sorted((budget.category_limits or {}).items(), key=lambda i: i[0].value):
        category_spent = _total(e for e in in_period if e.category == category)
        category_usage.append(
            CategoryUsage(
                category=category,
                limit=limit,
                spent=category_spent,
                percentage=_percentage(category_spent, limit),
            )
        )

    return BudgetUsage(
        user_id=user_id,
        period=budget.period,
        amount=budget.amount,
        spent=spent,
        remaining=budget.amount - spent,
        percentage=_percentage(spent, budget.amount),
        status=BudgetStatus.UNDER_BUDGET if spent <= budget.amount else BudgetStatus.OVER_BUDGET,
        category_usage=category_usage,
    )


def _range_start(date_range: DateRange, as_of: date) -> Optional[date]:
    if date_range == DateRange.ALL:
        return None
    return as_of - timedelta(days=_RANGE_DAYS[date_range])


def filter_expenses(
    expenses: Iterable[Expense],
    as_of: date,
    search: str = "",
    category: Optional[ExpenseCategory | str] = None,
    date_range: DateRange | str = DateRange.ALL,
) -> list[Expense]:
    """
    Expense list view: text search, category and date window, newest first.

    search matches description or category name, case-insensitively.
    The week, month and year windows reach back 7, 30 and 365 days from as_of.
    """
    date_range = DateRange(date_range)
    category = ExpenseCategory(category) if category else None
    needle = search.strip().lower()
    start = _range_start(date_range, as_of)

    matches = []
    for expense in expenses:
        if needle and needle not in expense.description.lower() \
                and needle not in expense.category.value.lower():
            continue
        if category is not None and expense.category != category:
            continue
        if start is not None and not start <= expense.date <= as_of:
            continue
        matches.append(expense)
    return _newest_first(matches)


def recent_expenses(
    expenses: Iterable[Expense],
    n: int = 5,
    user_id: Optional[str] = None,
) -> list[Expense]:
    return _newest_first(_owned(expenses, user_id))[:n]


def spending_summary(
    expenses: Iterable[Expense],
    as_of: date,
    user_id: Optional[str] = None,
) -> SpendingSummary:
    """
    Headline figures for the analytics view.

    - monthly_average: trailing 12 months, averaged over months with spend
    - daily_average: last 30 days, averaged over all 30
    - highest_day: the day with the most spend in the last 30 days
    """
    owned = _owned(expenses, user_id)
    total = _total(owned)

    spent_months = [amount for _, amount in monthly_totals(owned, as_of) if amount > 0]
    monthly_average = sum(spent_months, ZERO) / len(spent_months) if spent_months else ZERO

    days = daily_totals(owned, as_of, days=30)
    daily_average = sum((amount for _, amount in days), ZERO) / len(days)

    highest_day, highest_total = None, ZERO
    for day, amount in days:
        if amount > highest_total:
            highest_day, highest_total = day, amount

    return SpendingSummary(
        total=total,
        expense_count=len(owned),
        monthly_average=monthly_average.quantize(Decimal("0.01")),
        daily_average=daily_average.quantize(Decimal("0.01")),
        average_expense=(total / len(owned)).quantize(Decimal("0.01")) if owned else ZERO,
        highest_day=highest_day,
        highest_day_total=highest_total,
    )


def children_overview(
    expenses: Iterable[Expense],
    budgets: Iterable[Budget],
    child_ids: Iterable[str],
    as_of: date,
) -> list[ChildOverview]:
    """Calendar-month spend of each child against its budget (0 when unset)."""
    expenses = list(expenses)
    budgets = list(budgets)
    overview = []
    for child_id in child_ids:
        total = period_spend(expenses, child_id, BudgetPeriod.MONTHLY, as_of)
        budget = _find_budget(budgets, child_id)
        amount = budget.amount if budget else ZERO
        overview.append(
            ChildOverview(
                user_id=child_id,
                total=total,
                budget=amount,
                percentage=_percentage(total, amount),
            )
        )
    return overview
