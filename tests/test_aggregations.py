"""
Tests for derived aggregations and CSV export.

All functions under test are pure; records are built directly.
"""

from datetime import date, datetime
from decimal import Decimal
from itertools import count

import pytest

from src.analytics import (
    BudgetStatus,
    DateRange,
    budget_usage,
    category_totals,
    children_overview,
    daily_totals,
    export_filename,
    expenses_to_csv,
    filter_expenses,
    monthly_totals,
    period_bounds,
    period_spend,
    recent_expenses,
    spending_summary,
)
from src.models.expense import Budget, BudgetPeriod, Expense, ExpenseCategory


AS_OF = date(2024, 3, 15)
_ids = count(1)


def expense(user_id, amount, on, category=ExpenseCategory.FOOD, description="Groceries"):
    n = next(_ids)
    return Expense(
        id=f"e{n}",
        user_id=user_id,
        amount=Decimal(amount),
        category=category,
        description=description,
        date=on,
        created_at=datetime(2024, 1, 1, 0, 0, n % 60),
    )


def budget(user_id, amount, period=BudgetPeriod.MONTHLY, limits=None):
    return Budget(
        id=f"b-{user_id}",
        user_id=user_id,
        amount=Decimal(amount),
        period=period,
        category_limits=limits,
    )


@pytest.fixture
def family_expenses():
    return [
        expense("p1", "10.00", date(2024, 3, 15)),
        expense("p1", "5.00", date(2024, 3, 14), ExpenseCategory.TRANSPORTATION, "Bus"),
        expense("p1", "20.00", date(2024, 2, 10), ExpenseCategory.SHOPPING, "Shoes"),
        expense("c1", "40.00", date(2024, 3, 2), ExpenseCategory.EDUCATION, "Books"),
        expense("c2", "60.00", date(2024, 3, 9), ExpenseCategory.ENTERTAINMENT, "Cinema"),
    ]


class TestTotals:
    """Per-category, per-day and per-month totals."""

    def test_category_totals_largest_first(self, family_expenses):
        totals = category_totals(family_expenses)
        assert totals[0] == (ExpenseCategory.ENTERTAINMENT, Decimal("60.00"))
        assert [c for c, _ in totals] == [
            ExpenseCategory.ENTERTAINMENT,
            ExpenseCategory.EDUCATION,
            ExpenseCategory.SHOPPING,
            ExpenseCategory.FOOD,
            ExpenseCategory.TRANSPORTATION,
        ]

    def test_category_totals_for_one_user(self, family_expenses):
        assert category_totals(family_expenses, user_id="c1") == [
            (ExpenseCategory.EDUCATION, Decimal("40.00"))
        ]

    def test_daily_totals_zero_filled(self, family_expenses):
        days = daily_totals(family_expenses, AS_OF, days=7, user_id="p1")
        assert [d for d, _ in days] == [date(2024, 3, d) for d in range(9, 16)]
        assert days[-1] == (AS_OF, Decimal("10.00"))
        assert days[-2] == (date(2024, 3, 14), Decimal("5.00"))
        assert days[0][1] == Decimal("0")

    def test_monthly_totals_cross_year(self, family_expenses):
        months = monthly_totals(family_expenses, AS_OF, user_id="p1")
        assert len(months) == 12
        assert months[0][0] == date(2023, 4, 1)
        assert months[-1] == (date(2024, 3, 1), Decimal("15.00"))
        assert months[-2] == (date(2024, 2, 1), Decimal("20.00"))

    def test_deterministic(self, family_expenses):
        first = (category_totals(family_expenses), daily_totals(family_expenses, AS_OF))
        second = (category_totals(family_expenses), daily_totals(family_expenses, AS_OF))
        assert first == second


class TestBudgetUsage:
    """Spend compared with budgets."""

    def test_period_bounds(self):
        assert period_bounds(BudgetPeriod.MONTHLY, date(2024, 2, 10)) == (
            date(2024, 2, 1), date(2024, 2, 29)
        )
        assert period_bounds(BudgetPeriod.MONTHLY, date(2024, 12, 31)) == (
            date(2024, 12, 1), date(2024, 12, 31)
        )
        assert period_bounds(BudgetPeriod.WEEKLY, AS_OF) == (date(2024, 3, 9), AS_OF)

    def test_period_spend(self, family_expenses):
        assert period_spend(family_expenses, "p1", BudgetPeriod.MONTHLY, AS_OF) == Decimal("15.00")
        assert period_spend(family_expenses, "c2", BudgetPeriod.WEEKLY, AS_OF) == Decimal("60.00")
        assert period_spend(family_expenses, "c1", BudgetPeriod.WEEKLY, AS_OF) == Decimal("0")

    def test_no_budget(self, family_expenses):
        usage = budget_usage(family_expenses, [], "c1", AS_OF)
        assert usage.status == BudgetStatus.NO_BUDGET
        assert usage.amount is None
        assert usage.spent == Decimal("40.00")
        assert usage.percentage == 0.0

    def test_under_budget(self, family_expenses):
        usage = budget_usage(family_expenses, [budget("c1", "50.00")], "c1", AS_OF)
        assert usage.status == BudgetStatus.UNDER_BUDGET
        assert usage.remaining == Decimal("10.00")
        assert usage.percentage == 80.0

    def test_exactly_on_budget_is_under(self, family_expenses):
        usage = budget_usage(family_expenses, [budget("c1", "40.00")], "c1", AS_OF)
        assert usage.status == BudgetStatus.UNDER_BUDGET
        assert usage.remaining == Decimal("0")

    def test_over_budget(self, family_expenses):
        usage = budget_usage(family_expenses, [budget("c2", "50.00")], "c2", AS_OF)
        assert usage.status == BudgetStatus.OVER_BUDGET
        assert usage.remaining == Decimal("-10.00")
        assert usage.percentage == 120.0

    def test_category_limits(self, family_expenses):
        limits = {ExpenseCategory.FOOD: Decimal("20.00"), ExpenseCategory.HEALTH: Decimal("5.00")}
        usage = budget_usage(family_expenses, [budget("p1", "100.00", limits=limits)], "p1", AS_OF)
        food, health = usage.category_usage
        assert food.category == ExpenseCategory.FOOD
        assert food.spent == Decimal("10.00")
        assert food.percentage == 50.0
        assert health.spent == Decimal("0")

    def test_children_overview(self, family_expenses):
        overview = children_overview(
            family_expenses, [budget("c2", "120.00")], ["c1", "c2"], AS_OF
        )
        assert [(o.user_id, o.total, o.budget, o.percentage) for o in overview] == [
            ("c1", Decimal("40.00"), Decimal("0"), 0.0),
            ("c2", Decimal("60.00"), Decimal("120.00"), 50.0),
        ]


class TestListViews:
    """Filtering, recent items and summary figures."""

    def test_search_matches_description_and_category(self, family_expenses):
        assert [e.description for e in filter_expenses(family_expenses, AS_OF, search="bus")] == ["Bus"]
        assert len(filter_expenses(family_expenses, AS_OF, search="FOOD")) == 1

    def test_category_filter(self, family_expenses):
        result = filter_expenses(family_expenses, AS_OF, category="Shopping")
        assert [e.description for e in result] == ["Shoes"]

    @pytest.mark.parametrize(
        "date_range, expected",
        [
            (DateRange.TODAY, 1),
            (DateRange.WEEK, 3),
            ("month", 4),
            ("year", 5),
            ("all", 5),
        ],
    )
    def test_date_ranges(self, family_expenses, date_range, expected):
        assert len(filter_expenses(family_expenses, AS_OF, date_range=date_range)) == expected

    def test_filter_newest_first(self, family_expenses):
        dates = [e.date for e in filter_expenses(family_expenses, AS_OF)]
        assert dates == sorted(dates, reverse=True)

    def test_recent_expenses(self, family_expenses):
        recent = recent_expenses(family_expenses, n=2)
        assert [e.date for e in recent] == [date(2024, 3, 15), date(2024, 3, 14)]

    def test_spending_summary(self, family_expenses):
        summary = spending_summary(family_expenses, AS_OF, user_id="p1")
        assert summary.total == Decimal("35.00")
        assert summary.expense_count == 3
        assert summary.monthly_average == Decimal("17.50")
        assert summary.daily_average == Decimal("0.50")
        assert summary.average_expense == Decimal("11.67")
        assert summary.highest_day == date(2024, 3, 15)

    def test_spending_summary_empty(self):
        summary = spending_summary([], AS_OF)
        assert summary.total == Decimal("0")
        assert summary.average_expense == Decimal("0")
        assert summary.highest_day is None


class TestCsvExport:
    """CSV rendering."""

    def test_rows_and_quoting(self):
        rows = [
            expense("p1", "3.5", date(2024, 3, 1), description='Say "cheese", please'),
        ]
        assert expenses_to_csv(rows).splitlines() == [
            "Date,Category,Description,Amount",
            '03/01/2024,Food,"Say ""cheese"", please",3.50',
        ]

    def test_custom_date_format(self):
        rows = [expense("p1", "1", date(2024, 3, 1))]
        assert expenses_to_csv(rows, date_format="%Y-%m-%d").splitlines()[1].startswith("2024-03-01,")

    def test_filename(self):
        assert export_filename(date(2024, 3, 1)) == "expenses-2024-03-01.csv"
