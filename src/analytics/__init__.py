"""Derived figures and exports computed from cached records."""

from src.analytics.aggregations import (
    BudgetStatus,
    BudgetUsage,
    CategoryUsage,
    ChildOverview,
    DateRange,
    SpendingSummary,
    budget_usage,
    category_totals,
    children_overview,
    daily_totals,
    filter_expenses,
    monthly_totals,
    period_bounds,
    period_spend,
    recent_expenses,
    spending_summary,
)
from src.analytics.export import CSV_HEADER, export_filename, expenses_to_csv

__all__ = [
    "BudgetStatus",
    "BudgetUsage",
    "CategoryUsage",
    "ChildOverview",
    "DateRange",
    "SpendingSummary",
    "budget_usage",
    "category_totals",
    "children_overview",
    "daily_totals",
    "filter_expenses",
    "monthly_totals",
    "period_bounds",
    "period_spend",
    "recent_expenses",
    "spending_summary",
    "CSV_HEADER",
    "export_filename",
    "expenses_to_csv",
]
