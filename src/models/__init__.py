"""
Data Models Package

This package contains all Pydantic models used by the expense tracker core.
All data flowing through the system must conform to these schemas.
"""

from src.models.account import (
    Account,
    AccountUpdate,
    NewAccount,
    UserRole,
    normalize_email,
)
from src.models.expense import (
    EXPENSE_CATEGORIES,
    Budget,
    BudgetDraft,
    BudgetPeriod,
    Expense,
    ExpenseCategory,
    ExpenseDraft,
    ExpenseUpdate,
)
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Account models
    "Account",
    "AccountUpdate",
    "NewAccount",
    "UserRole",
    "normalize_email",
    # Expense models
    "EXPENSE_CATEGORIES",
    "Budget",
    "BudgetDraft",
    "BudgetPeriod",
    "Expense",
    "ExpenseCategory",
    "ExpenseDraft",
    "ExpenseUpdate",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
