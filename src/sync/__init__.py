"""Expense and budget synchronization."""

from src.sync.core import BUDGETS, EXPENSES, ExpenseSyncCore, FetchState
from src.sync.retry import fetch_retry_policy

__all__ = [
    "BUDGETS",
    "EXPENSES",
    "ExpenseSyncCore",
    "FetchState",
    "fetch_retry_policy",
]
