"""
Storage Services Package

Provides abstract interfaces and concrete implementations for the identity
directory, the expense/budget document store and the audit log.
Google Sheets is the hosted backend; the in-memory backend serves tests and
local mode.
"""

from src.services.storage.interface import (
    MAX_IN_QUERY_IDS,
    AuditStorageInterface,
    ConnectionError,
    ExpenseStoreInterface,
    IdentityProviderError,
    IdentityStoreInterface,
    RecordNotFoundError,
    StorageError,
)
from src.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryExpenseStore,
    InMemoryIdentityStore,
)
from src.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsExpenseStore,
    GoogleSheetsIdentityStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "ExpenseStoreInterface",
    "IdentityStoreInterface",
    "MAX_IN_QUERY_IDS",
    # Exceptions
    "ConnectionError",
    "IdentityProviderError",
    "RecordNotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryExpenseStore",
    "InMemoryIdentityStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsExpenseStore",
    "GoogleSheetsIdentityStore",
]
