"""Services package."""

from src.services.storage import (
    AuditStorageInterface,
    ExpenseStoreInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsExpenseStore,
    GoogleSheetsIdentityStore,
    IdentityProviderError,
    IdentityStoreInterface,
    InMemoryAuditStorage,
    InMemoryExpenseStore,
    InMemoryIdentityStore,
    RecordNotFoundError,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "ExpenseStoreInterface",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsExpenseStore",
    "GoogleSheetsIdentityStore",
    "IdentityProviderError",
    "IdentityStoreInterface",
    "InMemoryAuditStorage",
    "InMemoryExpenseStore",
    "InMemoryIdentityStore",
    "RecordNotFoundError",
    "StorageError",
]
