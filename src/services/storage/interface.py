"""
Abstract Storage Interface

DESIGN DECISION: The identity directory and the expense/budget document
store are external collaborators. We define abstract interfaces so that:
1. Google Sheets and in-memory backends are interchangeable
2. Tests can inject failures without touching the network
3. The sync core never depends on a concrete backend

The interfaces mirror what the hosted document store offers: "in" queries
capped at 10 ids, insert, update-by-id, delete-by-id. Nothing more.
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional
from uuid import UUID

from src.models.account import Account, NewAccount, UserRole
from src.models.audit import AuditEvent
from src.models.expense import Budget, BudgetDraft, Expense, ExpenseDraft


MAX_IN_QUERY_IDS = 10


class IdentityStoreInterface(ABC):
    """
    Account directory plus credential check.

    Any identity backend must implement these methods.
    """

    @abstractmethod
    async def authenticate(self, email: str, password: str) -> str:
        """
        Check credentials.

        Returns:
            The account id

        Raises:
            IdentityProviderError: With a provider code such as
                'invalid-email', 'user-not-found', 'wrong-password'
                or 'too-many-requests'
        """
        pass

    @abstractmethod
    async def create_account(self, account: NewAccount, password: str) -> Account:
        """
        Create the identity and its directory record.

        Raises:
            IdentityProviderError: 'email-already-in-use', 'invalid-email'
        """
        pass

    @abstractmethod
    async def get_account(self, account_id: str) -> Optional[Account]:
        """Directory record by id, or None."""
        pass

    @abstractmethod
    async def update_account(self, account_id: str, fields: dict) -> None:
        """
        Merge fields into a directory record.

        Raises:
            RecordNotFoundError: If the account doesn't exist
        """
        pass

    @abstractmethod
    async def query_accounts(
        self,
        account_id: Optional[str] = None,
        email: Optional[str] = None,
        parent_id: Optional[str] = None,
        role: Optional[UserRole] = None,
    ) -> list[Account]:
        """Directory records matching every given filter."""
        pass

    @abstractmethod
    async def append_child(self, parent_id: str, child_id: str) -> list[str]:
        """
        Add child_id to the parent's children (array-union).

        Atomic within one store instance; appending an id already present
        is a no-op.

        Returns:
            The parent's children after the append

        Raises:
            RecordNotFoundError: If the parent doesn't exist
        """
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        """End the identity provider session."""
        pass


class ExpenseStoreInterface(ABC):
    """
    Expense and budget document store.

    Records carry a user_id; queries select by a set of at most
    MAX_IN_QUERY_IDS user ids.
    """

    @abstractmethod
    async def query_expenses(
        self,
        user_ids: Iterable[str],
        limit: int = 100,
    ) -> list[Expense]:
        """
        Expenses owned by any of user_ids, newest first.

        Raises:
            StorageError: On transport failure or more than
                MAX_IN_QUERY_IDS ids
        """
        pass

    @abstractmethod
    async def insert_expense(self, draft: ExpenseDraft) -> Expense:
        """
        Insert an expense with store-assigned id and timestamps.

        Returns:
            The stored record
        """
        pass

    @abstractmethod
    async def update_expense(self, expense_id: str, fields: dict) -> Expense:
        """
        Patch an expense and refresh updated_at.

        Raises:
            RecordNotFoundError: If the expense doesn't exist
        """
        pass

    @abstractmethod
    async def delete_expense(self, expense_id: str) -> bool:
        """
        Delete an expense.

        Returns:
            True if a record was removed, False if it was already absent
        """
        pass

    @abstractmethod
    async def query_budgets(self, user_ids: Iterable[str]) -> list[Budget]:
        """Budgets for any of user_ids."""
        pass

    @abstractmethod
    async def insert_budget(self, draft: BudgetDraft) -> Budget:
        """Insert a budget with store-assigned id and timestamps."""
        pass

    @abstractmethod
    async def update_budget(self, budget_id: str, fields: dict) -> Budget:
        """
        Patch a budget in place.

        Raises:
            RecordNotFoundError: If the budget doesn't exist
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Events sharing a correlation id, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """The most recent events, newest first."""
        pass


def check_in_query(user_ids: Iterable[str]) -> list[str]:
    """Dedupe ids and enforce the store's 'in' filter limit."""
    ids = list(dict.fromkeys(user_ids))
    if len(ids) > MAX_IN_QUERY_IDS:
        raise StorageError(
            f"'in' filters support at most {MAX_IN_QUERY_IDS} values, got {len(ids)}"
        )
    return ids


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class RecordNotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class IdentityProviderError(StorageError):
    """The identity backend rejected a request."""

    def __init__(self, code: str, message: str = ""):
        self.code = code
        super().__init__(message or code)
