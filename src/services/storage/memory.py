"""
In-Memory Storage Implementation

Used for tests and for local mode, where the whole family shares one
process and nothing needs to survive a restart.

Behaves like the hosted backends where the core can observe it:
- store-assigned ids and timestamps
- 'in' queries limited to 10 ids
- provider error codes from authenticate/create_account
Records are copied on the way in and out so callers never share state
with the store.
"""

import asyncio
from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID, uuid4

from src.models.account import Account, NewAccount, UserRole, normalize_email
from src.models.audit import AuditEvent
from src.models.expense import Budget, BudgetDraft, Expense, ExpenseDraft
from src.services.storage.credentials import LoginThrottle, hash_password, verify_password
from src.services.storage.interface import (
    AuditStorageInterface,
    ExpenseStoreInterface,
    IdentityProviderError,
    IdentityStoreInterface,
    RecordNotFoundError,
    check_in_query,
)


def _new_id() -> str:
    return uuid4().hex


class InMemoryIdentityStore(IdentityStoreInterface):
    """Account directory and credentials held in dictionaries."""

    def __init__(self, throttle: Optional[LoginThrottle] = None):
        self._accounts: dict[str, Account] = {}
        self._password_hashes: dict[str, str] = {}
        self._ids_by_email: dict[str, str] = {}
        self._throttle = throttle or LoginThrottle()
        self._lock = asyncio.Lock()
        self.signed_in_id: Optional[str] = None

    async def authenticate(self, email: str, password: str) -> str:
        email = normalize_email(email)
        if "@" not in email:
            raise IdentityProviderError("invalid-email")
        if self._throttle.is_locked(email):
            raise IdentityProviderError("too-many-requests")

        account_id = self._ids_by_email.get(email)
        if account_id is None:
            self._throttle.record_failure(email)
            raise IdentityProviderError("user-not-found")
        if not verify_password(password, self._password_hashes[account_id]):
            self._throttle.record_failure(email)
            raise IdentityProviderError("wrong-password")

        self._throttle.reset(email)
        self.signed_in_id = account_id
        return account_id

    async def create_account(self, account: NewAccount, password: str) -> Account:
        async with self._lock:
            if account.email in self._ids_by_email:
                raise IdentityProviderError("email-already-in-use")
            record = Account(**account.model_dump(), id=_new_id())
            self._accounts[record.id] = record
            self._password_hashes[record.id] = hash_password(password)
            self._ids_by_email[record.email] = record.id
        return record.model_copy(deep=True)

    async def get_account(self, account_id: str) -> Optional[Account]:
        account = self._accounts.get(account_id)
        return account.model_copy(deep=True) if account else None

    async def update_account(self, account_id: str, fields: dict) -> None:
        async with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                raise RecordNotFoundError(f"Account not found: {account_id}")
            self._accounts[account_id] = Account.model_validate(
                {**account.model_dump(), **fields}
            )

    async def query_accounts(
        self,
        account_id: Optional[str] = None,
        email: Optional[str] = None,
        parent_id: Optional[str] = None,
        role: Optional[UserRole] = None,
    ) -> list[Account]:
        results = []
        for account in self._accounts.values():
            if account_id is not None and account.id != account_id:
                continue
            if email is not None and account.email != normalize_email(email):
                continue
            if parent_id is not None and account.parent_id != parent_id:
                continue
            if role is not None and account.role != role:
                continue
            results.append(account.model_copy(deep=True))
        results.sort(key=lambda a: a.created_at)
        return results

    async def append_child(self, parent_id: str, child_id: str) -> list[str]:
        async with self._lock:
            parent = self._accounts.get(parent_id)
            if parent is None:
                raise RecordNotFoundError(f"Parent account not found: {parent_id}")
            if child_id not in parent.children:
                parent = parent.model_copy(update={"children": [*parent.children, child_id]})
                self._accounts[parent_id] = parent
            return list(parent.children)

    async def sign_out(self) -> None:
        self.signed_in_id = None


class InMemoryExpenseStore(ExpenseStoreInterface):
    """Expense and budget documents held in dictionaries."""

    def __init__(self):
        self._expenses: dict[str, Expense] = {}
        self._budgets: dict[str, Budget] = {}

    async def query_expenses(
        self,
        user_ids: Iterable[str],
        limit: int = 100,
    ) -> list[Expense]:
        ids = set(check_in_query(user_ids))
        matches = [e for e in self._expenses.values() if e.user_id in ids]
        matches.sort(key=lambda e: (e.date, e.created_at), reverse=True)
        return [e.model_copy(deep=True) for e in matches[:limit]]

    async def insert_expense(self, draft: ExpenseDraft) -> Expense:
        now = datetime.utcnow()
        expense = Expense(**draft.model_dump(), id=_new_id(), created_at=now, updated_at=now)
        self._expenses[expense.id] = expense
        return expense.model_copy(deep=True)

    async def update_expense(self, expense_id: str, fields: dict) -> Expense:
        existing = self._expenses.get(expense_id)
        if existing is None:
            raise RecordNotFoundError(f"Expense not found: {expense_id}")
        updated = Expense.model_validate(
            {**existing.model_dump(), **fields, "updated_at": datetime.utcnow()}
        )
        self._expenses[expense_id] = updated
        return updated.model_copy(deep=True)

    async def delete_expense(self, expense_id: str) -> bool:
        return self._expenses.pop(expense_id, None) is not None

    async def query_budgets(self, user_ids: Iterable[str]) -> list[Budget]:
        ids = set(check_in_query(user_ids))
        return [b.model_copy(deep=True) for b in self._budgets.values() if b.user_id in ids]

    async def insert_budget(self, draft: BudgetDraft) -> Budget:
        now = datetime.utcnow()
        budget = Budget(**draft.model_dump(), id=_new_id(), created_at=now, updated_at=now)
        self._budgets[budget.id] = budget
        return budget.model_copy(deep=True)

    async def update_budget(self, budget_id: str, fields: dict) -> Budget:
        existing = self._budgets.get(budget_id)
        if existing is None:
            raise RecordNotFoundError(f"Budget not found: {budget_id}")
        updated = Budget.model_validate(
            {**existing.model_dump(), **fields, "updated_at": datetime.utcnow()}
        )
        self._budgets[budget_id] = updated
        return updated.model_copy(deep=True)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]
