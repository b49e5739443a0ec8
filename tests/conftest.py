"""
Shared fixtures.

Everything runs against the in-memory stores; no network access.
"""

import asyncio
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

import pytest

from src.audit import AuditLogger
from src.models.expense import BudgetDraft, ExpenseCategory, ExpenseDraft
from src.services.storage import (
    ConnectionError as StoreConnectionError,
    InMemoryAuditStorage,
    InMemoryExpenseStore,
    InMemoryIdentityStore,
    StorageError,
)
from src.session import SessionManager
from src.sync import ExpenseSyncCore


PASSWORD = "secret1"


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FlakyExpenseStore(InMemoryExpenseStore):
    """
    In-memory store with switchable failures and pause points.

    fail_queries: number of upcoming reads that raise
    fail_writes: every write raises while set
    query_gate / write_gate: reads / writes block until the event is set
    """

    def __init__(self):
        super().__init__()
        self.fail_queries = 0
        self.fail_writes = False
        self.query_calls = 0
        self.query_gate: Optional[asyncio.Event] = None
        self.query_entered = asyncio.Event()
        self.write_gate: Optional[asyncio.Event] = None
        self.write_entered = asyncio.Event()

    async def _read(self) -> None:
        self.query_calls += 1
        self.query_entered.set()
        if self.query_gate is not None:
            await self.query_gate.wait()
        if self.fail_queries:
            self.fail_queries -= 1
            raise StoreConnectionError("store unavailable")

    async def _write(self) -> None:
        self.write_entered.set()
        if self.write_gate is not None:
            await self.write_gate.wait()
        if self.fail_writes:
            raise StorageError("write rejected")

    async def query_expenses(self, user_ids: Iterable[str], limit: int = 100):
        await self._read()
        return await super().query_expenses(user_ids, limit)

    async def query_budgets(self, user_ids: Iterable[str]):
        await self._read()
        return await super().query_budgets(user_ids)

    async def insert_expense(self, draft):
        await self._write()
        return await super().insert_expense(draft)

    async def update_expense(self, expense_id, fields):
        await self._write()
        return await super().update_expense(expense_id, fields)

    async def delete_expense(self, expense_id):
        await self._write()
        return await super().delete_expense(expense_id)

    async def insert_budget(self, draft):
        await self._write()
        return await super().insert_budget(draft)

    async def update_budget(self, budget_id, fields):
        await self._write()
        return await super().update_budget(budget_id, fields)

    async def seed(
        self,
        user_id: str,
        amount: str,
        category: ExpenseCategory = ExpenseCategory.FOOD,
        description: str = "Groceries",
        on: date = date(2024, 3, 1),
    ):
        """Insert directly, bypassing failures and authorization."""
        return await InMemoryExpenseStore.insert_expense(
            self,
            ExpenseDraft(
                user_id=user_id,
                amount=Decimal(amount),
                category=category,
                description=description,
                date=on,
            ),
        )

    async def seed_budget(self, user_id: str, amount: str):
        return await InMemoryExpenseStore.insert_budget(
            self, BudgetDraft(user_id=user_id, amount=Decimal(amount))
        )


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch):
    """Cheap password hashing and no retry waits."""
    monkeypatch.setenv("AUTH_PASSWORD_HASH_ITERATIONS", "1000")
    monkeypatch.setenv("SYNC_FETCH_RETRY_DELAY_SECONDS", "0")


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def identity_store():
    return InMemoryIdentityStore()


@pytest.fixture
def expense_store():
    return FlakyExpenseStore()


@pytest.fixture
def sessions(identity_store, audit_logger):
    return SessionManager(identity_store, audit_logger)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def core(sessions, expense_store, audit_logger, clock):
    return ExpenseSyncCore(
        sessions,
        expense_store,
        audit_logger,
        retry_delay_seconds=0,
        clock=clock,
    )


@pytest.fixture
def make_family(sessions):
    """
    Register a parent (left signed in) and its children.

    Returns (parent, children) as async callable.
    """
    async def _make(children: int = 2):
        await sessions.register("Pat", "pat@example.com", PASSWORD, "parent")
        kids = []
        for i in range(children):
            kids.append(
                await sessions.register(
                    f"Kid {i}", f"kid{i}@example.com", PASSWORD, "child",
                    parent_id=sessions.current_account.id,
                )
            )
        return sessions.current_account, kids

    return _make
