"""
Expense/Budget Sync Core

Mediates every read and write of expenses and budgets for the signed-in
account.

DESIGN DECISION: The core keeps the session's working copy of the
records; the store stays the durable owner.
- Reads are scoped to the account's visibility (self, plus linked
  children for a parent), split into store-sized batches and merged.
- Reads are retried with a fixed backoff and throttled by a cooldown.
- Writes are applied locally first (tagged pending), rolled back if the
  store rejects them, and followed by a reconciling read.
- Anything that completes after the session changed is discarded.

GUARANTEES:
- A child never holds another account's records
- Validation and authorization failures never reach the store
- Writes are never retried automatically
"""

import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional
from uuid import UUID, uuid4

from pydantic import ValidationError

from src.analytics.export import expenses_to_csv
from src.audit import AuditLogger, create_correlation_id
from src.config import get_settings
from src.errors import (
    FetchFailedError,
    InvalidInputError,
    NotFoundError,
    UnauthorizedError,
    WriteFailedError,
)
from src.models.account import Account
from src.models.audit import AuditEventBuilder
from src.models.expense import (
    EXPENSE_CATEGORIES,
    Budget,
    BudgetDraft,
    BudgetPeriod,
    Expense,
    ExpenseDraft,
    ExpenseUpdate,
)
from src.services.storage import ExpenseStoreInterface, RecordNotFoundError, StorageError
from src.session import AuthState, SessionManager
from src.sync.retry import fetch_retry_policy


EXPENSES = "expenses"
BUDGETS = "budgets"

PENDING_PREFIX = "pending-"


class FetchState(str, Enum):
    """Lifecycle of one collection's fetch."""
    IDLE = "idle"
    FETCHING = "fetching"


@dataclass
class CollectionStatus:
    in_flight: int = 0
    last_completed_at: Optional[float] = None
    last_error: Optional[str] = None

    @property
    def state(self) -> FetchState:
        return FetchState.FETCHING if self.in_flight else FetchState.IDLE


def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'value'}: {err['msg']}"
        for err in error.errors()
    )


def _newest_first(expenses: Iterable[Expense]) -> list[Expense]:
    return sorted(expenses, key=lambda e: (e.date, e.created_at), reverse=True)


def _is_placeholder(expense: Expense) -> bool:
    return expense.id.startswith(PENDING_PREFIX)


class ExpenseSyncCore:
    """
    Authorization-scoped access to expenses and budgets.

    Usage:
        core = ExpenseSyncCore(sessions, expense_store, audit_logger)
        await core.fetch_expenses()
        await core.add_expense(child_id, "12.50", "Food", "Lunch", date.today())
    """

    def __init__(
        self,
        sessions: SessionManager,
        store: ExpenseStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        *,
        max_attempts: Optional[int] = None,
        retry_delay_seconds: Optional[float] = None,
        cooldown_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        sync = get_settings().sync
        self._sessions = sessions
        self._store = store
        self._audit = audit_logger or AuditLogger()
        self._max_attempts = max_attempts if max_attempts is not None else sync.fetch_max_attempts
        self._retry_delay = (
            retry_delay_seconds
            if retry_delay_seconds is not None
            else sync.fetch_retry_delay_seconds
        )
        self._cooldown = (
            cooldown_seconds if cooldown_seconds is not None else sync.fetch_cooldown_seconds
        )
        self._query_limit = sync.expense_query_limit
        self._batch_size = sync.user_id_batch_size
        self._clock = clock

        self._expenses: list[Expense] = []
        self._budgets: list[Budget] = []
        self._status = {EXPENSES: CollectionStatus(), BUDGETS: CollectionStatus()}
        self._scope_account_id: Optional[str] = None
        self._scope_ids: tuple[str, ...] = ()
        self._unsubscribe = sessions.subscribe(self._on_auth_change)

    def close(self) -> None:
        """Stop following the session manager."""
        self._unsubscribe()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def expenses(self) -> tuple[Expense, ...]:
        return tuple(self._expenses)

    @property
    def budgets(self) -> tuple[Budget, ...]:
        return tuple(self._budgets)

    def fetch_state(self, collection: str) -> FetchState:
        return self._status[collection].state

    def last_error(self, collection: str) -> Optional[str]:
        return self._status[collection].last_error

    # ------------------------------------------------------------------
    # Session coupling
    # ------------------------------------------------------------------

    def _on_auth_change(self, state: AuthState) -> None:
        account = state.account
        account_id = account.id if account else None
        scope_ids = tuple(account.visible_user_ids()) if account else ()

        if account_id != self._scope_account_id:
            self._expenses = []
            self._budgets = []
            self._status = {EXPENSES: CollectionStatus(), BUDGETS: CollectionStatus()}
        elif scope_ids != self._scope_ids:
            # Same account, new child linked: the cache no longer covers the scope.
            for status in self._status.values():
                status.last_completed_at = None

        self._scope_account_id = account_id
        self._scope_ids = scope_ids

    def _is_current(self, session_id: Optional[UUID]) -> bool:
        return self._sessions.current_state.session_id == session_id

    def _require_account(self) -> Account:
        account = self._sessions.current_account
        if account is None:
            raise UnauthorizedError("Not signed in")
        return account

    def _batches(self, user_ids: list[str]) -> list[list[str]]:
        return [
            user_ids[i:i + self._batch_size]
            for i in range(0, len(user_ids), self._batch_size)
        ]

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    async def fetch_expenses(self, force: bool = False) -> list[Expense]:
        """
        Refresh expenses for the visible scope.

        Within the cooldown window of the last completed fetch the cached
        list is returned without a store call, unless force is set.

        Raises:
            FetchFailedError: every attempt failed; the cache is now empty
        """
        return await self._fetch(EXPENSES, self._query_expenses, force)

    async def fetch_budgets(self, force: bool = False) -> list[Budget]:
        """Refresh budgets for the visible scope. Same contract as fetch_expenses."""
        return await self._fetch(BUDGETS, self._store.query_budgets, force)

    async def _query_expenses(self, user_ids: list[str]) -> list[Expense]:
        return await self._store.query_expenses(user_ids, limit=self._query_limit)

    def _cached(self, collection: str) -> list:
        return list(self._expenses if collection == EXPENSES else self._budgets)

    def _apply(self, collection: str, records: list) -> None:
        if collection == EXPENSES:
            # Adds still waiting on the store survive a refresh.
            in_flight = [e for e in self._expenses if _is_placeholder(e)]
            self._expenses = in_flight + _newest_first(records)
        else:
            self._budgets = list(records)

    async def _fetch(
        self,
        collection: str,
        query: Callable[[list[str]], Awaitable[list]],
        force: bool,
    ) -> list:
        state = self._sessions.current_state
        account = state.account
        if account is None:
            self._apply(collection, [])
            return []

        status = self._status[collection]
        if (
            not force
            and status.last_completed_at is not None
            and self._clock() - status.last_completed_at < self._cooldown
        ):
            await self._audit.log(AuditEventBuilder.fetch_throttled(collection, account.id))
            return self._cached(collection)

        session_id = state.session_id
        batches = self._batches(account.visible_user_ids())

        async def read_all() -> list:
            merged: dict[str, Any] = {}
            for batch in batches:
                for record in await query(batch):
                    merged[record.id] = record
            return list(merged.values())

        async def on_retry(attempt: int, error: BaseException) -> None:
            await self._audit.log(
                AuditEventBuilder.fetch_retried(collection, attempt, str(error), account.id)
            )

        status.in_flight += 1
        try:
            records = None
            async for attempt in fetch_retry_policy(
                self._max_attempts, self._retry_delay, on_retry
            ):
                with attempt:
                    records = await read_all()
        except StorageError as e:
            if not self._is_current(session_id):
                await self._audit.log(AuditEventBuilder.fetch_discarded(collection, account.id))
                return self._cached(collection)
            self._apply(collection, [])
            status.last_completed_at = None
            status.last_error = str(e)
            await self._audit.log(
                AuditEventBuilder.fetch_failed(collection, self._max_attempts, str(e), account.id)
            )
            raise FetchFailedError(
                collection,
                self._max_attempts,
                f"Failed to load {collection} after {self._max_attempts} attempt(s): {e}",
            ) from e
        finally:
            status.in_flight -= 1

        if not self._is_current(session_id):
            await self._audit.log(AuditEventBuilder.fetch_discarded(collection, account.id))
            return self._cached(collection)

        self._apply(collection, records)
        status.last_completed_at = self._clock()
        status.last_error = None
        await self._audit.log(
            AuditEventBuilder.fetch_completed(collection, len(records), len(batches), account.id)
        )
        return self._cached(collection)

    async def _reconcile(self, collection: str, correlation_id: UUID) -> None:
        """Re-read after a confirmed write. Failure does not undo the write."""
        try:
            if collection == EXPENSES:
                await self.fetch_expenses(force=True)
            else:
                await self.fetch_budgets(force=True)
        except FetchFailedError as e:
            await self._audit.log_error(
                "reconcile_failed", str(e), details={"collection": collection},
                correlation_id=correlation_id,
            )

    # ------------------------------------------------------------------
    # Expense writes
    # ------------------------------------------------------------------

    def _index_of(self, expense_id: str) -> int:
        for idx, expense in enumerate(self._expenses):
            if expense.id == expense_id:
                return idx
        return -1

    def _put_expense(self, expense: Expense, replacing: Optional[str] = None) -> None:
        """Swap a local entry for the store's record, or prepend it."""
        for target in (replacing, expense.id):
            idx = self._index_of(target) if target else -1
            if idx >= 0:
                self._expenses[idx] = expense
                return
        self._expenses.insert(0, expense)

    async def add_expense(
        self,
        user_id: str,
        amount: Any,
        category: Any,
        description: str,
        date: Any,
    ) -> Expense:
        """
        Record an expense for user_id (self, or a linked child for a parent).

        A float amount is rounded to the cent; a string or Decimal with
        more than two decimal places is rejected.

        Raises:
            InvalidInputError: amount <= 0, unknown category, missing field
            UnauthorizedError: user_id outside the visible scope
            WriteFailedError: store rejected the insert (local entry removed)
        """
        account = self._require_account()
        try:
            draft = ExpenseDraft(
                user_id=user_id,
                amount=amount,
                category=category,
                description=description,
                date=date,
            )
        except ValidationError as e:
            raise InvalidInputError(_describe(e)) from e

        if not account.can_see(draft.user_id):
            await self._audit.log(
                AuditEventBuilder.access_denied("add_expense", draft.user_id, account.id)
            )
            raise UnauthorizedError("Not authorized to add expenses for this account")

        session_id = self._sessions.current_state.session_id
        correlation_id = create_correlation_id()
        now = datetime.utcnow()
        placeholder = Expense(
            **draft.model_dump(),
            id=f"{PENDING_PREFIX}{uuid4().hex}",
            created_at=now,
            updated_at=now,
            pending=True,
        )
        self._expenses.insert(0, placeholder)

        try:
            stored = await self._store.insert_expense(draft)
        except StorageError as e:
            idx = self._index_of(placeholder.id)
            if idx >= 0:
                del self._expenses[idx]
            await self._audit.log(
                AuditEventBuilder.write_failed(
                    "add_expense", "expense", None, str(e), account.id, correlation_id
                )
            )
            raise WriteFailedError(f"Failed to add expense: {e}") from e

        await self._audit.log(
            AuditEventBuilder.expense_added(
                stored.id,
                stored.user_id,
                str(stored.amount),
                stored.category.value,
                account.id,
                correlation_id,
            )
        )
        if not self._is_current(session_id):
            return stored

        self._put_expense(stored, replacing=placeholder.id)
        await self._reconcile(EXPENSES, correlation_id)
        return stored

    async def update_expense(self, expense_id: str, fields: dict) -> Expense:
        """
        Patch an expense in the visible scope.

        Raises:
            NotFoundError: id not in the visible scope
            InvalidInputError: invalid or immutable fields
            WriteFailedError: store rejected the update (local patch undone)
        """
        account = self._require_account()
        idx = self._index_of(expense_id)
        existing = self._expenses[idx] if idx >= 0 else None
        if existing is None or _is_placeholder(existing) or not account.can_see(existing.user_id):
            raise NotFoundError(f"Expense not found: {expense_id}")

        try:
            changes = ExpenseUpdate(**fields).changes()
        except ValidationError as e:
            raise InvalidInputError(_describe(e)) from e
        if not changes:
            return existing

        session_id = self._sessions.current_state.session_id
        correlation_id = create_correlation_id()
        self._expenses[idx] = existing.model_copy(
            update={**changes, "updated_at": datetime.utcnow(), "pending": True}
        )

        try:
            stored = await self._store.update_expense(expense_id, changes)
        except StorageError as e:
            if self._is_current(session_id):
                current_idx = self._index_of(expense_id)
                if isinstance(e, RecordNotFoundError):
                    if current_idx >= 0:
                        del self._expenses[current_idx]
                else:
                    self._put_expense(existing)
            await self._audit.log(
                AuditEventBuilder.write_failed(
                    "update_expense", "expense", expense_id, str(e), account.id, correlation_id
                )
            )
            if isinstance(e, RecordNotFoundError):
                raise NotFoundError(f"Expense not found: {expense_id}") from e
            raise WriteFailedError(f"Failed to update expense: {e}") from e

        await self._audit.log(
            AuditEventBuilder.expense_updated(
                expense_id, sorted(changes), account.id, correlation_id
            )
        )
        if not self._is_current(session_id):
            return stored

        self._put_expense(stored)
        await self._reconcile(EXPENSES, correlation_id)
        return stored

    async def delete_expense(self, expense_id: str) -> bool:
        """
        Delete an expense. Idempotent.

        Returns False (without touching the store) when the id is not in
        the visible scope.

        Raises:
            WriteFailedError: store rejected the delete (entry restored)
        """
        account = self._require_account()
        idx = self._index_of(expense_id)
        existing = self._expenses[idx] if idx >= 0 else None
        if existing is None or _is_placeholder(existing) or not account.can_see(existing.user_id):
            return False

        session_id = self._sessions.current_state.session_id
        del self._expenses[idx]
        try:
            await self._store.delete_expense(expense_id)
        except StorageError as e:
            if self._is_current(session_id) and self._index_of(expense_id) < 0:
                self._expenses.insert(min(idx, len(self._expenses)), existing)
            await self._audit.log(
                AuditEventBuilder.write_failed(
                    "delete_expense", "expense", expense_id, str(e), account.id
                )
            )
            raise WriteFailedError(f"Failed to delete expense: {e}") from e

        await self._audit.log(AuditEventBuilder.expense_deleted(expense_id, account.id))
        return True

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    def _may_set_budget(self, account: Account, user_id: str) -> bool:
        if user_id == account.id:
            return True
        return account.is_parent and account.can_see(user_id)

    async def set_budget(
        self,
        user_id: str,
        amount: Any,
        period: BudgetPeriod | str = BudgetPeriod.MONTHLY,
        category_limits: Optional[dict] = None,
    ) -> Budget:
        """
        Create or update the single budget of user_id.

        category_limits, when given, replaces the whole map; when omitted
        the stored map is kept.

        Raises:
            UnauthorizedError: caller is neither the owner nor its parent
            InvalidInputError: amount <= 0, unknown period or category
            WriteFailedError: store failure
        """
        account = self._require_account()
        if not self._may_set_budget(account, user_id):
            await self._audit.log(
                AuditEventBuilder.access_denied("set_budget", user_id, account.id)
            )
            raise UnauthorizedError("Not authorized to set budget")

        try:
            draft = BudgetDraft(
                user_id=user_id,
                amount=amount,
                period=period,
                category_limits=category_limits,
            )
        except ValidationError as e:
            raise InvalidInputError(_describe(e)) from e

        session_id = self._sessions.current_state.session_id
        try:
            existing = await self._store.query_budgets([user_id])
            if existing:
                fields: dict[str, Any] = {"amount": draft.amount, "period": draft.period}
                if category_limits is not None:
                    fields["category_limits"] = draft.category_limits
                budget = await self._store.update_budget(existing[0].id, fields)
                created = False
            else:
                budget = await self._store.insert_budget(draft)
                created = True
        except StorageError as e:
            await self._audit.log(
                AuditEventBuilder.write_failed(
                    "set_budget", "budget", None, str(e), account.id, rolled_back=False
                )
            )
            raise WriteFailedError(f"Failed to set budget: {e}") from e

        await self._audit.log(
            AuditEventBuilder.budget_set(
                budget.id,
                user_id,
                str(budget.amount),
                budget.period.value,
                created,
                account.id,
            )
        )
        if self._is_current(session_id):
            self._budgets = [b for b in self._budgets if b.user_id != user_id]
            self._budgets.append(budget)
        return budget

    # ------------------------------------------------------------------
    # Cache queries
    # ------------------------------------------------------------------

    def get_user_expenses(self, user_id: str) -> list[Expense]:
        """Cached expenses of one account, newest first. No store access."""
        return [e for e in self._expenses if e.user_id == user_id]

    def get_user_budget(self, user_id: str) -> Optional[Budget]:
        """Cached budget of one account, or None. No store access."""
        for budget in self._budgets:
            if budget.user_id == user_id:
                return budget
        return None

    def get_categories(self) -> list[str]:
        return list(EXPENSE_CATEGORIES)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_to_csv(
        self,
        user_id: str,
        expenses: Optional[Iterable[Expense]] = None,
    ) -> str:
        """
        CSV of user_id's cached expenses, or of an already filtered view.

        Raises:
            InvalidInputError: nothing to export
        """
        rows = list(expenses) if expenses is not None else self.get_user_expenses(user_id)
        if not rows:
            raise InvalidInputError("No expenses to export")
        return expenses_to_csv(rows, date_format=get_settings().app.csv_date_format)

    def export_to_pdf(self, user_id: str) -> bytes:
        # TODO: render with reportlab once a report layout is agreed.
        raise NotImplementedError("PDF export is not available")
