"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the hosted backend because:
1. Parents can view the family ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for one family)
- No transactions (append_child serializes per parent inside the process;
  SessionManager.reconcile_children heals races between processes)
- Limited query capabilities (we filter in Python, but still honor the
  10-id 'in' limit so behavior matches the document store)

The implementation follows the abstract interfaces, so the sync core
does not know which backend it talks to.
"""

import asyncio
import json
from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID, uuid4

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from src.config import get_settings
from src.models.account import Account, NewAccount, UserRole, normalize_email
from src.models.audit import AuditEvent, AuditEventType, AuditSeverity
from src.models.expense import (
    Budget,
    BudgetDraft,
    BudgetPeriod,
    Expense,
    ExpenseCategory,
    ExpenseDraft,
)
from src.services.storage.credentials import LoginThrottle, hash_password, verify_password
from src.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    ExpenseStoreInterface,
    IdentityProviderError,
    IdentityStoreInterface,
    RecordNotFoundError,
    StorageError,
    check_in_query,
)


USER_COLUMNS = [
    "id",
    "name",
    "email",
    "role",
    "avatar",
    "parent_id",
    "children_json",
    "password_hash",
    "created_at",
]

EXPENSE_COLUMNS = [
    "id",
    "user_id",
    "amount",
    "category",
    "description",
    "date",
    "created_at",
    "updated_at",
]

BUDGET_COLUMNS = [
    "id",
    "user_id",
    "amount",
    "period",
    "category_limits_json",
    "created_at",
    "updated_at",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "actor_id",
    "correlation_id",
    "description",
    "details_json",
    "error_code",
    "error_message",
    "is_user_action",
]


def _safe_getter(row: list):
    """Return a column accessor that tolerates short rows."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for connecting.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
        return sheet

    def get_users_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(self._settings.users_sheet_name, USER_COLUMNS, 200)

    def get_expenses_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(self._settings.expenses_sheet_name, EXPENSE_COLUMNS, 2000)

    def get_budgets_sheet(self) -> gspread.Worksheet:
        return self._get_or_create(self._settings.budgets_sheet_name, BUDGET_COLUMNS, 200)

    def get_audit_sheet(self) -> gspread.Worksheet:
        # More rows for audit log
        return self._get_or_create(self._settings.audit_sheet_name, AUDIT_COLUMNS, 5000)


def _find_row(sheet: gspread.Worksheet, record_id: str) -> tuple[int, Optional[list]]:
    """Locate a record by its id column. Returns (1-based row index, row)."""
    all_rows = sheet.get_all_values()
    for idx, row in enumerate(all_rows[1:], start=2):  # Row 1 is the header
        if row and row[0] == record_id:
            return idx, row
    return -1, None


def _write_row(sheet: gspread.Worksheet, idx: int, row: list) -> None:
    for col_idx, value in enumerate(row, start=1):
        sheet.update_cell(idx, col_idx, value)


class GoogleSheetsIdentityStore(IdentityStoreInterface):
    """
    Account directory stored in the Users worksheet.

    The password hash column is never returned in an Account.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        throttle: Optional[LoginThrottle] = None,
    ):
        self._client = client or GoogleSheetsClient()
        self._throttle = throttle or LoginThrottle()
        self._parent_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._create_lock = asyncio.Lock()

    def _account_to_row(self, account: Account, password_hash: str) -> list:
        return [
            account.id,
            account.name,
            account.email,
            account.role.value,
            account.avatar or "",
            account.parent_id or "",
            json.dumps(account.children),
            password_hash,
            account.created_at.isoformat(),
        ]

    def _row_to_account(self, row: list) -> Account:
        safe_get = _safe_getter(row)
        return Account(
            id=safe_get(0),
            name=safe_get(1),
            email=safe_get(2),
            role=UserRole(safe_get(3)),
            avatar=safe_get(4) or None,
            parent_id=safe_get(5) or None,
            children=json.loads(safe_get(6, "[]")),
            created_at=datetime.fromisoformat(safe_get(8)),
        )

    def _all_rows(self) -> list[list]:
        try:
            return self._client.get_users_sheet().get_all_values()[1:]
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read accounts: {e}")

    async def authenticate(self, email: str, password: str) -> str:
        email = normalize_email(email)
        if "@" not in email:
            raise IdentityProviderError("invalid-email")
        if self._throttle.is_locked(email):
            raise IdentityProviderError("too-many-requests")

        for row in self._all_rows():
            if len(row) > 2 and row[2] == email:
                if verify_password(password, _safe_getter(row)(7)):
                    self._throttle.reset(email)
                    return row[0]
                self._throttle.record_failure(email)
                raise IdentityProviderError("wrong-password")

        self._throttle.record_failure(email)
        raise IdentityProviderError("user-not-found")

    async def create_account(self, account: NewAccount, password: str) -> Account:
        async with self._create_lock:
            if any(len(row) > 2 and row[2] == account.email for row in self._all_rows()):
                raise IdentityProviderError("email-already-in-use")
            record = Account(**account.model_dump(), id=uuid4().hex)
            try:
                sheet = self._client.get_users_sheet()
                sheet.append_row(
                    self._account_to_row(record, hash_password(password)),
                    value_input_option="RAW",
                )
            except Exception as e:
                raise StorageError(f"Failed to create account: {e}")
        return record

    async def get_account(self, account_id: str) -> Optional[Account]:
        for row in self._all_rows():
            if row and row[0] == account_id:
                try:
                    return self._row_to_account(row)
                except Exception as e:
                    raise StorageError(f"Malformed account row {account_id}: {e}")
        return None

    async def update_account(self, account_id: str, fields: dict) -> None:
        try:
            sheet = self._client.get_users_sheet()
            idx, row = _find_row(sheet, account_id)
            if row is None:
                raise RecordNotFoundError(f"Account not found: {account_id}")
            account = self._row_to_account(row)
            updated = Account.model_validate({**account.model_dump(), **fields})
            _write_row(sheet, idx, self._account_to_row(updated, _safe_getter(row)(7)))
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update account: {e}")

    async def query_accounts(
        self,
        account_id: Optional[str] = None,
        email: Optional[str] = None,
        parent_id: Optional[str] = None,
        role: Optional[UserRole] = None,
    ) -> list[Account]:
        accounts = []
        for row in self._all_rows():
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                account = self._row_to_account(row)
            except Exception:
                continue  # Skip malformed rows
            if account_id is not None and account.id != account_id:
                continue
            if email is not None and account.email != normalize_email(email):
                continue
            if parent_id is not None and account.parent_id != parent_id:
                continue
            if role is not None and account.role != role:
                continue
            accounts.append(account)
        accounts.sort(key=lambda a: a.created_at)
        return accounts

    async def append_child(self, parent_id: str, child_id: str) -> list[str]:
        async with self._parent_locks[parent_id]:
            parent = await self.get_account(parent_id)
            if parent is None:
                raise RecordNotFoundError(f"Parent account not found: {parent_id}")
            if child_id in parent.children:
                return list(parent.children)
            children = [*parent.children, child_id]
            await self.update_account(parent_id, {"children": children})
            return children

    async def sign_out(self) -> None:
        # Service-account access has no per-user session to end.
        return None


class GoogleSheetsExpenseStore(ExpenseStoreInterface):
    """
    Expenses and budgets stored one record per row.

    category_limits is JSON-serialized.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _expense_to_row(self, expense: Expense) -> list:
        return [
            expense.id,
            expense.user_id,
            str(expense.amount),
            expense.category.value,
            expense.description,
            expense.date.isoformat(),
            expense.created_at.isoformat(),
            expense.updated_at.isoformat(),
        ]

    def _row_to_expense(self, row: list) -> Expense:
        safe_get = _safe_getter(row)
        return Expense(
            id=safe_get(0),
            user_id=safe_get(1),
            amount=Decimal(safe_get(2)),
            category=ExpenseCategory(safe_get(3)),
            description=safe_get(4),
            date=date.fromisoformat(safe_get(5)),
            created_at=datetime.fromisoformat(safe_get(6)),
            updated_at=datetime.fromisoformat(safe_get(7)),
        )

    def _budget_to_row(self, budget: Budget) -> list:
        limits = (
            {k.value: str(v) for k, v in budget.category_limits.items()}
            if budget.category_limits is not None
            else None
        )
        return [
            budget.id,
            budget.user_id,
            str(budget.amount),
            budget.period.value,
            json.dumps(limits) if limits is not None else "",
            budget.created_at.isoformat(),
            budget.updated_at.isoformat(),
        ]

    def _row_to_budget(self, row: list) -> Budget:
        safe_get = _safe_getter(row)
        limits_json = safe_get(4)
        return Budget(
            id=safe_get(0),
            user_id=safe_get(1),
            amount=Decimal(safe_get(2)),
            period=BudgetPeriod(safe_get(3)),
            category_limits=(
                {ExpenseCategory(k): Decimal(v) for k, v in json.loads(limits_json).items()}
                if limits_json
                else None
            ),
            created_at=datetime.fromisoformat(safe_get(5)),
            updated_at=datetime.fromisoformat(safe_get(6)),
        )

    async def query_expenses(
        self,
        user_ids: Iterable[str],
        limit: int = 100,
    ) -> list[Expense]:
        ids = set(check_in_query(user_ids))
        try:
            sheet = self._client.get_expenses_sheet()
            all_rows = sheet.get_all_values()[1:]  # Skip header
        except Exception as e:
            raise StorageError(f"Failed to list expenses: {e}")

        expenses = []
        for row in all_rows:
            if not row or not row[0] or len(row) < 2 or row[1] not in ids:
                continue
            try:
                expenses.append(self._row_to_expense(row))
            except Exception:
                continue  # Skip malformed rows

        # Newest first
        expenses.sort(key=lambda e: (e.date, e.created_at), reverse=True)
        return expenses[:limit]

    async def insert_expense(self, draft: ExpenseDraft) -> Expense:
        now = datetime.utcnow()
        expense = Expense(**draft.model_dump(), id=uuid4().hex, created_at=now, updated_at=now)
        try:
            sheet = self._client.get_expenses_sheet()
            sheet.append_row(self._expense_to_row(expense), value_input_option="RAW")
        except Exception as e:
            raise StorageError(f"Failed to save expense: {e}")
        return expense

    async def update_expense(self, expense_id: str, fields: dict) -> Expense:
        try:
            sheet = self._client.get_expenses_sheet()
            idx, row = _find_row(sheet, expense_id)
            if row is None:
                raise RecordNotFoundError(f"Expense not found: {expense_id}")
            existing = self._row_to_expense(row)
            updated = Expense.model_validate(
                {**existing.model_dump(), **fields, "updated_at": datetime.utcnow()}
            )
            _write_row(sheet, idx, self._expense_to_row(updated))
            return updated
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update expense: {e}")

    async def delete_expense(self, expense_id: str) -> bool:
        try:
            sheet = self._client.get_expenses_sheet()
            idx, row = _find_row(sheet, expense_id)
            if row is None:
                return False
            sheet.delete_rows(idx)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete expense: {e}")

    async def query_budgets(self, user_ids: Iterable[str]) -> list[Budget]:
        ids = set(check_in_query(user_ids))
        try:
            sheet = self._client.get_budgets_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list budgets: {e}")
        budgets = []
        for row in all_rows:
            if not row or not row[0] or len(row) < 2 or row[1] not in ids:
                continue
            try:
                budgets.append(self._row_to_budget(row))
            except Exception:
                continue  # Skip malformed rows
        return budgets

    async def insert_budget(self, draft: BudgetDraft) -> Budget:
        now = datetime.utcnow()
        budget = Budget(**draft.model_dump(), id=uuid4().hex, created_at=now, updated_at=now)
        try:
            sheet = self._client.get_budgets_sheet()
            sheet.append_row(self._budget_to_row(budget), value_input_option="RAW")
        except Exception as e:
            raise StorageError(f"Failed to save budget: {e}")
        return budget

    async def update_budget(self, budget_id: str, fields: dict) -> Budget:
        try:
            sheet = self._client.get_budgets_sheet()
            idx, row = _find_row(sheet, budget_id)
            if row is None:
                raise RecordNotFoundError(f"Budget not found: {budget_id}")
            existing = self._row_to_budget(row)
            updated = Budget.model_validate(
                {**existing.model_dump(), **fields, "updated_at": datetime.utcnow()}
            )
            _write_row(sheet, idx, self._budget_to_row(updated))
            return updated
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update budget: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        safe_get = _safe_getter(row)
        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            actor_id=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_code=safe_get(10) or None,
            error_message=safe_get(11) or None,
            is_user_action=safe_get(12).lower() == "true",
        )

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    def _all_events(self) -> list[AuditEvent]:
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except Exception:
                continue  # Skip malformed rows
        return events

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        events = [e for e in self._all_events() if e.correlation_id == correlation_id]
        # Sort chronologically
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        events = self._all_events()
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
