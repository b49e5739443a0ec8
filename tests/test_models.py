"""
Tests for Family Expense Tracker models

Test strategy:
1. Unit tests for individual components (models, credentials)
2. Flow tests for session and sync core (in-memory stores)
3. No real API calls in tests
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from src.config import SyncSettings, validate_all_settings
from src.models.account import Account, AccountUpdate, NewAccount, UserRole
from src.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from src.models.expense import (
    EXPENSE_CATEGORIES,
    BudgetDraft,
    BudgetPeriod,
    Expense,
    ExpenseCategory,
    ExpenseDraft,
    ExpenseUpdate,
)
from src.services.storage import InMemoryExpenseStore, StorageError
from src.services.storage.credentials import LoginThrottle, hash_password, verify_password


class TestAccountModels:
    """Tests for account Pydantic models."""

    def test_email_is_normalized(self):
        account = NewAccount(name="Pat", email="  Pat@Example.COM ", role=UserRole.PARENT)
        assert account.email == "pat@example.com"

    def test_email_needs_domain(self):
        with pytest.raises(ValueError):
            NewAccount(name="Pat", email="pat@localhost", role=UserRole.PARENT)

    def test_child_needs_parent(self):
        with pytest.raises(ValueError, match="must reference a parent"):
            NewAccount(name="Kid", email="kid@example.com", role=UserRole.CHILD)

    def test_parent_cannot_have_parent(self):
        with pytest.raises(ValueError, match="cannot have a parent"):
            NewAccount(
                name="Pat", email="pat@example.com", role=UserRole.PARENT, parent_id="p1"
            )

    def test_child_cannot_have_children(self):
        with pytest.raises(ValueError, match="cannot have children"):
            Account(
                id="c1",
                name="Kid",
                email="kid@example.com",
                role=UserRole.CHILD,
                parent_id="p1",
                children=["c2"],
            )

    def test_children_deduplicated_in_order(self):
        parent = Account(
            id="p1",
            name="Pat",
            email="pat@example.com",
            role=UserRole.PARENT,
            children=["c2", "c1", "c2"],
        )
        assert parent.children == ["c2", "c1"]

    def test_visible_user_ids(self):
        parent = Account(
            id="p1", name="Pat", email="pat@example.com",
            role=UserRole.PARENT, children=["c1", "c2"],
        )
        child = Account(
            id="c1", name="Kid", email="kid@example.com",
            role=UserRole.CHILD, parent_id="p1",
        )
        assert parent.visible_user_ids() == ["p1", "c1", "c2"]
        assert child.visible_user_ids() == ["c1"]
        assert not child.can_see("c2")

    def test_account_update_only_profile_fields(self):
        assert AccountUpdate(name="New").changes() == {"name": "New"}
        with pytest.raises(ValueError):
            AccountUpdate(email="new@example.com")


class TestExpenseModels:
    """Tests for expense and budget models."""

    def test_categories_in_order(self):
        assert EXPENSE_CATEGORIES == (
            "Food", "Transportation", "Entertainment", "Shopping",
            "Utilities", "Education", "Health", "Other",
        )

    def test_draft_creation(self):
        draft = ExpenseDraft(
            user_id="u1",
            amount="25.50",
            category="Food",
            description=" Lunch ",
            date=date(2024, 3, 1),
        )
        assert draft.amount == Decimal("25.50")
        assert draft.category == ExpenseCategory.FOOD
        assert draft.description == "Lunch"

    @pytest.mark.parametrize("amount", ["0", "-5", "1.005"])
    def test_draft_rejects_bad_amount(self, amount):
        with pytest.raises(ValueError):
            ExpenseDraft(
                user_id="u1",
                amount=amount,
                category="Food",
                description="Lunch",
                date=date(2024, 3, 1),
            )

    def test_float_amounts_rounded_to_cent(self):
        draft = ExpenseDraft(
            user_id="u1", amount=19.999, category="Food", description="x", date=date(2024, 3, 1)
        )
        assert draft.amount == Decimal("20.00")
        assert ExpenseUpdate(amount=0.1 + 0.2).amount == Decimal("0.30")
        assert BudgetDraft(user_id="u1", amount=99.5).amount == Decimal("99.50")

    def test_pending_is_not_serialized(self):
        expense = Expense(
            id="e1",
            user_id="u1",
            amount=Decimal("1.00"),
            category=ExpenseCategory.OTHER,
            description="x",
            date=date(2024, 3, 1),
            pending=True,
        )
        assert "pending" not in expense.model_dump()

    def test_update_rejects_clearing_a_field(self):
        with pytest.raises(ValueError, match="cannot be cleared"):
            ExpenseUpdate(description=None)

    def test_update_rejects_owner_change(self):
        with pytest.raises(ValueError):
            ExpenseUpdate(user_id="someone-else")

    def test_budget_defaults_to_monthly(self):
        budget = BudgetDraft(user_id="u1", amount="100")
        assert budget.period == BudgetPeriod.MONTHLY
        assert budget.category_limits is None

    def test_budget_category_limits_must_be_positive(self):
        with pytest.raises(ValueError, match="must be positive"):
            BudgetDraft(user_id="u1", amount="100", category_limits={"Food": "0"})


class TestAuditModels:
    """Tests for audit event models."""

    def test_audit_event_creation(self):
        event = AuditEvent(
            event_type=AuditEventType.EXPENSE_ADDED,
            description="Expense added",
        )
        assert event.event_type == AuditEventType.EXPENSE_ADDED
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None

    def test_audit_event_to_sheets_row(self):
        event = AuditEvent(
            event_type=AuditEventType.BUDGET_SET,
            description="Budget created",
            entity_type="budget",
            entity_id="b1",
            details={"amount": "100.00"},
        )
        row = event.to_sheets_row()
        assert len(row) == 13
        assert row[2] == "budget_set"
        assert row[5] == "b1"
        assert row[9] == '{"amount": "100.00"}'
        assert row[12] == "False"

    def test_builder_expense_added(self):
        correlation_id = uuid4()
        event = AuditEventBuilder.expense_added(
            expense_id="e1",
            owner_id="c1",
            amount="25.50",
            category="Food",
            actor_id="p1",
            correlation_id=correlation_id,
        )
        assert event.event_type == AuditEventType.EXPENSE_ADDED
        assert event.entity_id == "e1"
        assert event.actor_id == "p1"
        assert event.correlation_id == correlation_id
        assert event.details["owner_id"] == "c1"

    def test_builder_fetch_failed_is_an_error(self):
        event = AuditEventBuilder.fetch_failed("expenses", 3, "timeout", "p1")
        assert event.severity == AuditSeverity.ERROR
        assert event.details["attempts"] == 3


class TestCredentials:
    """Password hashing and sign-in throttling."""

    def test_hash_round_trip(self):
        encoded = hash_password("secret1", iterations=1000)
        assert encoded.startswith("pbkdf2:sha256:1000$")
        assert verify_password("secret1", encoded)
        assert not verify_password("secret2", encoded)

    def test_malformed_hash(self):
        assert not verify_password("secret1", "plaintext")
        assert not verify_password("secret1", "rot13$salt$digest")

    def test_throttle_locks_and_expires(self):
        now = [0.0]
        throttle = LoginThrottle(max_failures=2, lockout_seconds=60, clock=lambda: now[0])
        throttle.record_failure("a@example.com")
        assert not throttle.is_locked("a@example.com")
        throttle.record_failure("a@example.com")
        assert throttle.is_locked("a@example.com")
        now[0] = 61.0
        assert not throttle.is_locked("a@example.com")


class TestInMemoryStore:
    """Behavior the sync core relies on."""

    @pytest.mark.asyncio
    async def test_in_query_limited_to_ten_ids(self):
        store = InMemoryExpenseStore()
        with pytest.raises(StorageError):
            await store.query_expenses([f"u{i}" for i in range(11)])

    @pytest.mark.asyncio
    async def test_delete_missing_is_not_an_error(self):
        store = InMemoryExpenseStore()
        assert await store.delete_expense("missing") is False


class TestSettings:
    """Configuration defaults and the startup check."""

    def test_sync_defaults(self, monkeypatch):
        monkeypatch.delenv("SYNC_FETCH_RETRY_DELAY_SECONDS", raising=False)
        sync = SyncSettings()
        assert sync.fetch_max_attempts == 3
        assert sync.fetch_retry_delay_seconds == 1.0
        assert sync.fetch_cooldown_seconds == 3.0
        assert sync.user_id_batch_size == 10

    def test_batch_size_cannot_exceed_store_limit(self, monkeypatch):
        monkeypatch.setenv("SYNC_USER_ID_BATCH_SIZE", "11")
        with pytest.raises(ValueError):
            SyncSettings()

    def test_validate_all_settings(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)

        results = validate_all_settings()

        assert results["sync"] is True
        assert results["auth"] is True
        assert results["google_sheets"] is False
        assert "google_sheets_error" in results
