"""
Tests for application wiring (local mode).
"""

from datetime import date

import pytest

from src.orchestrator import create_app_components
from src.services.storage import InMemoryAuditStorage
from src.session import SessionManager
from src.sync import ExpenseSyncCore


class TestCreateAppComponents:
    """Factory wiring without Google Sheets."""

    def test_local_components(self):
        sessions, core, audit_logger = create_app_components(use_storage=False)
        assert isinstance(sessions, SessionManager)
        assert isinstance(core, ExpenseSyncCore)
        assert core.expenses == ()

    @pytest.mark.asyncio
    async def test_end_to_end_family_flow(self):
        audit_storage = InMemoryAuditStorage()
        sessions, core, _ = create_app_components(
            use_storage=False, audit_storage=audit_storage
        )

        parent = await sessions.register("Pat", "pat@example.com", "secret1", "parent")
        kid = await sessions.register(
            "Kid", "kid@example.com", "secret1", "child", parent_id=parent.id
        )
        await core.add_expense(kid.id, "12.00", "Food", "Lunch", date(2024, 3, 1))
        await core.set_budget(kid.id, "50.00")

        await sessions.logout()
        assert core.expenses == ()

        await sessions.login("kid@example.com", "secret1")
        expenses = await core.fetch_expenses()
        budgets = await core.fetch_budgets()

        assert [e.description for e in expenses] == ["Lunch"]
        assert [b.user_id for b in budgets] == [kid.id]
        assert audit_storage.events

    def test_unconfigured_sheets_falls_back_to_memory(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)

        sessions, core, _ = create_app_components(use_storage=True)

        assert isinstance(sessions, SessionManager)
        assert core.expenses == ()
