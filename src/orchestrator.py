"""
Application wiring for the Family Expense Tracker core.

Builds the Session Manager and the Expense/Budget Sync Core over one
set of stores and one audit logger, and links the sync core to the
session so a change of account clears its cached records.

DESIGN DECISION: Storage is chosen once, at startup.
- Google Sheets when it is configured and reachable
- otherwise in-memory stores (local mode), with a warning

Callers never see which backend is in use; both satisfy the same
storage interfaces.
"""

from typing import Optional

import structlog

from src.audit import AuditLogger
from src.config import validate_all_settings
from src.services.storage import (
    AuditStorageInterface,
    ExpenseStoreInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsExpenseStore,
    GoogleSheetsIdentityStore,
    IdentityStoreInterface,
    InMemoryAuditStorage,
    InMemoryExpenseStore,
    InMemoryIdentityStore,
)
from src.session import SessionManager
from src.sync import ExpenseSyncCore


logger = structlog.get_logger("orchestrator")


def _local_stores() -> tuple[IdentityStoreInterface, ExpenseStoreInterface, AuditStorageInterface]:
    return InMemoryIdentityStore(), InMemoryExpenseStore(), InMemoryAuditStorage()


def _sheets_stores() -> tuple[IdentityStoreInterface, ExpenseStoreInterface, AuditStorageInterface]:
    client = GoogleSheetsClient()
    client.connect()
    return (
        GoogleSheetsIdentityStore(client),
        GoogleSheetsExpenseStore(client),
        GoogleSheetsAuditStorage(client),
    )


def create_app_components(
    use_storage: bool = True,
    identity_store: Optional[IdentityStoreInterface] = None,
    expense_store: Optional[ExpenseStoreInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
) -> tuple[SessionManager, ExpenseSyncCore, AuditLogger]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to use Google Sheets storage.
                    Set to False for local mode and tests.
        identity_store, expense_store, audit_storage:
                    Explicit stores; any given here replace the default.

    Returns:
        (session_manager, sync_core, audit_logger)
    """
    defaults = None
    if use_storage:
        status = validate_all_settings()
        if not status["google_sheets"]:
            logger.warning(
                "storage_not_configured",
                error=status.get("google_sheets_error"),
                fallback="memory",
            )
        else:
            try:
                defaults = _sheets_stores()
            except Exception as e:
                # Configured but unreachable - continue in local mode
                logger.warning("storage_unavailable", error=str(e), fallback="memory")
    if defaults is None:
        defaults = _local_stores()

    identity_store = identity_store or defaults[0]
    expense_store = expense_store or defaults[1]
    audit_storage = audit_storage or defaults[2]

    audit_logger = AuditLogger(audit_storage)
    session_manager = SessionManager(identity_store, audit_logger)
    sync_core = ExpenseSyncCore(session_manager, expense_store, audit_logger)

    return session_manager, sync_core, audit_logger
