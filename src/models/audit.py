"""
Audit Models for the Family Expense Tracker

Every significant action in the core is logged for audit purposes.
This provides:
1. Traceability of who changed which expense or budget
2. Debugging information when the remote store misbehaves
3. A place for errors the core swallows (logout transport failures)

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Session
    LOGIN_SUCCEEDED = "login_succeeded"
    LOGIN_FAILED = "login_failed"
    ACCOUNT_REGISTERED = "account_registered"
    REGISTRATION_FAILED = "registration_failed"
    CHILD_LINKED = "child_linked"
    CHILDREN_RECONCILED = "children_reconciled"
    SESSION_RESTORED = "session_restored"
    LOGOUT = "logout"
    LOGOUT_FAILED = "logout_failed"
    PROFILE_UPDATED = "profile_updated"

    # Fetch lifecycle
    FETCH_COMPLETED = "fetch_completed"
    FETCH_RETRIED = "fetch_retried"
    FETCH_FAILED = "fetch_failed"
    FETCH_THROTTLED = "fetch_throttled"
    FETCH_DISCARDED = "fetch_discarded"

    # Writes
    EXPENSE_ADDED = "expense_added"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"
    BUDGET_SET = "budget_set"
    WRITE_FAILED = "write_failed"

    # Authorization
    ACCESS_DENIED = "access_denied"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'expense', 'budget')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    actor_id: Optional[str] = Field(
        default=None,
        description="Account that triggered the event"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., a write and its reconciling fetch)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         actor_id, correlation_id, description, details_json, error_code,
         error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            self.actor_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_code or "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.login_succeeded(account_id)
        event = AuditEventBuilder.fetch_failed("expenses", attempts, error, actor_id)
    """

    @staticmethod
    def login_succeeded(account_id: str, role: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOGIN_SUCCEEDED,
            entity_type="account",
            entity_id=account_id,
            actor_id=account_id,
            description=f"Signed in as {role}",
            details={"role": role},
            is_user_action=True,
        )

    @staticmethod
    def login_failed(email: str, error_code: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOGIN_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            description="Sign-in rejected",
            details={"email": email},
            error_code=error_code,
            is_user_action=True,
        )

    @staticmethod
    def account_registered(
        account_id: str,
        role: str,
        parent_id: Optional[str],
        actor_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_REGISTERED,
            entity_type="account",
            entity_id=account_id,
            actor_id=actor_id or account_id,
            description=f"Registered {role} account",
            details={"role": role, "parent_id": parent_id},
            is_user_action=True,
        )

    @staticmethod
    def registration_failed(email: str, error_code: str, message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.REGISTRATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            description="Registration rejected",
            details={"email": email},
            error_code=error_code,
            error_message=message,
            is_user_action=True,
        )

    @staticmethod
    def child_linked(parent_id: str, child_id: str, children: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CHILD_LINKED,
            entity_type="account",
            entity_id=parent_id,
            description="Child account linked to parent",
            details={"child_id": child_id, "children_count": len(children)},
        )

    @staticmethod
    def children_reconciled(parent_id: str, added: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CHILDREN_RECONCILED,
            severity=AuditSeverity.WARNING if added else AuditSeverity.INFO,
            entity_type="account",
            entity_id=parent_id,
            description=f"Parent children list reconciled ({len(added)} missing link(s) restored)",
            details={"added": added},
        )

    @staticmethod
    def session_restored(account_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_RESTORED,
            entity_type="account",
            entity_id=account_id,
            actor_id=account_id,
            description="Session restored",
        )

    @staticmethod
    def logout(account_id: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOGOUT,
            entity_type="account",
            entity_id=account_id,
            actor_id=account_id,
            description="Signed out",
            is_user_action=True,
        )

    @staticmethod
    def logout_failed(account_id: Optional[str], error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOGOUT_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            entity_id=account_id,
            actor_id=account_id,
            description="Identity provider sign-out failed; local session cleared anyway",
            error_message=error_message,
        )

    @staticmethod
    def profile_updated(account_id: str, fields: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROFILE_UPDATED,
            entity_type="account",
            entity_id=account_id,
            actor_id=account_id,
            description="Profile updated",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def fetch_completed(
        collection: str,
        record_count: int,
        batch_count: int,
        actor_id: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FETCH_COMPLETED,
            severity=AuditSeverity.DEBUG,
            entity_type=collection,
            actor_id=actor_id,
            description=f"Fetched {record_count} {collection} in {batch_count} batch(es)",
            details={"record_count": record_count, "batch_count": batch_count},
        )

    @staticmethod
    def fetch_retried(
        collection: str,
        attempt: int,
        error_message: str,
        actor_id: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FETCH_RETRIED,
            severity=AuditSeverity.WARNING,
            entity_type=collection,
            actor_id=actor_id,
            description=f"Fetch of {collection} failed on attempt {attempt}, retrying",
            details={"attempt": attempt},
            error_message=error_message,
        )

    @staticmethod
    def fetch_failed(
        collection: str,
        attempts: int,
        error_message: str,
        actor_id: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FETCH_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type=collection,
            actor_id=actor_id,
            description=f"Fetch of {collection} failed after {attempts} attempt(s); cache cleared",
            details={"attempts": attempts},
            error_message=error_message,
        )

    @staticmethod
    def fetch_throttled(collection: str, actor_id: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FETCH_THROTTLED,
            severity=AuditSeverity.DEBUG,
            entity_type=collection,
            actor_id=actor_id,
            description=f"Fetch of {collection} skipped (cooldown)",
        )

    @staticmethod
    def fetch_discarded(collection: str, actor_id: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FETCH_DISCARDED,
            severity=AuditSeverity.DEBUG,
            entity_type=collection,
            actor_id=actor_id,
            description=f"Result of {collection} fetch discarded: session changed while in flight",
        )

    @staticmethod
    def expense_added(
        expense_id: str,
        owner_id: str,
        amount: str,
        category: str,
        actor_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_ADDED,
            entity_type="expense",
            entity_id=expense_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Expense added: {category} {amount}",
            details={"owner_id": owner_id, "amount": amount, "category": category},
            is_user_action=True,
        )

    @staticmethod
    def expense_updated(
        expense_id: str,
        fields: list[str],
        actor_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_UPDATED,
            entity_type="expense",
            entity_id=expense_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description="Expense updated",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def expense_deleted(expense_id: str, actor_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            entity_type="expense",
            entity_id=expense_id,
            actor_id=actor_id,
            description="Expense deleted",
            is_user_action=True,
        )

    @staticmethod
    def budget_set(
        budget_id: str,
        user_id: str,
        amount: str,
        period: str,
        created: bool,
        actor_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_SET,
            entity_type="budget",
            entity_id=budget_id,
            actor_id=actor_id,
            description=f"Budget {'created' if created else 'updated'}: {amount} {period}",
            details={"user_id": user_id, "amount": amount, "period": period, "created": created},
            is_user_action=True,
        )

    @staticmethod
    def write_failed(
        operation: str,
        entity_type: str,
        entity_id: Optional[str],
        error_message: str,
        actor_id: Optional[str],
        correlation_id: Optional[UUID] = None,
        rolled_back: bool = True,
    ) -> AuditEvent:
        outcome = "local change rolled back" if rolled_back else "nothing applied locally"
        return AuditEvent(
            event_type=AuditEventType.WRITE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"{operation} rejected by store; {outcome}",
            details={"operation": operation, "rolled_back": rolled_back},
            error_message=error_message,
        )

    @staticmethod
    def access_denied(
        operation: str,
        target_user_id: str,
        actor_id: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCESS_DENIED,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            entity_id=target_user_id,
            actor_id=actor_id,
            description=f"{operation} denied for account outside caller's scope",
            details={"operation": operation},
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
