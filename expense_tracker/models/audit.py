"""
Audit Models for Expense Tracker

Every significant authentication and ledger action is recorded as an
AuditEvent. Events go to the structured log and, when configured, to
audit storage.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
Events never carry plaintext passcodes, passwords or tokens.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from expense_tracker.models.account import utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Accounts
    ACCOUNT_CREATED = "account_created"
    FEDERATED_IDENTITY_LINKED = "federated_identity_linked"
    PASSWORD_SET = "password_set"

    # Passcodes
    PASSCODE_ISSUED = "passcode_issued"
    PASSCODE_VERIFIED = "passcode_verified"
    PASSCODE_REJECTED = "passcode_rejected"
    PASSCODE_BURNED = "passcode_burned"
    NOTIFICATION_FAILED = "notification_failed"

    # Logins
    LOGIN_SUCCEEDED = "login_succeeded"
    LOGIN_FAILED = "login_failed"

    # Ledger
    EXPENSE_CREATED = "expense_created"
    EXPENSE_REPLAYED = "expense_replayed"
    EXPENSE_DELETED = "expense_deleted"

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
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'passcode', 'expense')"
    )
    entity_id: Optional[UUID] = None
    account_id: Optional[UUID] = Field(
        default=None,
        description="Account the event belongs to, when known"
    )

    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "account_id": str(self.account_id) if self.account_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.passcode_issued(record_id, account_id, "signup")
        event = AuditEventBuilder.expense_created(expense_id, account_id, "12.50")
    """

    @staticmethod
    def account_created(account_id: UUID, via: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id=account_id,
            account_id=account_id,
            description=f"Account created via {via}",
            details={"via": via},
            is_user_action=True,
        )

    @staticmethod
    def federated_identity_linked(account_id: UUID, provider: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FEDERATED_IDENTITY_LINKED,
            entity_type="account",
            entity_id=account_id,
            account_id=account_id,
            description=f"{provider} identity linked to existing account",
            details={"provider": provider},
        )

    @staticmethod
    def password_set(account_id: UUID, intent: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PASSWORD_SET,
            entity_type="account",
            entity_id=account_id,
            account_id=account_id,
            description=f"Password set after {intent} verification",
            details={"intent": intent},
            is_user_action=True,
        )

    @staticmethod
    def passcode_issued(
        record_id: UUID,
        account_id: UUID,
        intent: str,
        expires_at: datetime,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PASSCODE_ISSUED,
            entity_type="passcode",
            entity_id=record_id,
            account_id=account_id,
            description=f"Passcode issued for {intent}",
            details={
                "intent": intent,
                "expires_at": expires_at.isoformat(),
            },
        )

    @staticmethod
    def passcode_verified(record_id: UUID, account_id: UUID, intent: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PASSCODE_VERIFIED,
            entity_type="passcode",
            entity_id=record_id,
            account_id=account_id,
            description=f"Passcode verified for {intent}",
            details={"intent": intent},
            is_user_action=True,
        )

    @staticmethod
    def passcode_rejected(
        record_id: UUID,
        account_id: UUID,
        intent: str,
        attempts: int,
        max_attempts: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PASSCODE_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="passcode",
            entity_id=record_id,
            account_id=account_id,
            description=f"Wrong passcode for {intent} ({attempts}/{max_attempts})",
            details={
                "intent": intent,
                "attempts": attempts,
                "max_attempts": max_attempts,
            },
            is_user_action=True,
        )

    @staticmethod
    def passcode_burned(record_id: UUID, account_id: UUID, intent: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PASSCODE_BURNED,
            severity=AuditSeverity.WARNING,
            entity_type="passcode",
            entity_id=record_id,
            account_id=account_id,
            description=f"Passcode for {intent} burned after too many attempts",
            details={"intent": intent},
        )

    @staticmethod
    def notification_failed(
        account_id: UUID,
        intent: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="account",
            entity_id=account_id,
            account_id=account_id,
            description=f"Passcode notification for {intent} was not delivered",
            details={"intent": intent},
            error_message=error_message,
        )

    @staticmethod
    def login_succeeded(account_id: UUID, method: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOGIN_SUCCEEDED,
            entity_type="account",
            entity_id=account_id,
            account_id=account_id,
            description=f"Login succeeded ({method})",
            details={"method": method},
            is_user_action=True,
        )

    @staticmethod
    def login_failed(
        method: str,
        reason: str,
        account_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOGIN_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="account",
            entity_id=account_id,
            account_id=account_id,
            description=f"Login failed ({method}): {reason}",
            details={"method": method, "reason": reason},
            is_user_action=True,
        )

    @staticmethod
    def expense_created(expense_id: UUID, account_id: UUID, amount: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_CREATED,
            entity_type="expense",
            entity_id=expense_id,
            account_id=account_id,
            description=f"Expense created: {amount}",
            details={"amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def expense_replayed(expense_id: UUID, account_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_REPLAYED,
            entity_type="expense",
            entity_id=expense_id,
            account_id=account_id,
            description="Duplicate create request answered with the original expense",
        )

    @staticmethod
    def expense_deleted(expense_id: UUID, account_id: UUID) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            entity_type="expense",
            entity_id=expense_id,
            account_id=account_id,
            description="Expense deleted",
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
