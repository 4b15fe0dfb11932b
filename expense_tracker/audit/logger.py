"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability of account and ledger changes
2. Debugging capability
3. Evidence when a user disputes a login or a missing expense

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
import sys
from typing import Optional
from uuid import UUID, uuid4

import structlog

from expense_tracker.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from expense_tracker.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(debug: bool = False) -> None:
    """
    Route structlog's JSON lines to stdout at INFO (DEBUG in debug mode).

    structlog renders the message itself, so the stdlib format is bare.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=logging.DEBUG if debug else logging.INFO,
    )


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("expense_tracker.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def log_account_created(self, account_id: UUID, via: str) -> None:
        await self.log(AuditEventBuilder.account_created(account_id, via))

    async def log_federated_identity_linked(self, account_id: UUID, provider: str) -> None:
        await self.log(AuditEventBuilder.federated_identity_linked(account_id, provider))

    async def log_password_set(self, account_id: UUID, intent: str) -> None:
        await self.log(AuditEventBuilder.password_set(account_id, intent))

    # =========================================================================
    # PASSCODES
    # =========================================================================

    async def log_passcode_issued(
        self,
        record_id: UUID,
        account_id: UUID,
        intent: str,
        expires_at,
    ) -> None:
        """Log that a passcode was issued. The code itself is never logged."""
        event = AuditEventBuilder.passcode_issued(
            record_id=record_id,
            account_id=account_id,
            intent=intent,
            expires_at=expires_at,
        )
        await self.log(event)

    async def log_passcode_verified(self, record_id: UUID, account_id: UUID, intent: str) -> None:
        await self.log(AuditEventBuilder.passcode_verified(record_id, account_id, intent))

    async def log_passcode_rejected(
        self,
        record_id: UUID,
        account_id: UUID,
        intent: str,
        attempts: int,
        max_attempts: int,
    ) -> None:
        event = AuditEventBuilder.passcode_rejected(
            record_id=record_id,
            account_id=account_id,
            intent=intent,
            attempts=attempts,
            max_attempts=max_attempts,
        )
        await self.log(event)

    async def log_passcode_burned(self, record_id: UUID, account_id: UUID, intent: str) -> None:
        await self.log(AuditEventBuilder.passcode_burned(record_id, account_id, intent))

    async def log_notification_failed(
        self,
        account_id: UUID,
        intent: str,
        error_message: str,
    ) -> None:
        """Log a passcode that was stored but could not be delivered."""
        event = AuditEventBuilder.notification_failed(
            account_id=account_id,
            intent=intent,
            error_message=error_message,
        )
        await self.log(event)

    # =========================================================================
    # LOGINS
    # =========================================================================

    async def log_login_succeeded(self, account_id: UUID, method: str) -> None:
        await self.log(AuditEventBuilder.login_succeeded(account_id, method))

    async def log_login_failed(
        self,
        method: str,
        reason: str,
        account_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.login_failed(method, reason, account_id))

    # =========================================================================
    # LEDGER
    # =========================================================================

    async def log_expense_created(self, expense_id: UUID, account_id: UUID, amount: str) -> None:
        await self.log(AuditEventBuilder.expense_created(expense_id, account_id, amount))

    async def log_expense_replayed(self, expense_id: UUID, account_id: UUID) -> None:
        await self.log(AuditEventBuilder.expense_replayed(expense_id, account_id))

    async def log_expense_deleted(self, expense_id: UUID, account_id: UUID) -> None:
        await self.log(AuditEventBuilder.expense_deleted(expense_id, account_id))

    # =========================================================================
    # ERRORS
    # =========================================================================

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new request and pass it through all
    subsequent operations.
    """
    return uuid4()
