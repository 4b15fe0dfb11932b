"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap the relational backend (SQLite, PostgreSQL) without touching the core
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

Uniqueness is the storage layer's job. Every implementation MUST enforce:
- one account per email
- one account per federated identity
- one expense per (account_id, idempotency_key)
and report a violation as DuplicateError naming the field, so the core
can turn it into a conflict or a replay.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from uuid import UUID

from expense_tracker.models.account import Account, PasscodeIntent, PasscodeRecord
from expense_tracker.models.audit import AuditEvent
from expense_tracker.models.expense import Expense, ExpenseListQuery, ExpensePage


class AccountStorageInterface(ABC):
    """Storage for accounts."""

    @abstractmethod
    async def create_account(
        self,
        email: str,
        password_hash: Optional[str] = None,
        federated_id: Optional[str] = None,
    ) -> Account:
        """
        Create a new account.

        Raises:
            DuplicateError: field="email" or field="federated_id" if either
                is already taken
        """
        pass

    @abstractmethod
    async def get_account_by_id(self, account_id: UUID) -> Optional[Account]:
        pass

    @abstractmethod
    async def get_account_by_email(self, email: str) -> Optional[Account]:
        pass

    @abstractmethod
    async def get_account_by_federated_id(self, federated_id: str) -> Optional[Account]:
        pass

    @abstractmethod
    async def update_password(self, account_id: UUID, password_hash: str) -> Account:
        """
        Replace the account's password digest.

        Raises:
            NotFoundError: If the account doesn't exist
        """
        pass

    @abstractmethod
    async def bind_federated_id(self, account_id: UUID, federated_id: str) -> Account:
        """
        Bind a federated identity to an account that has none.

        Binding the identity the account already has is a no-op.

        Raises:
            NotFoundError: If the account doesn't exist
            DuplicateError: field="federated_id" if the identity belongs to
                another account, or this account is bound to a different one
        """
        pass


class PasscodeStorageInterface(ABC):
    """
    Storage for one-time passcode records.

    Records are never deleted; they are retired by setting consumed_at.
    """

    @abstractmethod
    async def invalidate_active(self, account_id: UUID, intent: PasscodeIntent) -> int:
        """
        Consume every unconsumed record for (account_id, intent).

        Returns:
            Number of records retired
        """
        pass

    @abstractmethod
    async def create_passcode(self, record: PasscodeRecord) -> PasscodeRecord:
        pass

    @abstractmethod
    async def get_active_passcode(
        self,
        account_id: UUID,
        intent: PasscodeIntent,
        now: datetime,
    ) -> Optional[PasscodeRecord]:
        """
        Newest record for (account_id, intent) that is unconsumed and
        expires after `now`, or None.
        """
        pass

    @abstractmethod
    async def increment_attempts(
        self,
        passcode_id: UUID,
        max_attempts: int,
    ) -> Optional[PasscodeRecord]:
        """
        Count one failed attempt against a still-active record.

        The check and the update are one atomic step: only records that
        are unconsumed and below max_attempts are counted, and the attempt
        that reaches max_attempts also burns the record (sets consumed_at).

        Returns:
            The updated record, or None if the record is unknown, already
            consumed or already burned
        """
        pass

    @abstractmethod
    async def consume(self, passcode_id: UUID) -> Optional[PasscodeRecord]:
        """
        Mark an unconsumed record consumed.

        Returns:
            The consumed record if this call consumed it, None if the record
            is unknown or was consumed (or burned) already
        """
        pass


class ExpenseStorageInterface(ABC):
    """Storage for expenses."""

    @abstractmethod
    async def create_expense(self, expense: Expense) -> Expense:
        """
        Insert an expense.

        Raises:
            DuplicateError: field="idempotency_key" if the account already
                has an expense with this idempotency key. Nothing is written.
        """
        pass

    @abstractmethod
    async def get_expense_by_idempotency_key(
        self,
        account_id: UUID,
        idempotency_key: str,
    ) -> Optional[Expense]:
        pass

    @abstractmethod
    async def list_expenses(
        self,
        account_id: UUID,
        query: ExpenseListQuery,
    ) -> ExpensePage:
        """
        List one account's expenses.

        Returns:
            The requested page, with total_cents and total_items computed
            over every matching row
        """
        pass

    @abstractmethod
    async def delete_expense(self, account_id: UUID, expense_id: UUID) -> bool:
        """
        Delete an expense if and only if account_id owns it.

        Returns:
            True if a row was removed
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Events for one entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """A uniqueness constraint rejected the write."""

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"Duplicate value for unique field: {field}")


class StorageConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
