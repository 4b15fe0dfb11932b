"""
In-Memory Storage Implementation

Dict-backed implementations of every storage interface, used by the test
suite and for running the service without a database.

Each check-and-write below runs without an intervening await, so under
asyncio it is atomic in the same way a unique index is: of two concurrent
inserts with the same key, exactly one wins and the other sees
DuplicateError.

Models are copied on the way in and out so callers never share state
with the store.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from expense_tracker.models.account import Account, PasscodeIntent, PasscodeRecord, utcnow
from expense_tracker.models.audit import AuditEvent
from expense_tracker.models.expense import Expense, ExpenseListQuery, ExpensePage, ExpenseSort
from expense_tracker.models.money import sum_cents
from expense_tracker.services.storage.interface import (
    AccountStorageInterface,
    AuditStorageInterface,
    DuplicateError,
    ExpenseStorageInterface,
    NotFoundError,
    PasscodeStorageInterface,
)


class InMemoryAccountStorage(AccountStorageInterface):
    """Accounts indexed by id, email and federated identity."""

    def __init__(self):
        self._by_id: dict[UUID, Account] = {}
        self._id_by_email: dict[str, UUID] = {}
        self._id_by_federated_id: dict[str, UUID] = {}

    async def create_account(
        self,
        email: str,
        password_hash: Optional[str] = None,
        federated_id: Optional[str] = None,
    ) -> Account:
        account = Account(
            email=email,
            password_hash=password_hash,
            federated_id=federated_id,
        )
        if account.email in self._id_by_email:
            raise DuplicateError("email")
        if federated_id and federated_id in self._id_by_federated_id:
            raise DuplicateError("federated_id")

        self._by_id[account.id] = account
        self._id_by_email[account.email] = account.id
        if federated_id:
            self._id_by_federated_id[federated_id] = account.id
        return account.model_copy()

    async def get_account_by_id(self, account_id: UUID) -> Optional[Account]:
        account = self._by_id.get(account_id)
        return account.model_copy() if account else None

    async def get_account_by_email(self, email: str) -> Optional[Account]:
        account_id = self._id_by_email.get(email.strip().lower())
        return await self.get_account_by_id(account_id) if account_id else None

    async def get_account_by_federated_id(self, federated_id: str) -> Optional[Account]:
        account_id = self._id_by_federated_id.get(federated_id)
        return await self.get_account_by_id(account_id) if account_id else None

    async def update_password(self, account_id: UUID, password_hash: str) -> Account:
        account = self._get_or_raise(account_id)
        updated = account.model_copy(update={
            "password_hash": password_hash,
            "updated_at": utcnow(),
        })
        self._by_id[account_id] = updated
        return updated.model_copy()

    async def bind_federated_id(self, account_id: UUID, federated_id: str) -> Account:
        account = self._get_or_raise(account_id)
        owner = self._id_by_federated_id.get(federated_id)
        if owner is not None and owner != account_id:
            raise DuplicateError("federated_id")
        if account.federated_id and account.federated_id != federated_id:
            raise DuplicateError("federated_id", "Account is bound to a different identity")

        updated = account.model_copy(update={
            "federated_id": federated_id,
            "updated_at": utcnow(),
        })
        self._by_id[account_id] = updated
        self._id_by_federated_id[federated_id] = account_id
        return updated.model_copy()

    def _get_or_raise(self, account_id: UUID) -> Account:
        account = self._by_id.get(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")
        return account


class InMemoryPasscodeStorage(PasscodeStorageInterface):
    """Passcode records kept in insertion order."""

    def __init__(self):
        self._records: dict[UUID, PasscodeRecord] = {}

    async def invalidate_active(self, account_id: UUID, intent: PasscodeIntent) -> int:
        now = utcnow()
        retired = 0
        for record_id, record in self._records.items():
            if (
                record.account_id == account_id
                and record.intent == intent
                and record.consumed_at is None
            ):
                self._records[record_id] = record.model_copy(update={"consumed_at": now})
                retired += 1
        return retired

    async def create_passcode(self, record: PasscodeRecord) -> PasscodeRecord:
        self._records[record.id] = record.model_copy()
        return record.model_copy()

    async def get_active_passcode(
        self,
        account_id: UUID,
        intent: PasscodeIntent,
        now: datetime,
    ) -> Optional[PasscodeRecord]:
        active = [
            record for record in self._records.values()
            if record.account_id == account_id
            and record.intent == intent
            and record.is_active(now)
        ]
        if not active:
            return None
        newest = max(active, key=lambda r: r.created_at)
        return newest.model_copy()

    async def increment_attempts(
        self,
        passcode_id: UUID,
        max_attempts: int,
    ) -> Optional[PasscodeRecord]:
        record = self._records.get(passcode_id)
        if record is None or record.consumed_at is not None or record.attempts >= max_attempts:
            return None

        changes = {"attempts": record.attempts + 1}
        if changes["attempts"] >= max_attempts:
            changes["consumed_at"] = utcnow()
        updated = record.model_copy(update=changes)
        self._records[passcode_id] = updated
        return updated.model_copy()

    async def consume(self, passcode_id: UUID) -> Optional[PasscodeRecord]:
        record = self._records.get(passcode_id)
        if record is None or record.consumed_at is not None:
            return None
        record = record.model_copy(update={"consumed_at": utcnow()})
        self._records[passcode_id] = record
        return record.model_copy()


class InMemoryExpenseStorage(ExpenseStorageInterface):
    """Expenses with a unique (account_id, idempotency_key) index."""

    def __init__(self):
        self._by_id: dict[UUID, Expense] = {}
        self._id_by_key: dict[tuple[UUID, str], UUID] = {}

    async def create_expense(self, expense: Expense) -> Expense:
        key = (expense.account_id, expense.idempotency_key)
        if key in self._id_by_key:
            raise DuplicateError("idempotency_key")
        self._by_id[expense.id] = expense.model_copy()
        self._id_by_key[key] = expense.id
        return expense.model_copy()

    async def get_expense_by_idempotency_key(
        self,
        account_id: UUID,
        idempotency_key: str,
    ) -> Optional[Expense]:
        expense_id = self._id_by_key.get((account_id, idempotency_key))
        if expense_id is None:
            return None
        return self._by_id[expense_id].model_copy()

    async def list_expenses(
        self,
        account_id: UUID,
        query: ExpenseListQuery,
    ) -> ExpensePage:
        date_range = query.date_range()
        category = query.category.lower() if query.category else None

        matches = []
        for expense in self._by_id.values():
            if expense.account_id != account_id:
                continue
            if category and category not in expense.category.lower():
                continue
            if date_range and not (date_range[0] <= expense.expense_date < date_range[1]):
                continue
            matches.append(expense)

        matches.sort(
            key=lambda e: (e.expense_date, e.created_at),
            reverse=query.sort == ExpenseSort.NEWEST,
        )
        page = matches[query.offset:query.offset + query.page_size]

        return ExpensePage(
            expenses=[expense.model_copy() for expense in page],
            total_cents=sum_cents(expense.amount for expense in matches),
            total_items=len(matches),
            page=query.page,
            page_size=query.page_size,
        )

    async def delete_expense(self, account_id: UUID, expense_id: UUID) -> bool:
        expense = self._by_id.get(expense_id)
        if expense is None or expense.account_id != account_id:
            return False
        del self._by_id[expense_id]
        del self._id_by_key[(expense.account_id, expense.idempotency_key)]
        return True


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
