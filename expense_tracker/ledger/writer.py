"""
Idempotent Expense Writer

DESIGN DECISION: At-most-once creation is delegated to the store's unique
(account_id, idempotency_key) constraint. We never check-then-insert in
application code:

    insert  -> ok: new expense, replayed=False
            -> DuplicateError(idempotency_key): the write did NOT happen;
               fetch the row that did and return it with replayed=True

However many retries or concurrent requests race with the same key,
exactly one row exists afterwards and every caller sees that row.

Idempotency keys are scoped per account: two accounts using the same key
get two independent expenses.
"""

from typing import Optional
from uuid import UUID

from expense_tracker.audit import AuditLogger
from expense_tracker.errors import DomainError
from expense_tracker.models.expense import (
    CreateExpenseResult,
    Expense,
    ExpenseInput,
    ExpenseListQuery,
    ExpensePage,
)
from expense_tracker.models.money import format_amount
from expense_tracker.services.storage import DuplicateError, ExpenseStorageInterface


class IdempotentExpenseWriter:
    """Creates, lists and deletes one account's expenses."""

    def __init__(
        self,
        storage: ExpenseStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger

    async def create(
        self,
        account_id: UUID,
        expense_input: ExpenseInput,
        idempotency_key: str,
    ) -> CreateExpenseResult:
        """
        Create an expense at most once per (account_id, idempotency_key).

        A replay returns the stored expense, even if this call's input
        differs from the original request.

        Raises:
            DomainError: CONFLICT if the key is taken but its row can't be read
        """
        expense = Expense.from_input(account_id, expense_input, idempotency_key)
        try:
            created = await self._storage.create_expense(expense)
        except DuplicateError as e:
            if e.field != "idempotency_key":
                raise
            return await self._replay(account_id, idempotency_key)

        if self._audit_logger:
            await self._audit_logger.log_expense_created(
                expense_id=created.id,
                account_id=account_id,
                amount=format_amount(created.amount),
            )
        return CreateExpenseResult(expense=created, replayed=False)

    async def _replay(self, account_id: UUID, idempotency_key: str) -> CreateExpenseResult:
        existing = await self._storage.get_expense_by_idempotency_key(
            account_id, idempotency_key
        )
        if existing is None:
            raise DomainError.conflict("Idempotent request conflict")

        if self._audit_logger:
            await self._audit_logger.log_expense_replayed(existing.id, account_id)
        return CreateExpenseResult(expense=existing, replayed=True)

    async def list(self, account_id: UUID, query: ExpenseListQuery) -> ExpensePage:
        """One page of the account's expenses plus the total of all matches."""
        return await self._storage.list_expenses(account_id, query)

    async def delete(self, account_id: UUID, expense_id: UUID) -> bool:
        """
        Delete an expense owned by account_id.

        False both when the expense doesn't exist and when someone else
        owns it; callers must not tell the two apart.
        """
        removed = await self._storage.delete_expense(account_id, expense_id)
        if removed and self._audit_logger:
            await self._audit_logger.log_expense_deleted(expense_id, account_id)
        return removed
