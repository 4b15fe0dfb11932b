"""Tests for the idempotent expense writer."""

import asyncio
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from expense_tracker.errors import DomainError, ErrorKind
from expense_tracker.ledger import IdempotentExpenseWriter
from expense_tracker.models.audit import AuditEventType
from expense_tracker.models.expense import ExpenseInput, ExpenseListQuery, ExpenseSort
from expense_tracker.services.storage import DuplicateError, InMemoryExpenseStorage


def make_input(amount="12.50", category="Groceries", day=date(2024, 5, 10), description=None):
    return ExpenseInput(
        amount=Decimal(amount),
        category=category,
        description=description,
        expense_date=day,
    )


class LostRowExpenseStorage(InMemoryExpenseStorage):
    """Reports a duplicate key, then cannot find the row it collided with."""

    async def create_expense(self, expense):
        raise DuplicateError("idempotency_key")

    async def get_expense_by_idempotency_key(self, account_id, idempotency_key):
        return None


class TestCreate:
    """Tests for at-most-once creation."""

    async def test_first_create_is_not_replayed(self, expense_writer, audit_storage):
        account_id = uuid4()

        result = await expense_writer.create(account_id, make_input(), "key-1")

        assert result.replayed is False
        assert result.expense.amount == Decimal("12.50")
        assert result.expense.account_id == account_id
        events = await audit_storage.get_recent_events()
        assert any(e.event_type == AuditEventType.EXPENSE_CREATED for e in events)

    async def test_retry_returns_original(self, expense_writer):
        """A repeated key answers with the first expense, even with a different body."""
        account_id = uuid4()
        first = await expense_writer.create(account_id, make_input("12.50"), "key-1")

        second = await expense_writer.create(account_id, make_input("99.99", "Rent"), "key-1")

        assert second.replayed is True
        assert second.expense.id == first.expense.id
        assert second.expense.amount == Decimal("12.50")
        assert second.expense.category == "Groceries"

    async def test_concurrent_requests_create_one_row(self, expense_writer):
        """Racing creates with one key leave exactly one expense."""
        account_id = uuid4()

        results = await asyncio.gather(*[
            expense_writer.create(account_id, make_input(), "same-key")
            for _ in range(10)
        ])

        assert len({r.expense.id for r in results}) == 1
        assert sum(1 for r in results if not r.replayed) == 1

        page = await expense_writer.list(account_id, ExpenseListQuery())
        assert page.total_items == 1

    async def test_keys_are_scoped_per_account(self, expense_writer):
        """Two accounts may use the same key independently."""
        first = await expense_writer.create(uuid4(), make_input(), "shared-key")
        second = await expense_writer.create(uuid4(), make_input(), "shared-key")

        assert not first.replayed
        assert not second.replayed
        assert first.expense.id != second.expense.id

    async def test_missing_row_after_duplicate_is_conflict(self, audit_logger):
        """A duplicate that can't be read back is reported, not hidden."""
        writer = IdempotentExpenseWriter(LostRowExpenseStorage(), audit_logger)

        with pytest.raises(DomainError) as exc_info:
            await writer.create(uuid4(), make_input(), "key-1")
        assert exc_info.value.kind == ErrorKind.CONFLICT


class TestList:
    """Tests for listing and totals."""

    async def test_total_covers_all_pages(self, expense_writer):
        """The total is exact and spans every matching expense."""
        account_id = uuid4()
        for i, amount in enumerate(["5.00", "6.00", "7.00"]):
            await expense_writer.create(account_id, make_input(amount, day=date(2024, 5, i + 1)), f"k{i}")

        page = await expense_writer.list(account_id, ExpenseListQuery(page_size=1))

        assert len(page.expenses) == 1
        assert page.total == "18.00"
        assert page.total_items == 3
        assert page.total_pages == 3

    async def test_decimal_amounts_sum_exactly(self, expense_writer):
        account_id = uuid4()
        for i in range(3):
            await expense_writer.create(account_id, make_input("0.10"), f"k{i}")

        page = await expense_writer.list(account_id, ExpenseListQuery())
        assert page.total == "0.30"

    async def test_sort_order(self, expense_writer):
        account_id = uuid4()
        await expense_writer.create(account_id, make_input(day=date(2024, 1, 1)), "old")
        await expense_writer.create(account_id, make_input(day=date(2024, 3, 1)), "new")

        newest = await expense_writer.list(account_id, ExpenseListQuery(sort=ExpenseSort.NEWEST))
        oldest = await expense_writer.list(account_id, ExpenseListQuery(sort=ExpenseSort.OLDEST))

        assert [e.idempotency_key for e in newest.expenses] == ["new", "old"]
        assert [e.idempotency_key for e in oldest.expenses] == ["old", "new"]

    async def test_category_filter_is_case_insensitive_substring(self, expense_writer):
        account_id = uuid4()
        await expense_writer.create(account_id, make_input("1.00", "Groceries"), "a")
        await expense_writer.create(account_id, make_input("2.00", "Rent"), "b")

        page = await expense_writer.list(account_id, ExpenseListQuery(category="GROC"))

        assert [e.category for e in page.expenses] == ["Groceries"]
        assert page.total == "1.00"

    async def test_month_filter(self, expense_writer):
        account_id = uuid4()
        await expense_writer.create(account_id, make_input("1.00", day=date(2024, 1, 31)), "jan")
        await expense_writer.create(account_id, make_input("2.00", day=date(2024, 2, 1)), "feb")
        await expense_writer.create(account_id, make_input("4.00", day=date(2023, 2, 1)), "feb-2023")

        page = await expense_writer.list(account_id, ExpenseListQuery(year=2024, month=2))

        assert [e.idempotency_key for e in page.expenses] == ["feb"]
        assert page.total == "2.00"

    async def test_exact_date_filter(self, expense_writer):
        account_id = uuid4()
        await expense_writer.create(account_id, make_input(day=date(2024, 5, 10)), "a")
        await expense_writer.create(account_id, make_input(day=date(2024, 5, 11)), "b")

        page = await expense_writer.list(account_id, ExpenseListQuery(expense_date=date(2024, 5, 11)))
        assert [e.idempotency_key for e in page.expenses] == ["b"]

    async def test_only_own_expenses_are_listed(self, expense_writer):
        mine, theirs = uuid4(), uuid4()
        await expense_writer.create(mine, make_input("1.00"), "k")
        await expense_writer.create(theirs, make_input("2.00"), "k")

        page = await expense_writer.list(mine, ExpenseListQuery())
        assert page.total == "1.00"
        assert page.total_items == 1

    async def test_page_past_the_end_is_empty(self, expense_writer):
        account_id = uuid4()
        await expense_writer.create(account_id, make_input(), "k")

        page = await expense_writer.list(account_id, ExpenseListQuery(page=5))

        assert page.expenses == []
        assert page.total_items == 1


class TestDelete:
    """Tests for owner-only deletes."""

    async def test_owner_deletes(self, expense_writer):
        account_id = uuid4()
        created = await expense_writer.create(account_id, make_input(), "k")

        assert await expense_writer.delete(account_id, created.expense.id) is True
        page = await expense_writer.list(account_id, ExpenseListQuery())
        assert page.total_items == 0

    async def test_other_account_cannot_delete(self, expense_writer):
        """A foreign delete reports not-found and leaves the expense alone."""
        owner, intruder = uuid4(), uuid4()
        created = await expense_writer.create(owner, make_input(), "k")

        assert await expense_writer.delete(intruder, created.expense.id) is False
        page = await expense_writer.list(owner, ExpenseListQuery())
        assert page.total_items == 1

    async def test_unknown_expense(self, expense_writer):
        assert await expense_writer.delete(uuid4(), uuid4()) is False

    async def test_key_can_be_reused_after_delete(self, expense_writer):
        """Deleting an expense frees its idempotency key."""
        account_id = uuid4()
        first = await expense_writer.create(account_id, make_input(), "k")
        await expense_writer.delete(account_id, first.expense.id)

        second = await expense_writer.create(account_id, make_input(), "k")

        assert second.replayed is False
        assert second.expense.id != first.expense.id
