"""
Expense Models

An Expense is immutable once written: it can only be created (once per
account + idempotency key) or deleted by its owner.

DESIGN DECISION: Amounts are Decimal with exactly two fraction digits.
Totals are accumulated as integer cents and rendered back to a
two-decimal string at the boundary, so "5.00" + "6.00" + "7.00" is
always "18.00".
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from math import ceil
from typing import Annotated, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from expense_tracker.models.money import format_amount, format_cents
from expense_tracker.models.account import utcnow


MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20
MAX_CATEGORY_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500

# NUMERIC(12, 2): up to 9,999,999,999.99
ExpenseAmount = Annotated[Decimal, Field(ge=0, max_digits=12, decimal_places=2)]


class ExpenseSort(str, Enum):
    """Listing order by expense date."""
    NEWEST = "newest"
    OLDEST = "oldest"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ExpenseSort":
        """Accept the canonical names plus the date_desc/date_asc aliases."""
        if not value:
            return cls.NEWEST
        aliases = {"date_desc": cls.NEWEST, "date_asc": cls.OLDEST}
        if value in aliases:
            return aliases[value]
        return cls(value)


class ExpenseInput(BaseModel):
    """
    A validated, normalized expense creation request.

    Produced by the request layer; the writer trusts it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: ExpenseAmount = Field(..., description="Amount spent")
    category: str = Field(..., min_length=1, max_length=MAX_CATEGORY_LENGTH)
    description: Optional[str] = Field(default=None, max_length=MAX_DESCRIPTION_LENGTH)
    expense_date: date = Field(..., description="Calendar day of the expense")

    @field_validator('description')
    @classmethod
    def blank_description_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class Expense(BaseModel):
    """A persisted expense."""

    id: UUID = Field(default_factory=uuid4)
    account_id: UUID
    amount: ExpenseAmount
    category: str
    description: Optional[str] = None
    expense_date: date
    idempotency_key: str = Field(..., min_length=1, max_length=255)
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_input(
        cls,
        account_id: UUID,
        expense_input: ExpenseInput,
        idempotency_key: str,
    ) -> "Expense":
        return cls(
            account_id=account_id,
            amount=expense_input.amount,
            category=expense_input.category,
            description=expense_input.description,
            expense_date=expense_input.expense_date,
            idempotency_key=idempotency_key,
        )

    def to_response(self) -> dict:
        """Outbound JSON shape."""
        return {
            "id": str(self.id),
            "amount": format_amount(self.amount),
            "category": self.category,
            "description": self.description,
            "date": self.expense_date.isoformat(),
            "created_at": self.created_at.isoformat(),
        }


class CreateExpenseResult(BaseModel):
    """Outcome of an idempotent create: replayed=True means no new row."""

    expense: Expense
    replayed: bool


class ExpenseListQuery(BaseModel):
    """
    Filters, ordering and page for listing one account's expenses.

    Date filtering is either an exact day or a calendar year, optionally
    narrowed to one month of that year.
    """

    category: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Case-insensitive substring match on category"
    )
    sort: ExpenseSort = ExpenseSort.NEWEST
    expense_date: Optional[date] = None
    month: Optional[int] = Field(default=None, ge=1, le=12)
    year: Optional[int] = Field(default=None, ge=1970, le=9999)
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE)

    @field_validator('category')
    @classmethod
    def blank_category_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @field_validator('sort', mode='before')
    @classmethod
    def accept_sort_aliases(cls, v):
        if v is None or isinstance(v, ExpenseSort):
            return v or ExpenseSort.NEWEST
        try:
            return ExpenseSort.parse(str(v).strip().lower())
        except ValueError:
            raise ValueError("Unsupported sort value. Use newest or oldest")

    @model_validator(mode='after')
    def validate_date_filters(self) -> 'ExpenseListQuery':
        if self.month is not None and self.year is None:
            raise ValueError("year is required when month is provided")
        if self.expense_date is not None and self.year is not None:
            raise ValueError("date cannot be combined with month or year")
        return self

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    def date_range(self) -> Optional[tuple[date, date]]:
        """
        The filtered days as a half-open range [start, end).

        Returns None when no date filter applies.
        """
        if self.expense_date is not None:
            return self.expense_date, date.fromordinal(self.expense_date.toordinal() + 1)
        if self.year is None:
            return None
        if self.month is None:
            return date(self.year, 1, 1), date(self.year + 1, 1, 1)
        start = date(self.year, self.month, 1)
        if self.month == 12:
            return start, date(self.year + 1, 1, 1)
        return start, date(self.year, self.month + 1, 1)


class ExpensePage(BaseModel):
    """
    One page of a listing plus aggregates over ALL matching rows.

    total_cents and total_items describe the whole match set, not the page.
    """

    expenses: list[Expense] = Field(default_factory=list)
    total_cents: int = Field(default=0, ge=0)
    total_items: int = Field(default=0, ge=0)
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=DEFAULT_PAGE_SIZE, ge=1)

    @property
    def total(self) -> str:
        return format_cents(self.total_cents)

    @property
    def total_pages(self) -> int:
        return max(1, ceil(self.total_items / self.page_size))

    def to_response(self) -> dict:
        return {
            "data": [expense.to_response() for expense in self.expenses],
            "total": self.total,
            "pagination": {
                "page": self.page,
                "page_size": self.page_size,
                "total_items": self.total_items,
                "total_pages": self.total_pages,
            },
        }
