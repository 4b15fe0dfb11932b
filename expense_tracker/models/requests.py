"""
Inbound Request Models

The HTTP layer validates and normalizes every request body into one of
these before the core sees it. The core then trusts its inputs:
emails are lowercase and trimmed, passcodes are six digits, passwords are
8-72 characters, amounts have at most two fraction digits and dates are
not in the future.
"""

import re
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, field_validator

from expense_tracker.models.account import PasscodeIntent, normalize_email
from expense_tracker.models.expense import (
    MAX_CATEGORY_LENGTH,
    MAX_DESCRIPTION_LENGTH,
    ExpenseAmount,
    ExpenseInput,
)


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PASSCODE_PATTERN = re.compile(r"^\d{6}$")
AMOUNT_PATTERN = re.compile(r"^\d+(\.\d{1,2})?$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 72


def validate_email(value: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Email is required")
    email = normalize_email(value)
    if not EMAIL_PATTERN.match(email):
        raise ValueError("Email format is invalid")
    return email


def validate_password(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("password is required")
    password = value.strip()
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password) > MAX_PASSWORD_LENGTH:
        raise ValueError(f"password must be at most {MAX_PASSWORD_LENGTH} characters")
    return password


Email = Annotated[str, AfterValidator(validate_email)]
Password = Annotated[str, AfterValidator(validate_password)]


def parse_calendar_day(value, field_name: str = "Date") -> date:
    """Parse a strict YYYY-MM-DD string."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    raw = str(value).strip()
    if not DATE_PATTERN.match(raw):
        raise ValueError(f"{field_name} must use YYYY-MM-DD format")
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise ValueError(f"{field_name} is invalid")


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


class RequestPasscodeBody(BaseModel):
    """POST /auth/request-otp"""

    email: Email
    intent: PasscodeIntent

    @field_validator('intent', mode='before')
    @classmethod
    def normalize_intent(cls, v):
        value = v.strip().lower() if isinstance(v, str) else v
        try:
            return PasscodeIntent(value)
        except ValueError:
            raise ValueError("intent must be signup or password_reset")


class VerifyPasscodeBody(RequestPasscodeBody):
    """POST /auth/verify-otp"""

    otp: str
    password: Password

    @field_validator('otp', mode='before')
    @classmethod
    def six_digits(cls, v) -> str:
        otp = v.strip() if isinstance(v, str) else ""
        if not PASSCODE_PATTERN.match(otp):
            raise ValueError("OTP must be a 6-digit code")
        return otp


class PasswordLoginBody(BaseModel):
    """POST /auth/login"""

    email: Email
    password: Password


class GoogleLoginBody(BaseModel):
    """POST /auth/google"""

    id_token: str = Field(
        ...,
        validation_alias=AliasChoices("id_token", "idToken", "credential"),
    )

    @field_validator('id_token')
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("id_token is required")
        return v


class CreateExpenseBody(BaseModel):
    """POST /expenses"""
    model_config = ConfigDict(populate_by_name=True)

    amount: ExpenseAmount
    category: str = Field(..., max_length=MAX_CATEGORY_LENGTH)
    description: Optional[str] = Field(default=None, max_length=MAX_DESCRIPTION_LENGTH)
    expense_date: date = Field(..., alias="date")

    @field_validator('amount', mode='before')
    @classmethod
    def two_decimal_places(cls, v) -> Decimal:
        if v is None or v == "":
            raise ValueError("Amount is required")
        raw = "" if isinstance(v, bool) else str(v).strip()
        if not AMOUNT_PATTERN.match(raw):
            raise ValueError("Amount must be a non-negative number with up to 2 decimal places")
        return Decimal(raw)

    @field_validator('category', mode='before')
    @classmethod
    def category_required(cls, v) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("Category is required")
        return v.strip()

    @field_validator('description', mode='before')
    @classmethod
    def trim_description(cls, v) -> Optional[str]:
        if isinstance(v, str) and v.strip():
            return v.strip()
        return None

    @field_validator('expense_date', mode='before')
    @classmethod
    def past_or_today(cls, v) -> date:
        if v is None or v == "":
            raise ValueError("Date is required")
        parsed = parse_calendar_day(v)
        if parsed > today_utc():
            raise ValueError("Date cannot be in the future")
        return parsed

    def to_input(self) -> ExpenseInput:
        return ExpenseInput(
            amount=self.amount,
            category=self.category,
            description=self.description,
            expense_date=self.expense_date,
        )
