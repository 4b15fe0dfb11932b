"""
Data Models Package

This package contains all Pydantic models used in the Expense Tracker.
All data flowing through the system must conform to these schemas.
"""

from expense_tracker.models.account import (
    Account,
    IdentityClaims,
    IssuedPasscode,
    PasscodeIntent,
    PasscodeRecord,
    PasscodeRequestResult,
    SessionClaims,
    SessionResponse,
    SessionUser,
    normalize_email,
    utcnow,
)
from expense_tracker.models.expense import (
    CreateExpenseResult,
    Expense,
    ExpenseInput,
    ExpenseListQuery,
    ExpensePage,
    ExpenseSort,
)
from expense_tracker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Account models
    "Account",
    "IdentityClaims",
    "IssuedPasscode",
    "PasscodeIntent",
    "PasscodeRecord",
    "PasscodeRequestResult",
    "SessionClaims",
    "SessionResponse",
    "SessionUser",
    "normalize_email",
    "utcnow",
    # Expense models
    "CreateExpenseResult",
    "Expense",
    "ExpenseInput",
    "ExpenseListQuery",
    "ExpensePage",
    "ExpenseSort",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
