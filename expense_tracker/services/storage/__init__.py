"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The SQL backend is used by the running service, the in-memory backend by
tests and local experiments.
"""

from expense_tracker.services.storage.interface import (
    AccountStorageInterface,
    AuditStorageInterface,
    DuplicateError,
    ExpenseStorageInterface,
    NotFoundError,
    PasscodeStorageInterface,
    StorageConnectionError,
    StorageError,
)
from expense_tracker.services.storage.memory import (
    InMemoryAccountStorage,
    InMemoryAuditStorage,
    InMemoryExpenseStorage,
    InMemoryPasscodeStorage,
)
from expense_tracker.services.storage.sql import (
    SQLAccountStorage,
    SQLAuditStorage,
    SQLDatabase,
    SQLExpenseStorage,
    SQLPasscodeStorage,
)

__all__ = [
    # Interfaces
    "AccountStorageInterface",
    "AuditStorageInterface",
    "ExpenseStorageInterface",
    "PasscodeStorageInterface",
    # Exceptions
    "DuplicateError",
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
    # In-memory implementation
    "InMemoryAccountStorage",
    "InMemoryAuditStorage",
    "InMemoryExpenseStorage",
    "InMemoryPasscodeStorage",
    # SQL implementation
    "SQLAccountStorage",
    "SQLAuditStorage",
    "SQLDatabase",
    "SQLExpenseStorage",
    "SQLPasscodeStorage",
]
