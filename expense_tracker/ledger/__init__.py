"""Expense ledger package."""

from expense_tracker.ledger.writer import IdempotentExpenseWriter

__all__ = ["IdempotentExpenseWriter"]
