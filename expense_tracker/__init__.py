"""
Expense Tracker - Source Package

A personal expense-tracking service: users authenticate with a
one-time passcode, a password, or a Google identity token, then record,
list and delete dated expenses scoped to their own account.

DESIGN PRINCIPLES:
1. One account per email, one account per federated identity
2. A passcode is single-use and allows a fixed number of attempts
3. One expense per (account, idempotency key), however often a client retries
4. Money is exact: integer cents inside, two-decimal strings at the edge
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Expense Tracker Team"
