"""Authentication building blocks."""

from expense_tracker.auth.accounts import AccountResolver
from expense_tracker.auth.passcodes import (
    PASSCODE_LENGTH,
    PasscodeService,
    digest_passcode,
    generate_passcode,
)
from expense_tracker.auth.passwords import PasswordHasher
from expense_tracker.auth.sessions import SessionIssuer

__all__ = [
    "AccountResolver",
    "PASSCODE_LENGTH",
    "PasscodeService",
    "PasswordHasher",
    "SessionIssuer",
    "digest_passcode",
    "generate_passcode",
]
