"""
Shared fixtures.

Everything runs on in-memory storage with fake collaborators:
- RecordingNotificationService captures passcodes instead of emailing them
- StubIdentityVerifier maps opaque test tokens to Google claims
"""

from typing import Optional

import pytest

from expense_tracker.audit import AuditLogger
from expense_tracker.auth import PasswordHasher, SessionIssuer
from expense_tracker.config import PasscodeSettings, PasswordSettings, SessionSettings
from expense_tracker.errors import DomainError
from expense_tracker.ledger import IdempotentExpenseWriter
from expense_tracker.models.account import IdentityClaims, PasscodeIntent
from expense_tracker.orchestrator import AuthenticationFlow
from expense_tracker.services.identity import IdentityTokenVerifierInterface
from expense_tracker.services.notification import NotificationError, NotificationServiceInterface
from expense_tracker.services.storage import (
    InMemoryAccountStorage,
    InMemoryAuditStorage,
    InMemoryExpenseStorage,
    InMemoryPasscodeStorage,
)


class RecordingNotificationService(NotificationServiceInterface):
    """Keeps every passcode it was asked to deliver."""

    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    async def send_passcode_notification(self, email, code, ttl_minutes, intent):
        if self.fail:
            raise NotificationError("SMTP server unavailable")
        self.sent.append({
            "email": email,
            "code": code,
            "ttl_minutes": ttl_minutes,
            "intent": intent,
        })

    def last_code(self, email: Optional[str] = None) -> str:
        for message in reversed(self.sent):
            if email is None or message["email"] == email:
                return message["code"]
        raise AssertionError(f"No passcode was sent to {email}")


class StubIdentityVerifier(IdentityTokenVerifierInterface):
    """Accepts only tokens registered with register()."""

    def __init__(self):
        self._claims: dict[str, IdentityClaims] = {}

    def register(self, token: str, subject: str, email: str, email_verified: bool = True):
        self._claims[token] = IdentityClaims(
            subject=subject,
            email=email,
            email_verified=email_verified,
        )

    async def verify(self, token: str) -> IdentityClaims:
        if token not in self._claims:
            raise DomainError.unauthorized("Google token is invalid")
        return self._claims[token]


@pytest.fixture
def session_settings():
    return SessionSettings(secret="test-secret-key", algorithm="HS256", expires_minutes=60)


@pytest.fixture
def passcode_settings():
    return PasscodeSettings(ttl_minutes=10, max_attempts=5, notification_timeout_seconds=5)


@pytest.fixture
def session_issuer(session_settings):
    return SessionIssuer(session_settings)


@pytest.fixture
def password_hasher():
    return PasswordHasher(PasswordSettings(hash_rounds=4))


@pytest.fixture
def account_storage():
    return InMemoryAccountStorage()


@pytest.fixture
def passcode_storage():
    return InMemoryPasscodeStorage()


@pytest.fixture
def expense_storage():
    return InMemoryExpenseStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def notifier():
    return RecordingNotificationService()


@pytest.fixture
def identity_verifier():
    return StubIdentityVerifier()


@pytest.fixture
def auth_flow(
    account_storage,
    passcode_storage,
    notifier,
    identity_verifier,
    session_issuer,
    password_hasher,
    passcode_settings,
    audit_logger,
):
    return AuthenticationFlow(
        account_storage=account_storage,
        passcode_storage=passcode_storage,
        notifier=notifier,
        identity_verifier=identity_verifier,
        session_issuer=session_issuer,
        password_hasher=password_hasher,
        passcode_settings=passcode_settings,
        audit_logger=audit_logger,
    )


@pytest.fixture
def expense_writer(expense_storage, audit_logger):
    return IdempotentExpenseWriter(expense_storage, audit_logger)


@pytest.fixture
def sign_up(auth_flow, notifier):
    """Complete a passcode signup and return the session response."""

    async def _sign_up(email: str = "user@example.com", password: str = "Password123"):
        await auth_flow.request_passcode(email, PasscodeIntent.SIGNUP)
        return await auth_flow.verify_passcode_and_set_password(
            email,
            PasscodeIntent.SIGNUP,
            notifier.last_code(email),
            password,
        )

    return _sign_up
