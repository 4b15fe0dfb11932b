"""Tests for session tokens and password digests."""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from expense_tracker.auth import PasswordHasher, SessionIssuer
from expense_tracker.config import PasswordSettings, SessionSettings
from expense_tracker.errors import ConfigurationError, DomainError, ErrorKind
from expense_tracker.models.account import Account


@pytest.fixture
def account():
    return Account(email="user@example.com")


class TestSessionIssuer:
    """Tests for issuing and validating session tokens."""

    def test_round_trip(self, session_issuer, account):
        """A freshly issued token validates to the same account."""
        token = session_issuer.issue(account)
        claims = session_issuer.validate(token)

        assert claims.account_id == account.id
        assert claims.email == "user@example.com"
        assert claims.expires_at is not None

    def test_lifetime_comes_from_settings(self, account):
        """exp is iat plus the configured lifetime."""
        issued_at = datetime(2030, 1, 1, tzinfo=timezone.utc)
        issuer = SessionIssuer(
            SessionSettings(secret="s3cret", expires_minutes=30),
            clock=lambda: issued_at,
        )
        payload = jwt.get_unverified_claims(issuer.issue(account))

        assert payload["exp"] - payload["iat"] == 30 * 60

    def test_tampered_token_rejected(self, session_issuer, account):
        """Changing any byte of the token invalidates it."""
        token = session_issuer.issue(account)
        head, body, signature = token.split(".")
        tampered = ".".join([head, body, signature[:-2] + ("AA" if signature[-2:] != "AA" else "BB")])

        with pytest.raises(DomainError) as exc_info:
            session_issuer.validate(tampered)
        assert exc_info.value.kind == ErrorKind.UNAUTHORIZED

    def test_expired_token_rejected(self, session_settings, account):
        """A token past its lifetime is Unauthorized."""
        long_ago = datetime.now(timezone.utc) - timedelta(days=1)
        issuer = SessionIssuer(session_settings, clock=lambda: long_ago)
        token = issuer.issue(account)

        with pytest.raises(DomainError) as exc_info:
            SessionIssuer(session_settings).validate(token)
        assert exc_info.value.message == "Invalid or expired token"

    def test_wrong_secret_rejected(self, session_issuer, account):
        """A token signed with another secret is Unauthorized."""
        other = SessionIssuer(SessionSettings(secret="another-secret"))

        with pytest.raises(DomainError) as exc_info:
            session_issuer.validate(other.issue(account))
        assert exc_info.value.kind == ErrorKind.UNAUTHORIZED

    def test_garbage_rejected(self, session_issuer):
        with pytest.raises(DomainError) as exc_info:
            session_issuer.validate("not-a-token")
        assert exc_info.value.kind == ErrorKind.UNAUTHORIZED

    def test_token_without_subject_rejected(self, session_settings):
        """A correctly signed token still needs sub and email."""
        token = jwt.encode({"email": "user@example.com"}, "test-secret-key", algorithm="HS256")

        with pytest.raises(DomainError) as exc_info:
            SessionIssuer(session_settings).validate(token)
        assert exc_info.value.kind == ErrorKind.UNAUTHORIZED

    def test_missing_secret_is_configuration_error(self, account):
        """Without a secret no session can be issued or checked."""
        issuer = SessionIssuer(SessionSettings(secret=None))

        with pytest.raises(ConfigurationError):
            issuer.issue(account)
        with pytest.raises(ConfigurationError):
            issuer.validate("anything")


class TestPasswordHasher:
    """Tests for bcrypt password digests."""

    async def test_hash_and_verify(self, password_hasher):
        digest = await password_hasher.hash("Password123")

        assert digest != "Password123"
        assert await password_hasher.verify("Password123", digest)
        assert not await password_hasher.verify("Password124", digest)

    async def test_hashes_are_salted(self, password_hasher):
        """The same password gives different digests."""
        first = await password_hasher.hash("Password123")
        second = await password_hasher.hash("Password123")
        assert first != second

    async def test_cost_factor_from_settings(self):
        hasher = PasswordHasher(PasswordSettings(hash_rounds=5))
        digest = await hasher.hash("Password123")
        assert digest.split("$")[2] == "05"

    async def test_non_bcrypt_digest_never_matches(self, password_hasher):
        """A corrupt stored digest fails closed."""
        assert not await password_hasher.verify("Password123", "plaintext")

    async def test_long_passwords_are_accepted(self, password_hasher):
        """Passwords longer than bcrypt's 72-byte input still hash."""
        password = "x" * 100
        digest = await password_hasher.hash(password)
        assert await password_hasher.verify(password, digest)
