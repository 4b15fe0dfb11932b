"""End-to-end tests for the authentication flows."""

import pytest

from expense_tracker.config import GoogleSettings
from expense_tracker.errors import ConfigurationError, DomainError, ErrorKind
from expense_tracker.models.account import Account, PasscodeIntent
from expense_tracker.models.audit import AuditEventType
from expense_tracker.orchestrator import (
    INVALID_CREDENTIALS,
    PASSWORD_NOT_CONFIGURED,
    AuthenticationFlow,
    create_app_components,
)
from expense_tracker.services.identity import GoogleIdentityTokenVerifier


class TestPasscodeSignup:
    """Tests for signup through a passcode."""

    async def test_signup_returns_session(self, sign_up, auth_flow):
        """A verified signup returns a working session."""
        session = await sign_up("new@example.com", "Password123")

        assert session.user.email == "new@example.com"
        account = await auth_flow.authenticate(session.access_token)
        assert account.id == session.user.id

    async def test_request_reports_ttl(self, auth_flow):
        result = await auth_flow.request_passcode("new@example.com", PasscodeIntent.SIGNUP)
        assert result.message == "OTP sent"
        assert result.expires_in_minutes == 10

    async def test_repeated_request_reissues(self, auth_flow, notifier):
        """A second request for a pending signup is fine; only the newer code works."""
        await auth_flow.request_passcode("new@example.com", PasscodeIntent.SIGNUP)
        first = notifier.last_code("new@example.com")
        await auth_flow.request_passcode("new@example.com", PasscodeIntent.SIGNUP)
        second = notifier.last_code("new@example.com")

        if first != second:
            with pytest.raises(DomainError):
                await auth_flow.verify_passcode_and_set_password(
                    "new@example.com", PasscodeIntent.SIGNUP, first, "Password123"
                )

        session = await auth_flow.verify_passcode_and_set_password(
            "new@example.com", PasscodeIntent.SIGNUP, second, "Password123"
        )
        assert session.user.email == "new@example.com"

    async def test_signup_after_completion_conflicts(self, sign_up, auth_flow):
        """Once a password is set, signup must not be repeated."""
        await sign_up("new@example.com")

        with pytest.raises(DomainError) as exc_info:
            await auth_flow.request_passcode("new@example.com", PasscodeIntent.SIGNUP)
        assert exc_info.value.kind == ErrorKind.CONFLICT

    async def test_verify_for_unknown_email_is_not_found(self, auth_flow):
        with pytest.raises(DomainError) as exc_info:
            await auth_flow.verify_passcode_and_set_password(
                "ghost@example.com", PasscodeIntent.SIGNUP, "123456", "Password123"
            )
        assert exc_info.value.kind == ErrorKind.NOT_FOUND

    async def test_wrong_code_leaves_password_unset(self, auth_flow, notifier, account_storage):
        """The password only changes after the passcode is consumed."""
        await auth_flow.request_passcode("new@example.com", PasscodeIntent.SIGNUP)
        code = notifier.last_code("new@example.com")
        wrong = "000000" if code != "000000" else "111111"

        with pytest.raises(DomainError) as exc_info:
            await auth_flow.verify_passcode_and_set_password(
                "new@example.com", PasscodeIntent.SIGNUP, wrong, "Password123"
            )
        assert exc_info.value.kind == ErrorKind.INVALID_CODE

        account = await account_storage.get_account_by_email("new@example.com")
        assert account.password_hash is None

    async def test_password_stored_as_digest(self, sign_up, account_storage):
        await sign_up("new@example.com", "Password123")
        account = await account_storage.get_account_by_email("new@example.com")
        assert account.password_hash
        assert "Password123" not in account.password_hash


class TestPasswordReset:
    """Tests for resetting a password through a passcode."""

    async def test_reset_replaces_password(self, sign_up, auth_flow, notifier):
        """After a reset only the new password logs in."""
        await sign_up("user@example.com", "OldPassword123")

        await auth_flow.request_passcode("user@example.com", PasscodeIntent.PASSWORD_RESET)
        await auth_flow.verify_passcode_and_set_password(
            "user@example.com",
            PasscodeIntent.PASSWORD_RESET,
            notifier.last_code("user@example.com"),
            "NewPassword123",
        )

        with pytest.raises(DomainError) as exc_info:
            await auth_flow.login("user@example.com", "OldPassword123")
        assert exc_info.value.kind == ErrorKind.UNAUTHORIZED

        session = await auth_flow.login("user@example.com", "NewPassword123")
        assert session.user.email == "user@example.com"

    async def test_reset_for_unknown_email_is_not_found(self, auth_flow, notifier):
        with pytest.raises(DomainError) as exc_info:
            await auth_flow.request_passcode("ghost@example.com", PasscodeIntent.PASSWORD_RESET)
        assert exc_info.value.kind == ErrorKind.NOT_FOUND
        assert notifier.sent == []

    async def test_signup_code_does_not_reset(self, auth_flow, notifier):
        """A code issued for signup cannot be spent on a reset."""
        await auth_flow.request_passcode("pending@example.com", PasscodeIntent.SIGNUP)
        code = notifier.last_code("pending@example.com")

        with pytest.raises(DomainError) as exc_info:
            await auth_flow.verify_passcode_and_set_password(
                "pending@example.com", PasscodeIntent.PASSWORD_RESET, code, "Password123"
            )
        assert exc_info.value.kind == ErrorKind.NOT_FOUND


class TestPasswordLogin:
    """Tests for email + password login."""

    async def test_login_succeeds(self, sign_up, auth_flow, audit_storage):
        await sign_up("user@example.com", "Password123")

        session = await auth_flow.login("user@example.com", "Password123")

        assert session.access_token
        events = await audit_storage.get_recent_events()
        assert any(e.event_type == AuditEventType.LOGIN_SUCCEEDED for e in events)

    async def test_login_email_is_case_insensitive(self, sign_up, auth_flow):
        await sign_up("user@example.com", "Password123")
        session = await auth_flow.login("USER@example.com", "Password123")
        assert session.user.email == "user@example.com"

    async def test_unknown_email_and_wrong_password_look_the_same(self, sign_up, auth_flow):
        """Login failures do not reveal whether the email exists."""
        await sign_up("user@example.com", "Password123")

        with pytest.raises(DomainError) as unknown:
            await auth_flow.login("ghost@example.com", "Password123")
        with pytest.raises(DomainError) as wrong:
            await auth_flow.login("user@example.com", "WrongPassword1")

        assert unknown.value.message == wrong.value.message == INVALID_CREDENTIALS
        assert unknown.value.kind == wrong.value.kind == ErrorKind.UNAUTHORIZED

    async def test_google_only_account_has_no_password(self, auth_flow, identity_verifier):
        identity_verifier.register("token-1", "sub-1", "g@example.com")
        await auth_flow.login_federated("token-1")

        with pytest.raises(DomainError) as exc_info:
            await auth_flow.login("g@example.com", "Password123")
        assert exc_info.value.message == PASSWORD_NOT_CONFIGURED

    async def test_failed_login_is_audited(self, auth_flow, audit_storage):
        with pytest.raises(DomainError):
            await auth_flow.login("ghost@example.com", "Password123")

        events = await audit_storage.get_recent_events()
        failed = [e for e in events if e.event_type == AuditEventType.LOGIN_FAILED]
        assert failed
        assert failed[0].details["reason"] == "unknown_email"


class TestFederatedLogin:
    """Tests for Google sign-in."""

    async def test_first_login_creates_account(self, auth_flow, identity_verifier, account_storage):
        identity_verifier.register("token-1", "sub-1", "g@example.com")

        session = await auth_flow.login_federated("token-1")

        account = await account_storage.get_account_by_federated_id("sub-1")
        assert account.id == session.user.id

    async def test_repeat_login_returns_same_account(self, auth_flow, identity_verifier):
        identity_verifier.register("token-1", "sub-1", "g@example.com")
        identity_verifier.register("token-2", "sub-1", "g@example.com")

        first = await auth_flow.login_federated("token-1")
        second = await auth_flow.login_federated("token-2")
        assert first.user.id == second.user.id

    async def test_links_to_password_account(self, sign_up, auth_flow, identity_verifier):
        """Google sign-in with a known email joins the existing account."""
        signed_up = await sign_up("user@example.com", "Password123")
        identity_verifier.register("token-1", "sub-1", "user@example.com")

        session = await auth_flow.login_federated("token-1")

        assert session.user.id == signed_up.user.id
        # Password login keeps working after linking
        await auth_flow.login("user@example.com", "Password123")

    async def test_unverified_email_rejected(self, auth_flow, identity_verifier, account_storage):
        identity_verifier.register("token-1", "sub-1", "g@example.com", email_verified=False)

        with pytest.raises(DomainError) as exc_info:
            await auth_flow.login_federated("token-1")
        assert exc_info.value.kind == ErrorKind.UNAUTHORIZED
        assert await account_storage.get_account_by_email("g@example.com") is None

    async def test_email_bound_to_other_subject_conflicts(self, auth_flow, identity_verifier):
        identity_verifier.register("token-1", "sub-1", "g@example.com")
        identity_verifier.register("token-2", "sub-2", "g@example.com")
        await auth_flow.login_federated("token-1")

        with pytest.raises(DomainError) as exc_info:
            await auth_flow.login_federated("token-2")
        assert exc_info.value.kind == ErrorKind.CONFLICT

    async def test_invalid_token_rejected(self, auth_flow):
        with pytest.raises(DomainError) as exc_info:
            await auth_flow.login_federated("forged")
        assert exc_info.value.kind == ErrorKind.UNAUTHORIZED


class TestAuthenticate:
    """Tests for resolving bearer tokens."""

    async def test_token_for_deleted_account_rejected(self, auth_flow, session_issuer):
        """A validly signed token for an unknown account is Unauthorized."""
        token = session_issuer.issue(Account(email="ghost@example.com"))

        with pytest.raises(DomainError) as exc_info:
            await auth_flow.authenticate(token)
        assert exc_info.value.kind == ErrorKind.UNAUTHORIZED

    async def test_garbage_token_rejected(self, auth_flow):
        with pytest.raises(DomainError) as exc_info:
            await auth_flow.authenticate("garbage")
        assert exc_info.value.kind == ErrorKind.UNAUTHORIZED


class TestFactories:
    """Tests for component factories."""

    def test_in_memory_components(self):
        auth_flow, expense_writer, database = create_app_components(use_database=False)

        assert isinstance(auth_flow, AuthenticationFlow)
        assert expense_writer is not None
        assert database is None

    async def test_unconfigured_google_is_configuration_error(
        self,
        account_storage,
        passcode_storage,
        notifier,
        session_issuer,
    ):
        """Without GOOGLE_CLIENT_ID, federated login is a server problem."""
        auth_flow = AuthenticationFlow(
            account_storage=account_storage,
            passcode_storage=passcode_storage,
            notifier=notifier,
            identity_verifier=GoogleIdentityTokenVerifier(GoogleSettings(client_id=None)),
            session_issuer=session_issuer,
        )

        with pytest.raises(ConfigurationError):
            await auth_flow.login_federated("token")
