"""
Main Orchestrator for Expense Tracker

This module ties together all the components and defines the
end-to-end authentication flows:
1. Passcode signup / reset (request code → verify code + set password)
2. Password login
3. Federated (Google) login
4. Bearer authentication of later requests

DESIGN DECISION: The orchestrator holds no state between calls. Everything
a flow needs to continue lives in the stored PasscodeRecord and Account,
so the two passcode steps can land on different processes.

Every flow ends the same way: a session token plus {id, email}.
"""

from typing import Optional

from expense_tracker.audit import AuditLogger
from expense_tracker.auth import AccountResolver, PasscodeService, PasswordHasher, SessionIssuer
from expense_tracker.config import PasscodeSettings
from expense_tracker.errors import DomainError
from expense_tracker.ledger import IdempotentExpenseWriter
from expense_tracker.models.account import (
    Account,
    PasscodeIntent,
    PasscodeRequestResult,
    SessionResponse,
)
from expense_tracker.services.identity import (
    GoogleIdentityTokenVerifier,
    IdentityTokenVerifierInterface,
)
from expense_tracker.services.notification import (
    NotificationServiceInterface,
    create_notification_service,
)
from expense_tracker.services.storage import (
    AccountStorageInterface,
    InMemoryAccountStorage,
    InMemoryAuditStorage,
    InMemoryExpenseStorage,
    InMemoryPasscodeStorage,
    NotFoundError,
    PasscodeStorageInterface,
    SQLAccountStorage,
    SQLAuditStorage,
    SQLDatabase,
    SQLExpenseStorage,
    SQLPasscodeStorage,
)


INVALID_CREDENTIALS = "Invalid email or password"
PASSWORD_NOT_CONFIGURED = "Password login is not configured for this account"


class AuthenticationFlow:
    """
    Orchestrates the three ways in, and session checks afterwards.

    Flow (passcode):
    1. request_passcode → resolve account for the intent → issue code
    2. verify_passcode_and_set_password → verify code → store new
       password digest → issue session

    The password is only changed AFTER the passcode has been consumed.
    """

    def __init__(
        self,
        account_storage: AccountStorageInterface,
        passcode_storage: PasscodeStorageInterface,
        notifier: Optional[NotificationServiceInterface] = None,
        identity_verifier: Optional[IdentityTokenVerifierInterface] = None,
        session_issuer: Optional[SessionIssuer] = None,
        password_hasher: Optional[PasswordHasher] = None,
        passcode_settings: Optional[PasscodeSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._account_storage = account_storage
        self._audit_logger = audit_logger
        self._accounts = AccountResolver(account_storage, audit_logger)
        self._passcodes = PasscodeService(
            passcode_storage,
            notifier or create_notification_service(),
            settings=passcode_settings,
            audit_logger=audit_logger,
        )
        self._identity_verifier = identity_verifier or GoogleIdentityTokenVerifier()
        self._sessions = session_issuer or SessionIssuer()
        self._passwords = password_hasher or PasswordHasher()

    @property
    def passcodes(self) -> PasscodeService:
        return self._passcodes

    @property
    def sessions(self) -> SessionIssuer:
        return self._sessions

    @property
    def audit_logger(self) -> Optional[AuditLogger]:
        return self._audit_logger

    # =========================================================================
    # PASSCODE SIGNUP / RESET
    # =========================================================================

    async def request_passcode(
        self,
        email: str,
        intent: PasscodeIntent,
    ) -> PasscodeRequestResult:
        """
        Step 1: issue a passcode for signup or password reset.

        Repeating a request for a pending signup re-issues the code and
        invalidates the previous one.

        Raises:
            DomainError: CONFLICT for signup on an active account,
                NOT_FOUND for reset on an unknown email
        """
        account = await self._accounts.resolve_for_passcode_intent(email, intent)
        issued = await self._passcodes.issue(account, intent)
        return PasscodeRequestResult(expires_in_minutes=issued.ttl_minutes)

    async def verify_passcode_and_set_password(
        self,
        email: str,
        intent: PasscodeIntent,
        code: str,
        new_password: str,
    ) -> SessionResponse:
        """
        Step 2: prove control of the email, then set the password.

        Raises:
            DomainError: NOT_FOUND if the account or active code is missing,
                INVALID_CODE on a wrong code
        """
        account = await self._accounts.get_by_email(email)
        if account is None:
            raise DomainError.not_found("Account not found")

        await self._passcodes.verify(account, intent, code)

        password_hash = await self._passwords.hash(new_password)
        try:
            account = await self._account_storage.update_password(account.id, password_hash)
        except NotFoundError:
            raise DomainError.not_found("Account not found")

        if self._audit_logger:
            await self._audit_logger.log_password_set(account.id, intent.value)
            await self._audit_logger.log_login_succeeded(account.id, method="passcode")

        return self._session_for(account)

    # =========================================================================
    # PASSWORD LOGIN
    # =========================================================================

    async def login(self, email: str, password: str) -> SessionResponse:
        """
        Raises:
            DomainError: UNAUTHORIZED. The message is the same for an
                unknown email and a wrong password.
        """
        account = await self._accounts.get_by_email(email)
        if account is None:
            await self._login_failed("password", "unknown_email")
            raise DomainError.unauthorized(INVALID_CREDENTIALS)

        if not account.has_password:
            await self._login_failed("password", "password_not_configured", account.id)
            raise DomainError.unauthorized(PASSWORD_NOT_CONFIGURED)

        if not await self._passwords.verify(password, account.password_hash):
            await self._login_failed("password", "wrong_password", account.id)
            raise DomainError.unauthorized(INVALID_CREDENTIALS)

        if self._audit_logger:
            await self._audit_logger.log_login_succeeded(account.id, method="password")
        return self._session_for(account)

    # =========================================================================
    # FEDERATED LOGIN
    # =========================================================================

    async def login_federated(self, identity_token: str) -> SessionResponse:
        """
        Sign in (or up) with a Google ID token.

        Raises:
            ConfigurationError: If Google sign-in is not configured
            DomainError: UNAUTHORIZED for a bad token or an unverified
                email, CONFLICT if the email belongs to another identity
        """
        claims = await self._identity_verifier.verify(identity_token)
        if not claims.email_verified:
            await self._login_failed("google", "email_not_verified")
            raise DomainError.unauthorized("Google email must be verified")

        account = await self._accounts.resolve_for_federated_login(claims.subject, claims.email)

        if self._audit_logger:
            await self._audit_logger.log_login_succeeded(account.id, method="google")
        return self._session_for(account)

    # =========================================================================
    # BEARER AUTHENTICATION
    # =========================================================================

    async def authenticate(self, token: str) -> Account:
        """
        Resolve a bearer token to a live account.

        Raises:
            DomainError: UNAUTHORIZED if the token is invalid or its
                account no longer exists
        """
        claims = self._sessions.validate(token)
        account = await self._accounts.get_by_id(claims.account_id)
        if account is None:
            raise DomainError.unauthorized("Invalid or expired token")
        return account

    def _session_for(self, account: Account) -> SessionResponse:
        return SessionResponse.for_account(account, self._sessions.issue(account))

    async def _login_failed(self, method: str, reason: str, account_id=None) -> None:
        if self._audit_logger:
            await self._audit_logger.log_login_failed(method, reason, account_id)


def create_in_memory_components(
    notifier: Optional[NotificationServiceInterface] = None,
    identity_verifier: Optional[IdentityTokenVerifierInterface] = None,
    session_issuer: Optional[SessionIssuer] = None,
    password_hasher: Optional[PasswordHasher] = None,
) -> tuple[AuthenticationFlow, IdempotentExpenseWriter]:
    """
    Build the flows on top of in-memory storage.

    Used by the test suite and for running without a database.
    """
    audit_logger = AuditLogger(InMemoryAuditStorage())
    auth_flow = AuthenticationFlow(
        account_storage=InMemoryAccountStorage(),
        passcode_storage=InMemoryPasscodeStorage(),
        notifier=notifier,
        identity_verifier=identity_verifier,
        session_issuer=session_issuer,
        password_hasher=password_hasher,
        audit_logger=audit_logger,
    )
    expense_writer = IdempotentExpenseWriter(InMemoryExpenseStorage(), audit_logger)
    return auth_flow, expense_writer


def create_app_components(
    use_database: bool = True,
) -> tuple[AuthenticationFlow, IdempotentExpenseWriter, Optional[SQLDatabase]]:
    """
    Factory function to create all application components.

    Args:
        use_database: Whether to use the SQL database from DATABASE_URL.
                    Set to False to keep everything in memory.

    Returns:
        (auth_flow, expense_writer, database)
    """
    if not use_database:
        auth_flow, expense_writer = create_in_memory_components()
        return auth_flow, expense_writer, None

    database = SQLDatabase()
    audit_logger = AuditLogger(SQLAuditStorage(database))

    auth_flow = AuthenticationFlow(
        account_storage=SQLAccountStorage(database),
        passcode_storage=SQLPasscodeStorage(database),
        audit_logger=audit_logger,
    )
    expense_writer = IdempotentExpenseWriter(
        storage=SQLExpenseStorage(database),
        audit_logger=audit_logger,
    )

    return auth_flow, expense_writer, database
