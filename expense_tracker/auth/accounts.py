"""
Account Resolver

Finds or creates the account behind a passcode request or a federated
login, and keeps the two uniqueness rules intact:
- one account per email
- one account per federated identity

DESIGN DECISION: Races between concurrent requests are settled by the
store's unique constraints, not by locks. When a write loses a race the
resolver re-reads once and either returns the winner's account or
reports a Conflict. Raw storage errors never leave this module.
"""

from typing import Optional

from expense_tracker.audit import AuditLogger
from expense_tracker.errors import DomainError
from expense_tracker.models.account import Account, PasscodeIntent, normalize_email
from expense_tracker.services.storage import AccountStorageInterface, DuplicateError


FEDERATED_PROVIDER = "google"


class AccountResolver:
    """Account lookup, creation and federated linking."""

    def __init__(
        self,
        storage: AccountStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger

    async def get_by_email(self, email: str) -> Optional[Account]:
        return await self._storage.get_account_by_email(normalize_email(email))

    async def get_by_id(self, account_id) -> Optional[Account]:
        return await self._storage.get_account_by_id(account_id)

    async def resolve_for_passcode_intent(
        self,
        email: str,
        intent: PasscodeIntent,
    ) -> Account:
        """
        Account that a passcode for `intent` should be issued against.

        signup: a new bare account, or the existing one while its signup
            is still pending (no password, no federated identity).
            Conflict once the account has any credential.
        password_reset: the existing account, NotFound otherwise.
        """
        email = normalize_email(email)
        account = await self._storage.get_account_by_email(email)

        if intent == PasscodeIntent.PASSWORD_RESET:
            if account is None:
                raise DomainError.not_found("Account not found")
            return account

        if account is not None:
            return self._pending_or_conflict(account)

        try:
            account = await self._storage.create_account(email)
        except DuplicateError:
            # A concurrent signup for the same email won
            account = await self._storage.get_account_by_email(email)
            if account is None:
                raise DomainError.conflict("Account already exists. Please retry.")
            return self._pending_or_conflict(account)

        if self._audit_logger:
            await self._audit_logger.log_account_created(account.id, via="passcode_signup")
        return account

    @staticmethod
    def _pending_or_conflict(account: Account) -> Account:
        if account.has_credentials:
            raise DomainError.conflict("Account already exists. Use login or forgot password.")
        return account

    async def resolve_for_federated_login(self, subject: str, email: str) -> Account:
        """
        Account for a verified federated identity.

        Lookup order: federated subject, then email (binding the subject
        if the account has none), then a new account with both set.
        """
        email = normalize_email(email)
        try:
            return await self._resolve_federated(subject, email)
        except DuplicateError:
            # Lost a race to a concurrent login for the same identity
            account = await self._storage.get_account_by_federated_id(subject)
            if account is not None:
                return account
            raise DomainError.conflict("Account already exists. Please retry sign in.")

    async def _resolve_federated(self, subject: str, email: str) -> Account:
        account = await self._storage.get_account_by_federated_id(subject)
        if account is not None:
            return account

        account = await self._storage.get_account_by_email(email)
        if account is not None:
            if account.federated_id and account.federated_id != subject:
                raise DomainError.conflict("Account conflict for this email")
            if account.federated_id == subject:
                return account
            account = await self._storage.bind_federated_id(account.id, subject)
            if self._audit_logger:
                await self._audit_logger.log_federated_identity_linked(
                    account.id, provider=FEDERATED_PROVIDER
                )
            return account

        account = await self._storage.create_account(email, federated_id=subject)
        if self._audit_logger:
            await self._audit_logger.log_account_created(account.id, via=FEDERATED_PROVIDER)
        return account
