"""
Passcode Issuer/Verifier

Lifecycle of a one-time passcode for (account, intent):

    issue    -> every active record is consumed, one new record is stored,
                the plaintext code is handed to the notifier
    verify   -> wrong code: attempts += 1 while active, burned at max_attempts
                right code: consumed, by exactly one caller

DESIGN DECISION: Only a SHA-256 digest of "email:code" is stored. The
plaintext code exists in memory for the duration of issue() and in the
notification, nowhere else.

Burn-on-exhaustion bounds guessing to max_attempts per issued code,
whatever the TTL. A new code can be requested immediately afterwards.
"""

import asyncio
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog

from expense_tracker.audit import AuditLogger
from expense_tracker.config import PasscodeSettings, get_settings
from expense_tracker.errors import DomainError
from expense_tracker.models.account import (
    Account,
    IssuedPasscode,
    PasscodeIntent,
    PasscodeRecord,
    normalize_email,
    utcnow,
)
from expense_tracker.services.notification import NotificationServiceInterface
from expense_tracker.services.storage import PasscodeStorageInterface


logger = structlog.get_logger(__name__)

PASSCODE_LENGTH = 6
NO_ACTIVE_PASSCODE = "OTP not found or expired"


def generate_passcode(length: int = PASSCODE_LENGTH) -> str:
    """Uniformly random over the full range, zero-padded: 000000..999999."""
    return str(secrets.randbelow(10 ** length)).zfill(length)


def digest_passcode(email: str, code: str) -> str:
    return hashlib.sha256(f"{normalize_email(email)}:{code}".encode("utf-8")).hexdigest()


class PasscodeService:
    """Issues and verifies one-time passcodes."""

    def __init__(
        self,
        storage: PasscodeStorageInterface,
        notifier: NotificationServiceInterface,
        settings: Optional[PasscodeSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._storage = storage
        self._notifier = notifier
        self._settings = settings or get_settings().passcode
        self._audit_logger = audit_logger
        self._clock = clock

    @property
    def ttl_minutes(self) -> int:
        return self._settings.ttl_minutes

    async def issue(self, account: Account, intent: PasscodeIntent) -> IssuedPasscode:
        """
        Replace any active passcode for (account, intent) with a new one
        and send it.

        Delivery failure does not fail issuance: the stored code stays
        valid and the failure is audited.
        """
        await self._storage.invalidate_active(account.id, intent)

        code = generate_passcode()
        now = self._clock()
        record = PasscodeRecord(
            account_id=account.id,
            intent=intent,
            code_digest=digest_passcode(account.email, code),
            expires_at=now + timedelta(minutes=self.ttl_minutes),
            created_at=now,
        )
        record = await self._storage.create_passcode(record)

        if self._audit_logger:
            await self._audit_logger.log_passcode_issued(
                record_id=record.id,
                account_id=account.id,
                intent=intent.value,
                expires_at=record.expires_at,
            )

        await self._notify(account, code, intent)

        return IssuedPasscode(
            record_id=record.id,
            code=code,
            expires_at=record.expires_at,
            ttl_minutes=self.ttl_minutes,
        )

    async def _notify(self, account: Account, code: str, intent: PasscodeIntent) -> None:
        try:
            await asyncio.wait_for(
                self._notifier.send_passcode_notification(
                    email=account.email,
                    code=code,
                    ttl_minutes=self.ttl_minutes,
                    intent=intent,
                ),
                timeout=self._settings.notification_timeout_seconds,
            )
        except Exception as e:
            error_message = str(e) or type(e).__name__
            if self._audit_logger:
                await self._audit_logger.log_notification_failed(
                    account_id=account.id,
                    intent=intent.value,
                    error_message=error_message,
                )
            else:
                logger.warning(
                    "passcode_notification_failed",
                    account_id=str(account.id),
                    intent=intent.value,
                    error=error_message,
                )

    async def verify(
        self,
        account: Account,
        intent: PasscodeIntent,
        code: str,
    ) -> PasscodeRecord:
        """
        Check a supplied code against the active record.

        Returns:
            The consumed record

        Raises:
            DomainError: NOT_FOUND if there is no active record,
                INVALID_CODE on a mismatch (including the one that burns it)
        """
        record = await self._storage.get_active_passcode(account.id, intent, self._clock())
        if record is None:
            raise DomainError.not_found(NO_ACTIVE_PASSCODE)

        supplied = digest_passcode(account.email, code)
        if not hmac.compare_digest(record.code_digest, supplied):
            await self._reject(record)

        consumed = await self._storage.consume(record.id)
        if consumed is None:
            # Taken by another request since it was read
            raise DomainError.not_found(NO_ACTIVE_PASSCODE)

        if self._audit_logger:
            await self._audit_logger.log_passcode_verified(
                record_id=record.id,
                account_id=account.id,
                intent=intent.value,
            )
        return consumed

    async def _reject(self, record: PasscodeRecord) -> None:
        max_attempts = self._settings.max_attempts
        updated = await self._storage.increment_attempts(record.id, max_attempts)
        if updated is None:
            raise DomainError.not_found(NO_ACTIVE_PASSCODE)

        if self._audit_logger:
            await self._audit_logger.log_passcode_rejected(
                record_id=record.id,
                account_id=record.account_id,
                intent=record.intent.value,
                attempts=updated.attempts,
                max_attempts=max_attempts,
            )
            if updated.consumed_at is not None:
                await self._audit_logger.log_passcode_burned(
                    record_id=record.id,
                    account_id=record.account_id,
                    intent=record.intent.value,
                )

        raise DomainError.invalid_code(
            "Invalid OTP",
            attempts_remaining=max(0, max_attempts - updated.attempts),
        )
