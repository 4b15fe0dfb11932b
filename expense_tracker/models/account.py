"""
Account and Credential Models

These models describe who a user is and how they prove it:
- Account: one per email, optionally bound to a password and/or a
  federated (Google) identity
- PasscodeRecord: a hashed one-time passcode tied to an account + intent
- SessionClaims / SessionResponse: the signed bearer credential

DESIGN DECISION: Plaintext secrets never appear on a stored model.
Passcodes are stored as a SHA-256 digest, passwords as a bcrypt digest.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def normalize_email(value: str) -> str:
    """Canonical form used for lookups, uniqueness and passcode digests."""
    return value.strip().lower()


# =============================================================================
# ENUMS
# =============================================================================

class PasscodeIntent(str, Enum):
    """
    What a passcode is allowed to prove.

    A passcode issued for one intent never verifies for another.
    """
    SIGNUP = "signup"
    PASSWORD_RESET = "password_reset"

    @property
    def label(self) -> str:
        """Human-readable purpose, used in notification subjects."""
        if self is PasscodeIntent.PASSWORD_RESET:
            return "password reset"
        return "signup verification"


# =============================================================================
# ACCOUNT
# =============================================================================

class Account(BaseModel):
    """
    A user account.

    INVARIANTS (enforced by storage, not by this model):
    - email is unique across all accounts
    - federated_id is unique across all accounts when set

    An account created by a signup passcode request starts "pending":
    it has an email but neither a password nor a federated identity.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Opaque unique account identifier"
    )
    email: str = Field(
        ...,
        min_length=3,
        max_length=320,
        description="Case-normalized email address"
    )
    password_hash: Optional[str] = Field(
        default=None,
        description="bcrypt digest of the password, if password login is set up"
    )
    federated_id: Optional[str] = Field(
        default=None,
        max_length=255,
        description="Google subject identifier, if linked"
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator('email')
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return normalize_email(v)

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    @property
    def has_credentials(self) -> bool:
        """False while a signup is still pending verification."""
        return self.has_password or bool(self.federated_id)


# =============================================================================
# PASSCODES
# =============================================================================

class PasscodeRecord(BaseModel):
    """
    A stored one-time passcode.

    Active means: not consumed and not yet expired. At most one record is
    active per (account_id, intent); issuing a new one consumes the old.
    Records are retired by setting consumed_at, never deleted.
    """

    id: UUID = Field(default_factory=uuid4)
    account_id: UUID
    intent: PasscodeIntent
    code_digest: str = Field(
        ...,
        min_length=64,
        max_length=64,
        description="SHA-256 hex digest of 'email:code'"
    )
    attempts: int = Field(
        default=0,
        ge=0,
        description="Failed verification attempts so far"
    )
    expires_at: datetime
    consumed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    def is_active(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return self.consumed_at is None and self.expires_at > now


class IssuedPasscode(BaseModel):
    """Result of issuing a passcode. The plaintext code only lives here."""

    record_id: UUID
    code: str
    expires_at: datetime
    ttl_minutes: int


class PasscodeRequestResult(BaseModel):
    """What the caller of a passcode request is told."""

    message: str = "OTP sent"
    expires_in_minutes: int


# =============================================================================
# FEDERATED IDENTITY
# =============================================================================

class IdentityClaims(BaseModel):
    """
    Claims extracted from a verified Google identity token.

    Verified here means the signature and audience checked out;
    email_verified is the issuer's own statement about the address.
    """

    subject: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    email_verified: bool = False


# =============================================================================
# SESSIONS
# =============================================================================

class SessionClaims(BaseModel):
    """Identity asserted by a valid session credential."""

    account_id: UUID
    email: str
    expires_at: Optional[datetime] = None


class SessionUser(BaseModel):
    id: UUID
    email: str


class SessionResponse(BaseModel):
    """Outbound shape of every successful authentication."""

    access_token: str
    user: SessionUser

    @classmethod
    def for_account(cls, account: Account, access_token: str) -> "SessionResponse":
        return cls(
            access_token=access_token,
            user=SessionUser(id=account.id, email=account.email),
        )

    def to_response(self) -> dict:
        return {
            "access_token": self.access_token,
            "user": {
                "id": str(self.user.id),
                "email": self.user.email,
            },
        }
