"""
Session Issuer

DESIGN DECISION: Sessions are stateless signed tokens (JWS, HS256 by
default) carrying the account id and email. There is no revocation list;
the lifetime is the only expiry control.

Validation failures of every kind (bad signature, malformed token,
expired, missing claims) surface as the same Unauthorized error.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import UUID

from jose import JWTError, jwt

from expense_tracker.config import SessionSettings, get_settings
from expense_tracker.errors import ConfigurationError, DomainError
from expense_tracker.models.account import Account, SessionClaims, utcnow


class SessionIssuer:
    """Mints and validates bearer session tokens."""

    def __init__(
        self,
        settings: Optional[SessionSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._settings = settings or get_settings().session
        self._clock = clock

    def _secret(self) -> str:
        if not self._settings.secret:
            raise ConfigurationError("JWT_SECRET is not configured")
        return self._settings.secret

    def issue(self, account: Account) -> str:
        issued_at = self._clock()
        expires_at = issued_at + timedelta(minutes=self._settings.expires_minutes)
        payload = {
            "sub": str(account.id),
            "email": account.email,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        return jwt.encode(payload, self._secret(), algorithm=self._settings.algorithm)

    def validate(self, token: str) -> SessionClaims:
        """
        Check signature and expiry and return the asserted identity.

        Raises:
            DomainError: UNAUTHORIZED if the token is not a valid session
        """
        secret = self._secret()
        try:
            payload = jwt.decode(token, secret, algorithms=[self._settings.algorithm])
        except JWTError:
            raise DomainError.unauthorized("Invalid or expired token")

        try:
            account_id = UUID(str(payload["sub"]))
            email = str(payload["email"])
        except (KeyError, ValueError):
            raise DomainError.unauthorized("Invalid or expired token")

        expires_at = None
        if "exp" in payload:
            expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)

        return SessionClaims(account_id=account_id, email=email, expires_at=expires_at)
