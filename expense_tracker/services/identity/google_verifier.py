"""
Google Identity Token Verification

DESIGN DECISION: We verify Google ID tokens ourselves with google-auth
instead of calling a tokeninfo endpoint per login:
1. Signature, expiry, issuer and audience are checked locally
2. Google's signing certificates are fetched over HTTP and cached by the
   transport session
3. Only the claims we need (sub, email, email_verified) leave this module

Every failure except missing configuration is reported the same way,
as Unauthorized. Callers cannot tell a forged token from an expired one.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import requests
import structlog
from google.auth import exceptions as google_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token

from expense_tracker.config import GoogleSettings, get_settings
from expense_tracker.errors import ConfigurationError, DomainError
from expense_tracker.models.account import IdentityClaims


logger = structlog.get_logger(__name__)

TokenVerifier = Callable[[str, Any, str], dict]


class IdentityTokenVerifierInterface(ABC):
    """Turns an opaque federated identity token into verified claims."""

    @abstractmethod
    async def verify(self, token: str) -> IdentityClaims:
        """
        Verify a token.

        Raises:
            ConfigurationError: If the verifier is not configured
            DomainError: UNAUTHORIZED for any invalid token
        """
        pass


def _is_true(value: Any) -> bool:
    """email_verified arrives as a bool or as the string "true"."""
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


class GoogleIdentityTokenVerifier(IdentityTokenVerifierInterface):
    """Verifies Google-issued OpenID Connect ID tokens."""

    def __init__(
        self,
        settings: Optional[GoogleSettings] = None,
        token_verifier: Optional[TokenVerifier] = None,
    ):
        self._settings = settings or get_settings().google
        self._token_verifier = token_verifier or google_id_token.verify_oauth2_token
        self._session = requests.Session()
        self._transport = google_requests.Request(session=self._session)

    async def verify(self, token: str) -> IdentityClaims:
        client_id = self._settings.client_id
        if not client_id:
            raise ConfigurationError("GOOGLE_CLIENT_ID is not configured")

        try:
            payload = await asyncio.wait_for(
                asyncio.to_thread(self._token_verifier, token, self._transport, client_id),
                timeout=self._settings.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("google_token_verification_timeout")
            raise DomainError.unauthorized("Google token is invalid")
        except (ValueError, google_exceptions.GoogleAuthError, requests.RequestException) as e:
            logger.info("google_token_rejected", error=str(e))
            raise DomainError.unauthorized("Google token is invalid")

        subject = payload.get("sub")
        email = payload.get("email")
        if not subject or not email:
            raise DomainError.unauthorized("Google token payload is invalid")

        return IdentityClaims(
            subject=str(subject),
            email=str(email).strip().lower(),
            email_verified=_is_true(payload.get("email_verified", False)),
        )
