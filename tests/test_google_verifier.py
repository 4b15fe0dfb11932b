"""Tests for Google ID token verification."""

import time

import pytest
import requests
from google.auth import exceptions as google_exceptions

from expense_tracker.config import GoogleSettings
from expense_tracker.errors import ConfigurationError, DomainError, ErrorKind
from expense_tracker.services.identity import GoogleIdentityTokenVerifier


CLIENT_ID = "client-123.apps.googleusercontent.com"


class FakeTokenVerifier:
    """Replaces google.oauth2.id_token.verify_oauth2_token."""

    def __init__(self, payload=None, error=None, delay=0.0):
        self.payload = payload
        self.error = error
        self.delay = delay
        self.calls = []

    def __call__(self, token, request, audience):
        self.calls.append((token, audience))
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.payload


def make_verifier(fake, client_id=CLIENT_ID, timeout_seconds=5.0):
    settings = GoogleSettings(client_id=client_id, timeout_seconds=timeout_seconds)
    return GoogleIdentityTokenVerifier(settings, token_verifier=fake)


class TestGoogleIdentityTokenVerifier:
    """Tests for turning ID tokens into identity claims."""

    async def test_valid_token(self):
        fake = FakeTokenVerifier({"sub": "1234", "email": "Person@Gmail.com", "email_verified": True})

        claims = await make_verifier(fake).verify("id-token")

        assert claims.subject == "1234"
        assert claims.email == "person@gmail.com"
        assert claims.email_verified is True
        assert fake.calls == [("id-token", CLIENT_ID)]

    async def test_email_verified_as_string(self):
        fake = FakeTokenVerifier({"sub": "1234", "email": "p@gmail.com", "email_verified": "true"})
        claims = await make_verifier(fake).verify("id-token")
        assert claims.email_verified is True

    async def test_missing_email_verified_is_false(self):
        fake = FakeTokenVerifier({"sub": "1234", "email": "p@gmail.com"})
        claims = await make_verifier(fake).verify("id-token")
        assert claims.email_verified is False

    @pytest.mark.parametrize("error", [
        ValueError("Token expired"),
        google_exceptions.GoogleAuthError("bad signature"),
        requests.ConnectionError("certs unreachable"),
    ])
    async def test_rejections_are_unauthorized(self, error):
        """Every verification failure is the same Unauthorized error."""
        with pytest.raises(DomainError) as exc_info:
            await make_verifier(FakeTokenVerifier(error=error)).verify("id-token")
        assert exc_info.value.kind == ErrorKind.UNAUTHORIZED
        assert exc_info.value.message == "Google token is invalid"

    async def test_payload_without_subject(self):
        fake = FakeTokenVerifier({"email": "p@gmail.com", "email_verified": True})

        with pytest.raises(DomainError) as exc_info:
            await make_verifier(fake).verify("id-token")
        assert exc_info.value.message == "Google token payload is invalid"

    async def test_timeout_is_unauthorized(self):
        fake = FakeTokenVerifier({"sub": "1", "email": "p@gmail.com"}, delay=0.5)

        with pytest.raises(DomainError) as exc_info:
            await make_verifier(fake, timeout_seconds=0.05).verify("id-token")
        assert exc_info.value.kind == ErrorKind.UNAUTHORIZED

    async def test_missing_client_id_is_configuration_error(self):
        fake = FakeTokenVerifier({"sub": "1", "email": "p@gmail.com"})

        with pytest.raises(ConfigurationError):
            await make_verifier(fake, client_id="  ").verify("id-token")
        assert fake.calls == []
