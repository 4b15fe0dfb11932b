"""Federated identity services package."""

from expense_tracker.services.identity.google_verifier import (
    GoogleIdentityTokenVerifier,
    IdentityTokenVerifierInterface,
)

__all__ = [
    "GoogleIdentityTokenVerifier",
    "IdentityTokenVerifierInterface",
]
