"""
Domain errors.

Every failure the core reports carries one ErrorKind. The kind decides the
HTTP status at the boundary; the message is safe to show to the caller and
the context holds structured details for logs and error bodies.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Kinds of domain failure."""
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    INVALID_CODE = "invalid_code"
    BAD_REQUEST = "bad_request"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.INVALID_CODE: 401,
    ErrorKind.BAD_REQUEST: 400,
}


class DomainError(Exception):
    """A request-scoped failure of a known kind."""

    def __init__(self, kind: ErrorKind, message: str, **context: Any):
        self.kind = kind
        self.message = message
        self.context = context
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    @property
    def details(self) -> Optional[dict[str, Any]]:
        return self.context or None

    def __repr__(self) -> str:
        return f"DomainError({self.kind.value!r}, {self.message!r})"

    @classmethod
    def not_found(cls, message: str, **context: Any) -> "DomainError":
        return cls(ErrorKind.NOT_FOUND, message, **context)

    @classmethod
    def conflict(cls, message: str, **context: Any) -> "DomainError":
        return cls(ErrorKind.CONFLICT, message, **context)

    @classmethod
    def unauthorized(cls, message: str, **context: Any) -> "DomainError":
        return cls(ErrorKind.UNAUTHORIZED, message, **context)

    @classmethod
    def invalid_code(cls, message: str, **context: Any) -> "DomainError":
        return cls(ErrorKind.INVALID_CODE, message, **context)

    @classmethod
    def bad_request(cls, message: str, **context: Any) -> "DomainError":
        return cls(ErrorKind.BAD_REQUEST, message, **context)


class ConfigurationError(Exception):
    """Required deployment configuration is missing."""
    pass
