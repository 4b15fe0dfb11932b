"""Services package."""

from expense_tracker.services.identity import (
    GoogleIdentityTokenVerifier,
    IdentityTokenVerifierInterface,
)
from expense_tracker.services.notification import (
    LoggingNotificationService,
    NotificationError,
    NotificationServiceInterface,
    SMTPNotificationService,
    create_notification_service,
)
from expense_tracker.services.storage import (
    AccountStorageInterface,
    AuditStorageInterface,
    DuplicateError,
    ExpenseStorageInterface,
    NotFoundError,
    PasscodeStorageInterface,
    StorageConnectionError,
    StorageError,
)

__all__ = [
    # Identity
    "GoogleIdentityTokenVerifier",
    "IdentityTokenVerifierInterface",
    # Notification
    "LoggingNotificationService",
    "NotificationError",
    "NotificationServiceInterface",
    "SMTPNotificationService",
    "create_notification_service",
    # Storage
    "AccountStorageInterface",
    "AuditStorageInterface",
    "DuplicateError",
    "ExpenseStorageInterface",
    "NotFoundError",
    "PasscodeStorageInterface",
    "StorageConnectionError",
    "StorageError",
]
