"""Notification services package."""

from expense_tracker.services.notification.mailer import (
    LoggingNotificationService,
    NotificationError,
    NotificationServiceInterface,
    SMTPNotificationService,
    build_passcode_message,
    create_notification_service,
)

__all__ = [
    "LoggingNotificationService",
    "NotificationError",
    "NotificationServiceInterface",
    "SMTPNotificationService",
    "build_passcode_message",
    "create_notification_service",
]
