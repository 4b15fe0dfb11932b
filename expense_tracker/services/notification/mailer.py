"""
Passcode Notification Delivery

DESIGN DECISION: Delivery is best-effort from the core's point of view.
The passcode is stored BEFORE we try to send it, and a failed send raises
NotificationError which the passcode issuer catches and audits. The user
can always ask for a fresh code.

Two implementations:
1. SMTPNotificationService - real email via smtplib
2. LoggingNotificationService - writes the passcode to the log, for
   development setups without an SMTP server
"""

import asyncio
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Callable, Optional

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from expense_tracker.config import SMTPSettings, get_settings
from expense_tracker.models.account import PasscodeIntent


logger = structlog.get_logger(__name__)


class NotificationError(Exception):
    """A passcode could not be delivered."""
    pass


class NotificationServiceInterface(ABC):
    """Delivers one-time passcodes to the account's email address."""

    @abstractmethod
    async def send_passcode_notification(
        self,
        email: str,
        code: str,
        ttl_minutes: int,
        intent: PasscodeIntent,
    ) -> None:
        """
        Deliver a passcode.

        Raises:
            NotificationError: If delivery failed
        """
        pass


def build_passcode_message(
    sender: str,
    email: str,
    code: str,
    ttl_minutes: int,
    intent: PasscodeIntent,
) -> EmailMessage:
    """Plain-text message with an HTML alternative."""
    message = EmailMessage()
    message["Subject"] = f"Your Expense Tracker passcode for {intent.label}"
    message["From"] = sender
    message["To"] = email
    message.set_content(
        f"Your one-time passcode is {code}.\n"
        f"It expires in {ttl_minutes} minutes.\n\n"
        "If you did not request this, you can ignore this email.\n"
    )
    message.add_alternative(
        "<p>Your one-time passcode is</p>"
        f"<p style=\"font-size:24px;font-weight:bold;letter-spacing:4px\">{code}</p>"
        f"<p>It expires in {ttl_minutes} minutes.</p>"
        "<p>If you did not request this, you can ignore this email.</p>",
        subtype="html",
    )
    return message


class SMTPNotificationService(NotificationServiceInterface):
    """
    Sends passcodes over SMTP.

    smtplib is blocking, so each delivery runs in a worker thread and is
    bounded by the configured timeout.
    """

    def __init__(
        self,
        settings: Optional[SMTPSettings] = None,
        smtp_factory: Optional[Callable[..., smtplib.SMTP]] = None,
    ):
        self._settings = settings or get_settings().smtp
        self._smtp_factory = smtp_factory or smtplib.SMTP

    @retry(
        retry=retry_if_exception_type(NotificationError),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        reraise=True,
    )
    async def send_passcode_notification(
        self,
        email: str,
        code: str,
        ttl_minutes: int,
        intent: PasscodeIntent,
    ) -> None:
        message = build_passcode_message(
            sender=self._settings.from_address,
            email=email,
            code=code,
            ttl_minutes=ttl_minutes,
            intent=intent,
        )
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._deliver, message),
                timeout=self._settings.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise NotificationError(
                f"SMTP delivery timed out after {self._settings.timeout_seconds}s"
            ) from e
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"SMTP delivery failed: {e}") from e

        logger.info("passcode_notification_sent", email=email, intent=intent.value)

    def _deliver(self, message: EmailMessage) -> None:
        with self._smtp_factory(
            self._settings.host,
            self._settings.port,
            timeout=self._settings.timeout_seconds,
        ) as smtp:
            if self._settings.use_tls:
                smtp.starttls()
            if self._settings.username:
                smtp.login(self._settings.username, self._settings.password)
            smtp.send_message(message)


class LoggingNotificationService(NotificationServiceInterface):
    """
    Writes passcodes to the log instead of sending them.

    Development only: the plaintext code ends up in the log stream.
    """

    async def send_passcode_notification(
        self,
        email: str,
        code: str,
        ttl_minutes: int,
        intent: PasscodeIntent,
    ) -> None:
        logger.warning(
            "passcode_notification_logged",
            email=email,
            intent=intent.value,
            code=code,
            ttl_minutes=ttl_minutes,
            reason="SMTP is not configured",
        )


def create_notification_service(
    settings: Optional[SMTPSettings] = None,
) -> NotificationServiceInterface:
    """SMTP when it is fully configured, the logging fallback otherwise."""
    settings = settings or get_settings().smtp
    if settings.is_configured:
        return SMTPNotificationService(settings)
    return LoggingNotificationService()
