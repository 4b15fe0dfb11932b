"""Tests for passcode email delivery."""

import smtplib

import pytest

from expense_tracker.config import SMTPSettings
from expense_tracker.models.account import PasscodeIntent
from expense_tracker.services.notification import (
    LoggingNotificationService,
    NotificationError,
    SMTPNotificationService,
    build_passcode_message,
    create_notification_service,
)


class FakeSMTP:
    """Stands in for smtplib.SMTP and records what happened."""

    instances: list["FakeSMTP"] = []
    fail_with = None

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.started_tls = False
        self.logged_in_as = None
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def starttls(self):
        self.started_tls = True

    def login(self, username, password):
        self.logged_in_as = username

    def send_message(self, message):
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with
        self.messages.append(message)


@pytest.fixture(autouse=True)
def reset_fake_smtp():
    FakeSMTP.instances = []
    FakeSMTP.fail_with = None


@pytest.fixture
def smtp_settings():
    return SMTPSettings(
        host="smtp.example.com",
        port=587,
        use_tls=True,
        username="mailer",
        password="secret",
        from_address="Expense Tracker <no-reply@example.com>",
        timeout_seconds=5,
    )


class TestBuildPasscodeMessage:
    """Tests for the email body."""

    def test_subject_names_the_intent(self):
        message = build_passcode_message(
            "from@example.com", "to@example.com", "123456", 10, PasscodeIntent.PASSWORD_RESET
        )
        assert message["Subject"] == "Your Expense Tracker passcode for password reset"
        assert message["To"] == "to@example.com"

    def test_body_has_code_and_ttl(self):
        message = build_passcode_message(
            "from@example.com", "to@example.com", "042424", 10, PasscodeIntent.SIGNUP
        )
        text = message.get_body(preferencelist=("plain",)).get_content()
        html = message.get_body(preferencelist=("html",)).get_content()

        assert "042424" in text
        assert "10 minutes" in text
        assert "042424" in html


class TestSMTPNotificationService:
    """Tests for SMTP delivery."""

    async def test_sends_over_starttls_with_login(self, smtp_settings):
        service = SMTPNotificationService(smtp_settings, smtp_factory=FakeSMTP)

        await service.send_passcode_notification("to@example.com", "123456", 10, PasscodeIntent.SIGNUP)

        smtp = FakeSMTP.instances[0]
        assert (smtp.host, smtp.port, smtp.timeout) == ("smtp.example.com", 587, 5)
        assert smtp.started_tls
        assert smtp.logged_in_as == "mailer"
        assert smtp.messages[0]["To"] == "to@example.com"

    async def test_no_tls_no_login(self, smtp_settings):
        settings = smtp_settings.model_copy(update={"use_tls": False, "username": None, "password": None})
        service = SMTPNotificationService(settings, smtp_factory=FakeSMTP)

        await service.send_passcode_notification("to@example.com", "123456", 10, PasscodeIntent.SIGNUP)

        smtp = FakeSMTP.instances[0]
        assert not smtp.started_tls
        assert smtp.logged_in_as is None

    async def test_failure_is_retried_then_raised(self, smtp_settings):
        """An SMTP error is retried once, then surfaces as NotificationError."""
        FakeSMTP.fail_with = smtplib.SMTPServerDisconnected("gone")
        service = SMTPNotificationService(smtp_settings, smtp_factory=FakeSMTP)

        with pytest.raises(NotificationError):
            await service.send_passcode_notification("to@example.com", "123456", 10, PasscodeIntent.SIGNUP)
        assert len(FakeSMTP.instances) == 2

    async def test_connection_error_becomes_notification_error(self, smtp_settings):
        def refuse(*args, **kwargs):
            raise ConnectionRefusedError("refused")

        service = SMTPNotificationService(smtp_settings, smtp_factory=refuse)

        with pytest.raises(NotificationError):
            await service.send_passcode_notification("to@example.com", "123456", 10, PasscodeIntent.SIGNUP)


class TestCreateNotificationService:
    """Tests for choosing a delivery backend."""

    def test_smtp_when_configured(self, smtp_settings):
        assert isinstance(create_notification_service(smtp_settings), SMTPNotificationService)

    def test_logging_without_host(self):
        service = create_notification_service(SMTPSettings(host=None))
        assert isinstance(service, LoggingNotificationService)

    def test_logging_with_incomplete_credentials(self):
        service = create_notification_service(SMTPSettings(host="smtp.example.com", username="mailer", password=None))
        assert isinstance(service, LoggingNotificationService)

    async def test_logging_service_never_fails(self):
        await LoggingNotificationService().send_passcode_notification(
            "to@example.com", "123456", 10, PasscodeIntent.SIGNUP
        )
