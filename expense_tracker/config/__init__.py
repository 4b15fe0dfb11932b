"""Configuration package."""

from expense_tracker.config.settings import (
    AppSettings,
    DatabaseSettings,
    GoogleSettings,
    PasscodeSettings,
    PasswordSettings,
    SessionSettings,
    Settings,
    SMTPSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "GoogleSettings",
    "PasscodeSettings",
    "PasswordSettings",
    "SessionSettings",
    "Settings",
    "SMTPSettings",
    "get_settings",
    "validate_all_settings",
]
