"""
Configuration Management for Expense Tracker

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Each external concern gets its own settings class and env prefix, and the
root Settings object loads them lazily so a missing SMTP or Google setup
never blocks the rest of the service from starting.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SessionSettings(BaseSettings):
    """Signed session credential configuration."""

    model_config = SettingsConfigDict(
        env_prefix="JWT_",
        env_file=".env",
        extra="ignore"
    )

    secret: Optional[str] = Field(
        default=None,
        description="HMAC secret used to sign session tokens (required to issue sessions)"
    )
    algorithm: str = Field(
        default="HS256",
        description="JWS signing algorithm"
    )
    expires_minutes: int = Field(
        default=60,
        ge=1,
        le=60 * 24 * 30,
        description="Session lifetime in minutes"
    )


class PasscodeSettings(BaseSettings):
    """One-time passcode lifecycle configuration."""

    model_config = SettingsConfigDict(
        env_prefix="OTP_",
        env_file=".env",
        extra="ignore"
    )

    ttl_minutes: int = Field(
        default=10,
        ge=1,
        le=24 * 60,
        description="Minutes before an issued passcode expires"
    )
    max_attempts: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Wrong guesses allowed before a passcode is burned"
    )
    notification_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound on delivering a passcode before giving up"
    )


class PasswordSettings(BaseSettings):
    """Password digest configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PASSWORD_",
        env_file=".env",
        extra="ignore"
    )

    hash_rounds: int = Field(
        default=12,
        ge=4,
        le=31,
        description="bcrypt cost factor"
    )


class GoogleSettings(BaseSettings):
    """Google identity token verification configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_",
        env_file=".env",
        extra="ignore"
    )

    client_id: Optional[str] = Field(
        default=None,
        description="OAuth client ID that issued tokens must be addressed to"
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for fetching Google's signing certificates"
    )

    @field_validator('client_id')
    @classmethod
    def blank_as_missing(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class SMTPSettings(BaseSettings):
    """Outbound email configuration for passcode delivery."""

    model_config = SettingsConfigDict(
        env_prefix="SMTP_",
        env_file=".env",
        extra="ignore"
    )

    host: Optional[str] = Field(
        default=None,
        description="SMTP server host. If unset, passcodes are only logged."
    )
    port: int = Field(
        default=587,
        ge=1,
        le=65535,
    )
    use_tls: bool = Field(
        default=True,
        description="Upgrade the connection with STARTTLS"
    )
    username: Optional[str] = None
    password: Optional[str] = None
    from_address: str = Field(
        default="Expense Tracker <no-reply@example.com>",
        description="From header for outbound mail"
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Upper bound on a single delivery attempt"
    )

    @property
    def is_configured(self) -> bool:
        """SMTP is usable when a host is set and credentials are complete."""
        if not self.host:
            return False
        if self.username and not self.password:
            return False
        return True


class DatabaseSettings(BaseSettings):
    """Relational storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        env_file=".env",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite+aiosqlite:///./expense_tracker.db",
        description="SQLAlchemy async database URL"
    )
    echo: bool = Field(
        default=False,
        description="Log every SQL statement"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Frontend
    frontend_url: str = Field(
        default="http://localhost:8501",
        description="Where the Streamlit frontend is served"
    )
    api_url: str = Field(
        default="http://localhost:8000",
        description="Base URL the frontend uses to reach the API"
    )
    api_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Timeout for frontend requests to the API"
    )

    @property
    def is_production(self) -> bool:
        return self.app_environment.lower() == "production"


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def session(self) -> SessionSettings:
        return SessionSettings()

    @property
    def passcode(self) -> PasscodeSettings:
        return PasscodeSettings()

    @property
    def password(self) -> PasswordSettings:
        return PasswordSettings()

    @property
    def google(self) -> GoogleSettings:
        return GoogleSettings()

    @property
    def smtp(self) -> SMTPSettings:
        return SMTPSettings()

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name}_error entries describing what is missing.
    """
    results = {}
    settings = get_settings()

    for name in ("session", "passcode", "password", "google", "smtp", "database", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    # Loadable is not the same as usable for the optional integrations
    if results.get("session") and not settings.session.secret:
        results["session"] = False
        results["session_error"] = "JWT_SECRET is not set"
    if results.get("google") and not settings.google.client_id:
        results["google"] = False
        results["google_error"] = "GOOGLE_CLIENT_ID is not set"
    if results.get("smtp") and not settings.smtp.is_configured:
        results["smtp"] = False
        results["smtp_error"] = "SMTP is not configured; passcodes are logged instead"

    return results
