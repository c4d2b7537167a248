"""
Configuration Management for Personal Budget

Uses pydantic-settings for type-safe configuration from environment variables.

All configuration is centralized here so that every external dependency
(database, rate provider, auth) is visible in one place and validated at
startup.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Relational store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite:///data/budget.db",
        description="SQLAlchemy database URL"
    )
    echo: bool = Field(
        default=False,
        description="Log every SQL statement"
    )


class ExchangeRateSettings(BaseSettings):
    """Upstream exchange rate provider configuration."""

    model_config = SettingsConfigDict(
        env_prefix="EXCHANGE_RATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    api_url: str = Field(
        default="https://api.exchangerate-api.com/v4/latest/USD",
        description="Endpoint returning USD based rates as JSON"
    )
    target_currency: str = Field(
        default="PEN",
        description="Key looked up under `rates` in the upstream payload"
    )
    cache_ttl_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="Freshness window for a cached rate"
    )
    default_rate: float = Field(
        default=3.75,
        gt=0,
        description="Rate used when the upstream cannot be reached"
    )
    request_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=60,
        description="HTTP timeout for the upstream request"
    )
    fetch_attempts: int = Field(
        default=2,
        ge=1,
        le=5,
        description="Attempts on connection errors before falling back"
    )
    retry_wait_seconds: float = Field(
        default=1.0,
        ge=0,
        le=10,
        description="Base of the exponential wait between fetch attempts"
    )

    @field_validator('target_currency')
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.strip().upper()


class AuthSettings(BaseSettings):
    """Authentication provider configuration."""

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    min_password_length: int = Field(
        default=6,
        ge=4,
        le=128,
        description="Minimum accepted password length"
    )
    session_ttl_hours: int = Field(
        default=24 * 7,
        ge=1,
        description="How long a sign-in session stays valid"
    )
    otp_ttl_minutes: int = Field(
        default=15,
        ge=1,
        le=24 * 60,
        description="How long a one-time sign-in link stays valid"
    )
    site_url: str = Field(
        default="http://localhost:8501",
        description="Base URL used when building one-time sign-in links"
    )


def _parse_default_groups(value: str) -> list[tuple[str, float, bool]]:
    groups = []
    for entry in value.split(","):
        entry = entry.strip()
        if not entry:
            continue
        parts = [part.strip() for part in entry.split(":")]
        if len(parts) != 3 or not parts[0]:
            raise ValueError(f"Expected name:percentage:can_spend, got '{entry}'")
        name, percentage, can_spend = parts
        try:
            share = float(percentage)
        except ValueError:
            raise ValueError(f"Percentage of '{name}' is not a number")
        if not 0 < share <= 100:
            raise ValueError(f"Percentage of '{name}' must be in (0, 100]")
        if can_spend.lower() not in ("true", "false"):
            raise ValueError(f"can_spend of '{name}' must be true or false")
        groups.append((name, share, can_spend.lower() == "true"))
    return groups


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
    log_level: str = Field(
        default="INFO",
        description="Root log level"
    )

    # New user defaults
    default_general_limit: float = Field(
        default=0.0,
        ge=0,
        description="General limit assigned to a new profile"
    )
    default_groups: str = Field(
        default="Needs:50:true,Wants:30:true,Savings:20:false",
        description="Comma-separated name:percentage:can_spend groups created on sign-up"
    )

    # Dashboard
    recent_transactions_limit: int = Field(
        default=5,
        ge=1,
        le=100,
        description="How many transactions the dashboard shows"
    )

    @field_validator('log_level')
    @classmethod
    def upper_level(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator('default_groups')
    @classmethod
    def check_default_groups(cls, v: str) -> str:
        _parse_default_groups(v)
        return v

    @property
    def default_groups_list(self) -> list[tuple[str, float, bool]]:
        """Parse default groups into (name, percentage, can_spend) tuples."""
        return _parse_default_groups(self.default_groups)


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

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def exchange_rate(self) -> ExchangeRateSettings:
        return ExchangeRateSettings()

    @property
    def auth(self) -> AuthSettings:
        return AuthSettings()

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


def validate_all_settings(settings: Optional[Settings] = None) -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus `<name>_error`
    entries for the ones that failed.
    """
    results = {}

    settings = settings or get_settings()

    for name in ("database", "exchange_rate", "auth", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
