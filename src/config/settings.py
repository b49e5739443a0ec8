"""
Configuration Management for the Family Expense Tracker

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Retry counts, cooldown windows and store query limits are tuning parameters,
so they live next to the storage credentials instead of at call sites.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    users_sheet_name: str = Field(
        default="Users",
        description="Name of the sheet for the account directory"
    )
    expenses_sheet_name: str = Field(
        default="Expenses",
        description="Name of the sheet for expenses"
    )
    budgets_sheet_name: str = Field(
        default="Budgets",
        description="Name of the sheet for budgets"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class SyncSettings(BaseSettings):
    """Expense/budget synchronization tuning."""

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        extra="ignore"
    )

    fetch_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per fetch before giving up"
    )
    fetch_retry_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Fixed wait between fetch attempts"
    )
    fetch_cooldown_seconds: float = Field(
        default=3.0,
        ge=0.0,
        description="Window after a completed fetch during which new fetches return the cache"
    )
    expense_query_limit: int = Field(
        default=100,
        ge=1,
        description="Maximum expense records per store query"
    )
    user_id_batch_size: int = Field(
        default=10,
        ge=1,
        le=10,
        description="Maximum user ids per 'in' filter (document store limit)"
    )


class AuthSettings(BaseSettings):
    """Account and credential rules."""

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        extra="ignore"
    )

    min_password_length: int = Field(
        default=6,
        ge=1,
        description="Shortest password accepted at registration"
    )
    max_failed_logins: int = Field(
        default=5,
        ge=1,
        description="Failed logins before the account is temporarily locked"
    )
    lockout_seconds: float = Field(
        default=300.0,
        ge=0.0,
        description="How long a locked email stays locked"
    )
    password_hash_iterations: int = Field(
        default=120_000,
        ge=1,
        description="PBKDF2 iterations passed to werkzeug for stored credentials"
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

    # Export
    csv_date_format: str = Field(
        default="%m/%d/%Y",
        description="strftime pattern for the Date column of CSV exports"
    )
    export_filename_prefix: str = Field(
        default="expenses",
        description="Prefix of generated export file names"
    )


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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

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

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("google_sheets", "sync", "auth", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
