"""
Configuration Management for Cashlia

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.

Remote backends are optional. A fresh install runs entirely offline,
so none of the Google settings are required fields.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Local store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CASHLIA_STORE_",
        extra="ignore"
    )

    backend: Literal["auto", "sqlite", "document"] = Field(
        default="auto",
        description="Storage backend. 'auto' prefers SQLite when the interpreter ships it"
    )
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding the database and preference files"
    )
    database_name: str = Field(
        default="cashlia_db",
        min_length=1,
        description="Base name of the database file (or document prefix)"
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="How long SQLite waits on a locked database"
    )
    preferences_file: str = Field(
        default="preferences.json",
        description="File name of the persisted preference store"
    )

    @property
    def database_path(self) -> Path:
        """Full path of the SQLite database file."""
        return self.data_dir / f"{self.database_name}.sqlite3"

    @property
    def preferences_path(self) -> Path:
        return self.data_dir / self.preferences_file


class SyncSettings(BaseSettings):
    """Sync engine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CASHLIA_SYNC_",
        extra="ignore"
    )

    drive_root_folder: str = Field(
        default="Cashlia",
        min_length=1,
        description="Top-level Drive folder holding all synced businesses"
    )
    poll_interval_seconds: float = Field(
        default=15.0,
        ge=0.05,
        le=3600,
        description="How often document-store subscriptions poll for changes"
    )


class GoogleDriveSettings(BaseSettings):
    """Google Drive remote configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_DRIVE_",
        extra="ignore"
    )

    credentials_path: Optional[str] = Field(
        default=None,
        description="Optional service account JSON. When unset, OAuth tokens from preferences are used"
    )
    client_id: Optional[str] = Field(
        default=None,
        description="OAuth client id used to refresh stored tokens"
    )
    client_secret: Optional[str] = Field(
        default=None,
        description="OAuth client secret used to refresh stored tokens"
    )
    token_uri: str = Field(
        default="https://oauth2.googleapis.com/token",
        description="OAuth token endpoint"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: Optional[str]) -> Optional[str]:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if v and not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google Drive credentials file not found at {v}. "
                "Make sure it exists before syncing."
            )
        return v


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets document-store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: Optional[str] = Field(
        default=None,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: Optional[str] = Field(
        default=None,
        description="ID of the spreadsheet that holds one worksheet per collection"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: Optional[str]) -> Optional[str]:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if v and not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before syncing."
            )
        return v

    @property
    def is_configured(self) -> bool:
        return bool(self.credentials_path and self.spreadsheet_id)


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
        description="Root log level for structured logging"
    )

    # Invitations
    invite_scheme: str = Field(
        default="cashlia",
        pattern=r"^[a-z][a-z0-9+.-]*$",
        description="URL scheme of invitation deep links"
    )
    invitation_ttl_days: int = Field(
        default=7,
        ge=1,
        le=90,
        description="How long an invitation token stays valid"
    )

    # Ledger presentation
    timezone: str = Field(
        default="UTC",
        description="Time zone for named date ranges and for entry times given without an offset"
    )
    currency_symbol: str = Field(
        default="₹",
        description="Currency symbol used in activity log descriptions"
    )

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown time zone: {v}")
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


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
    def store(self) -> StoreSettings:
        return StoreSettings()

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

    @property
    def google_drive(self) -> GoogleDriveSettings:
        return GoogleDriveSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

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

    for name in ("store", "sync", "google_drive", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
