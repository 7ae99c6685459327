"""Configuration package."""

from cashlia.config.settings import (
    AppSettings,
    GoogleDriveSettings,
    GoogleSheetsSettings,
    Settings,
    StoreSettings,
    SyncSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleDriveSettings",
    "GoogleSheetsSettings",
    "Settings",
    "StoreSettings",
    "SyncSettings",
    "get_settings",
    "validate_all_settings",
]
