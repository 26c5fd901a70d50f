"""Configuration package."""

from rental_backup.config.settings import (
    AppSettings,
    BackupSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "BackupSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
