"""
Configuration Management for Rental Backup

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every component accepts an injected settings object and falls back to
get_settings() when none is given, so tests can point the auto-backup
folder at a temporary directory without touching the environment.
"""

from functools import lru_cache
from pathlib import Path
from typing import Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_BACKUP_FOLDER = "租房管家备份"
DEFAULT_BACKUP_FILENAME = "租房管家自动备份.json"


class BackupSettings(BaseSettings):
    """Snapshot export/import and auto-backup configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RENTAL_BACKUP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Auto-backup location (one fixed file, always overwritten)
    auto_backup_dir: Path = Field(
        default_factory=lambda: Path.home() / "Documents" / DEFAULT_BACKUP_FOLDER,
        description="Folder holding the fixed auto-backup file"
    )
    auto_backup_filename: str = Field(
        default=DEFAULT_BACKUP_FILENAME,
        description="Name of the fixed auto-backup file"
    )
    auto_backup_enabled: bool = Field(
        default=True,
        description="Write an auto-backup after bill saves"
    )
    auto_backup_after_restore: bool = Field(
        default=True,
        description="Write a fresh auto-backup after a successful import"
    )

    # Snapshot metadata
    app_version: str = Field(
        default="1.0.0",
        description="Application version written into snapshot metadata"
    )
    data_structure_version: str = Field(
        default="2.0",
        description="Data structure version written into snapshot metadata"
    )
    supported_structure_versions: str = Field(
        default="1.0,2.0",
        description="Comma-separated list of known data structure versions"
    )

    # Serialization
    json_indent: int = Field(
        default=2,
        ge=0,
        le=8,
        description="Indentation of exported JSON (0 = compact)"
    )
    max_snapshot_size_mb: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Maximum accepted snapshot size in MB"
    )

    # Fallback prices when the store has no price row yet
    default_water_price: float = Field(
        default=4.0,
        ge=0.0,
        description="Default water price per unit"
    )
    default_electricity_price: float = Field(
        default=1.0,
        ge=0.0,
        description="Default electricity price per unit"
    )

    max_custom_name_length: int = Field(
        default=20,
        ge=1,
        le=100,
        description="Maximum length of a custom meter name"
    )

    @field_validator('auto_backup_filename')
    @classmethod
    def validate_filename(cls, v: str) -> str:
        """The auto-backup target must be a bare filename, not a path."""
        v = v.strip()
        if not v or "/" in v or "\\" in v:
            raise ValueError("auto_backup_filename must be a plain file name")
        return v

    @property
    def supported_versions_list(self) -> list[str]:
        """Get supported data structure versions as a list."""
        return [
            version.strip()
            for version in self.supported_structure_versions.split(",")
            if version.strip()
        ]

    @property
    def max_snapshot_size_bytes(self) -> int:
        """Get max snapshot size in bytes."""
        return self.max_snapshot_size_mb * 1024 * 1024

    @property
    def auto_backup_path(self) -> Path:
        """Full path of the fixed auto-backup file."""
        return self.auto_backup_dir / self.auto_backup_filename


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Logging
    debug_mode: bool = Field(
        default=False,
        description="Log at DEBUG regardless of log_level"
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level for the stdlib logger behind structlog"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


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
    def backup(self) -> BackupSettings:
        return BackupSettings()

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


def validate_all_settings() -> dict[str, Union[bool, str]]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus an error string
    under "<name>_error" for each failed check.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    try:
        backup = settings.backup
        results["backup"] = True
        if backup.data_structure_version not in backup.supported_versions_list:
            results["backup"] = False
            results["backup_error"] = (
                f"data_structure_version {backup.data_structure_version} "
                "is not listed in supported_structure_versions"
            )
    except Exception as e:
        results["backup"] = False
        results["backup_error"] = str(e)

    try:
        _ = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)

    return results
