"""
Auto-Backup Scheduler

After selected mutations (a bill save, a completed restore) the whole
store is exported to one fixed file, overwriting the previous one.
There is no rotation and no retry.

DESIGN DECISION: An auto-backup failure must never interrupt the
mutation that triggered it. perform_backup() logs every failure and
returns False; it never raises.
"""

import os
from pathlib import Path
from typing import Optional
from uuid import UUID

import structlog

from rental_backup.audit import AuditLogger
from rental_backup.backup.exporter import SnapshotExporter
from rental_backup.config import BackupSettings, get_settings


logger = structlog.get_logger(__name__)


class AutoBackupNotFoundError(FileNotFoundError):
    """No auto-backup file has been written yet."""
    pass


class AutoBackupScheduler:
    """
    Writes the fixed auto-backup file.
    """

    def __init__(
        self,
        exporter: SnapshotExporter,
        settings: Optional[BackupSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._exporter = exporter
        self._settings = settings or get_settings().backup
        self._audit_logger = audit_logger

    @property
    def path(self) -> Path:
        return self._settings.auto_backup_path

    async def perform_backup(
        self,
        reason: str = "manual",
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Export the store and overwrite the auto-backup file.

        Returns:
            True if the file was written, False if disabled or failed
        """
        if not self._settings.auto_backup_enabled:
            logger.debug("auto_backup_disabled", reason=reason)
            return False

        path = self.path
        try:
            data = await self._exporter.export_snapshot(correlation_id)
            path.parent.mkdir(parents=True, exist_ok=True)
            # Write beside the target, then swap, so a crash never leaves half a file
            tmp_path = path.with_name(path.name + ".tmp")
            tmp_path.write_bytes(data)
            os.replace(tmp_path, path)
        except Exception as e:
            logger.exception("auto_backup_failed", path=str(path), reason=reason)
            if self._audit_logger:
                await self._audit_logger.log_auto_backup_failed(
                    path=str(path),
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            return False

        logger.info(
            "auto_backup_written",
            path=str(path),
            reason=reason,
            size_bytes=len(data),
        )
        if self._audit_logger:
            await self._audit_logger.log_auto_backup_written(
                path=str(path),
                size_bytes=len(data),
                correlation_id=correlation_id,
            )
        return True

    def latest_backup(self) -> Optional[Path]:
        """Path of the auto-backup file, or None if none exists."""
        path = self.path
        return path if path.is_file() else None

    def read_latest(self) -> bytes:
        """
        Read the auto-backup file.

        Raises:
            AutoBackupNotFoundError: If no auto-backup exists
            OSError: If the file exists but cannot be read
        """
        path = self.latest_backup()
        if path is None:
            raise AutoBackupNotFoundError(f"No auto-backup at {self.path}")
        return path.read_bytes()
