"""
Main Orchestrator for Rental Backup

This module ties together all the components and defines the
end-to-end flows for:
1. Export (store -> snapshot bytes, or a timestamped file)
2. Restore (snapshot bytes or the auto-backup file -> store)
3. Bill save with auto-backup

DESIGN DECISION: The orchestrator enforces the boundaries:
- Restores always go through the full pipeline (parse, validate, normalize)
- Auto-backup runs after the mutation and can never undo or fail it
- Every step is audited

The surrounding application serializes calls; nothing here locks.
"""

from pathlib import Path
from typing import Optional
from uuid import UUID

import structlog

from rental_backup.audit import AuditLogger, create_correlation_id
from rental_backup.backup import (
    AutoBackupNotFoundError,
    AutoBackupScheduler,
    SnapshotExporter,
    SnapshotImporter,
)
from rental_backup.config import BackupSettings, get_settings
from rental_backup.models.results import (
    ImportErrorRecord,
    ImportErrorType,
    ImportResult,
    ImportStage,
    ImportStats,
)
from rental_backup.models.snapshot import Bill, BillDetail
from rental_backup.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryRentalStore,
    RentalStoreInterface,
)


logger = structlog.get_logger(__name__)


class BackupService:
    """
    Entry points of the backup engine.

    Flow:
    1. export_snapshot -> bytes for the caller to store wherever it likes
    2. import_snapshot -> ImportResult, then a fresh auto-backup
    3. import_auto_backup -> same, reading the fixed auto-backup file
    4. save_bill -> store write, then auto-backup
    """

    def __init__(
        self,
        store: RentalStoreInterface,
        settings: Optional[BackupSettings] = None,
        exporter: Optional[SnapshotExporter] = None,
        importer: Optional[SnapshotImporter] = None,
        auto_backup: Optional[AutoBackupScheduler] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().backup
        self._audit_logger = audit_logger
        self._exporter = exporter or SnapshotExporter(
            store,
            settings=self._settings,
            audit_logger=audit_logger,
        )
        self._importer = importer or SnapshotImporter(
            store,
            settings=self._settings,
            audit_logger=audit_logger,
        )
        self._auto_backup = auto_backup or AutoBackupScheduler(
            self._exporter,
            settings=self._settings,
            audit_logger=audit_logger,
        )

    @property
    def auto_backup(self) -> AutoBackupScheduler:
        return self._auto_backup

    async def export_snapshot(self) -> bytes:
        """Export the whole store as snapshot bytes."""
        return await self._exporter.export_snapshot()

    async def export_to_directory(self, directory: Path) -> Path:
        """Write a timestamped manual backup file into directory."""
        return await self._exporter.export_to_directory(directory)

    async def import_snapshot(
        self,
        data: bytes,
        source: str = "upload",
    ) -> ImportResult:
        """
        Restore from snapshot bytes (full replace).

        A successful restore is followed by an auto-backup so the
        fixed backup file reflects the restored state.
        """
        correlation_id = create_correlation_id()
        result = await self._importer.import_snapshot(
            data,
            source=source,
            correlation_id=correlation_id,
        )
        if result.success and self._settings.auto_backup_after_restore:
            await self._auto_backup.perform_backup(
                reason="restore",
                correlation_id=correlation_id,
            )
        return result

    async def import_auto_backup(self) -> ImportResult:
        """
        Restore from the fixed auto-backup file.

        A missing or unreadable file is a failed import, not an exception.
        """
        try:
            data = self._auto_backup.read_latest()
        except AutoBackupNotFoundError as e:
            return await self._reading_failed(str(e))
        except OSError as e:
            logger.exception("auto_backup_read_failed", path=str(self._auto_backup.path))
            return await self._reading_failed(f"Cannot read auto-backup: {e}")

        # Restoring from the auto-backup must not overwrite it with itself
        correlation_id = create_correlation_id()
        return await self._importer.import_snapshot(
            data,
            source=str(self._auto_backup.path),
            correlation_id=correlation_id,
        )

    async def save_bill(
        self,
        bill: Bill,
        details: list[BillDetail],
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Save a bill, then refresh the auto-backup.

        Store errors propagate to the caller. Auto-backup errors do not.

        Returns:
            Whether the auto-backup was written
        """
        await self._store.save_bill(bill, details)
        return await self._auto_backup.perform_backup(
            reason="bill_saved",
            correlation_id=correlation_id,
        )

    async def _reading_failed(self, message: str) -> ImportResult:
        logger.error("import_failed", stage=ImportStage.READING.value, error=message)
        if self._audit_logger:
            await self._audit_logger.log_import_failed(
                stage=ImportStage.READING.value,
                error_message=message,
                correlation_id=create_correlation_id(),
            )
        return ImportResult(
            success=False,
            message=f"Import failed: {message}",
            stage=ImportStage.FAILED,
            stats=ImportStats(errors_encountered=1),
            errors=[
                ImportErrorRecord(
                    type=ImportErrorType.FILE_FORMAT_ERROR,
                    message=message,
                    details=ImportStage.READING.value,
                )
            ],
        )


def create_backup_service(
    store: Optional[RentalStoreInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
    settings: Optional[BackupSettings] = None,
) -> BackupService:
    """
    Factory function to create a wired BackupService.

    Args:
        store: The application's store. Defaults to an in-memory store,
               useful for inspecting a snapshot without touching real data.
        audit_storage: Where audit events are persisted. Defaults to memory.
        settings: Backup settings. Defaults to get_settings().backup.

    Returns:
        A ready BackupService
    """
    settings = settings or get_settings().backup
    if store is None:
        store = InMemoryRentalStore(max_custom_name_length=settings.max_custom_name_length)
    audit_logger = AuditLogger(audit_storage or InMemoryAuditStorage())
    return BackupService(store, settings=settings, audit_logger=audit_logger)
