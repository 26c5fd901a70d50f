"""Snapshot export, import and auto-backup package."""

from rental_backup.backup.exporter import (
    SnapshotExporter,
    encode_nested_bill,
    snapshot_to_wire,
)
from rental_backup.backup.importer import SnapshotImporter
from rental_backup.backup.auto_backup import (
    AutoBackupNotFoundError,
    AutoBackupScheduler,
)

__all__ = [
    "AutoBackupNotFoundError",
    "AutoBackupScheduler",
    "SnapshotExporter",
    "SnapshotImporter",
    "encode_nested_bill",
    "snapshot_to_wire",
]
