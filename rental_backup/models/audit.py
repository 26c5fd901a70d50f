"""
Audit Models for Rental Backup

Every export, restore and auto-backup is logged for audit purposes.
This provides:
1. Traceability of what a restore actually wrote or skipped
2. Debugging information when a snapshot is rejected
3. A history of auto-backup failures that are never surfaced to the user

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each stage of an export or restore has its own event type.
    """
    # Export
    EXPORT_COMPLETED = "export_completed"
    EXPORT_FAILED = "export_failed"

    # Import / restore
    IMPORT_STARTED = "import_started"
    IMPORT_COMPLETED = "import_completed"
    IMPORT_FAILED = "import_failed"
    RECORD_SKIPPED = "record_skipped"
    INTEGRITY_WARNING = "integrity_warning"

    # Auto-backup
    AUTO_BACKUP_WRITTEN = "auto_backup_written"
    AUTO_BACKUP_FAILED = "auto_backup_failed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'snapshot', 'tenant', 'bill')"
    )
    entity_key: Optional[str] = Field(
        default=None,
        description="Natural key of the entity (room number, room/month, file path)"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one restore)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_key": self.entity_key,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.import_started(correlation_id, size_bytes)
        event = AuditEventBuilder.record_skipped("tenant", "101", ...)
    """

    @staticmethod
    def export_completed(
        totals: dict[str, int],
        size_bytes: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPORT_COMPLETED,
            entity_type="snapshot",
            correlation_id=correlation_id,
            description=(
                f"Snapshot exported: {totals.get('tenants', 0)} tenants, "
                f"{totals.get('bills', 0)} bills"
            ),
            details={
                "total_records": totals,
                "size_bytes": size_bytes,
            },
        )

    @staticmethod
    def export_failed(
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPORT_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="snapshot",
            correlation_id=correlation_id,
            description="Snapshot export failed",
            error_message=error_message,
        )

    @staticmethod
    def import_started(
        source: str,
        size_bytes: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_STARTED,
            entity_type="snapshot",
            entity_key=source,
            correlation_id=correlation_id,
            description=f"Snapshot import started from {source}",
            details={
                "size_bytes": size_bytes,
            },
            is_user_action=True,
        )

    @staticmethod
    def import_completed(
        success: bool,
        stats: dict[str, int],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_COMPLETED,
            severity=AuditSeverity.INFO if success else AuditSeverity.WARNING,
            entity_type="snapshot",
            correlation_id=correlation_id,
            description=(
                "Snapshot import completed"
                if success
                else "Snapshot import completed with storage errors"
            ),
            details={
                "success": success,
                "stats": stats,
            },
        )

    @staticmethod
    def import_failed(
        stage: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="snapshot",
            correlation_id=correlation_id,
            description=f"Snapshot import aborted during {stage}",
            error_message=error_message,
            details={
                "stage": stage,
            },
        )

    @staticmethod
    def record_skipped(
        entity_type: str,
        entity_key: str,
        error_type: str,
        reasons: list[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_key=entity_key,
            correlation_id=correlation_id,
            description=f"{entity_type.capitalize()} {entity_key} skipped: {error_type}",
            error_code=error_type,
            details={
                "reasons": reasons,
            },
        )

    @staticmethod
    def integrity_warning(
        orphaned_records: list[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INTEGRITY_WARNING,
            severity=AuditSeverity.WARNING,
            entity_type="snapshot",
            correlation_id=correlation_id,
            description=f"{len(orphaned_records)} records reference unknown tenants",
            details={
                "orphaned_records": orphaned_records,
            },
        )

    @staticmethod
    def auto_backup_written(
        path: str,
        size_bytes: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AUTO_BACKUP_WRITTEN,
            entity_type="auto_backup",
            entity_key=path,
            correlation_id=correlation_id,
            description="Auto-backup written",
            details={
                "size_bytes": size_bytes,
            },
        )

    @staticmethod
    def auto_backup_failed(
        path: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AUTO_BACKUP_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="auto_backup",
            entity_key=path,
            correlation_id=correlation_id,
            description="Auto-backup failed",
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
