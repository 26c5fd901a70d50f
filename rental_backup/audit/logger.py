"""
Audit Logger

DESIGN DECISION: Every export, restore and auto-backup is logged.
This provides:
1. Traceability of skipped records during a best-effort restore
2. Debugging capability for rejected snapshots
3. A record of auto-backup failures, which never reach the user

The audit logger:
- Is async so it composes with the async store
- Gracefully handles failures (doesn't crash the restore if logging fails)
- Supports correlation IDs to trace all events of one operation
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from rental_backup.config import get_settings
from rental_backup.models.audit import AuditEvent, AuditEventBuilder
from rental_backup.services.storage.interface import AuditStorageInterface


def configure_logging(level: Optional[str] = None) -> None:
    """
    Route structlog through the stdlib root logger at the configured level.

    `level` defaults to APP_LOG_LEVEL; APP_DEBUG_MODE forces DEBUG.
    """
    if level is None:
        app = get_settings().app
        level = "DEBUG" if app.debug_mode else app.log_level

    logging.basicConfig(format="%(message)s", level=level)
    logging.getLogger().setLevel(level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(ensure_ascii=False)
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Configure structlog for local logging
configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit storage backend, when one is injected
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_export_completed(
        self,
        totals: dict[str, int],
        size_bytes: int,
        correlation_id: UUID,
    ) -> None:
        """Log a finished export."""
        event = AuditEventBuilder.export_completed(
            totals=totals,
            size_bytes=size_bytes,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_export_failed(
        self,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a failed export."""
        event = AuditEventBuilder.export_failed(
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_import_started(
        self,
        source: str,
        size_bytes: int,
        correlation_id: UUID,
    ) -> None:
        """Log the start of a restore."""
        event = AuditEventBuilder.import_started(
            source=source,
            size_bytes=size_bytes,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_import_completed(
        self,
        success: bool,
        stats: dict[str, int],
        correlation_id: UUID,
    ) -> None:
        """Log the end of a restore that reached the write stage."""
        event = AuditEventBuilder.import_completed(
            success=success,
            stats=stats,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_import_failed(
        self,
        stage: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log an aborted restore."""
        event = AuditEventBuilder.import_failed(
            stage=stage,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_record_skipped(
        self,
        entity_type: str,
        entity_key: str,
        error_type: str,
        reasons: list[str],
        correlation_id: UUID,
    ) -> None:
        """Log a record rejected during restore."""
        event = AuditEventBuilder.record_skipped(
            entity_type=entity_type,
            entity_key=entity_key,
            error_type=error_type,
            reasons=reasons,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_integrity_warning(
        self,
        orphaned_records: list[str],
        correlation_id: UUID,
    ) -> None:
        """Log orphaned references found before writing."""
        event = AuditEventBuilder.integrity_warning(
            orphaned_records=orphaned_records,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_auto_backup_written(
        self,
        path: str,
        size_bytes: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.auto_backup_written(
            path=path,
            size_bytes=size_bytes,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_auto_backup_failed(
        self,
        path: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.auto_backup_failed(
            path=path,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of an export or restore.
    Pass it through all subsequent operations.
    """
    return uuid4()
