"""
Snapshot Importer

Restores a snapshot into the store.

FLOW (one import operation):
    READING -> PARSING -> VALIDATING -> NORMALIZING
            -> INTEGRITY_CHECKING -> WRITING -> DONE

- READING / PARSING: unreadable bytes or unparsable JSON abort the
  whole operation (stage FAILED). Nothing has been written yet.
- VALIDATING: a snapshot missing a required collection is rejected
  before anything is deleted.
- NORMALIZING: any historical shape becomes canonical records; each
  record is then validated on its own. Invalid records are skipped.
- INTEGRITY_CHECKING: references to unknown rooms are reported, not
  blocked.
- WRITING: full replace. Prices, then every existing tenant is deleted
  (cascading to their bills), then tenants, overrides and bills are
  inserted. A failing write skips that record only.

DESIGN DECISION: `success` is False only when the store itself failed
(or the snapshot was rejected before writing). Skipped invalid records
are reported in `errors` but leave `success` True. This "best effort"
rule is deliberate and kept visible in one place: `_finish`.

The importer is not cancellation-safe: cancelled after the delete step,
the store is left without tenants. Callers must not cancel mid-import.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Optional, TypeVar
from uuid import UUID

import structlog
from pydantic import ValidationError

from rental_backup.audit import AuditLogger, create_correlation_id
from rental_backup.config import BackupSettings, get_settings
from rental_backup.models.results import (
    ImportErrorRecord,
    ImportErrorType,
    ImportResult,
    ImportStage,
    ImportStats,
    ValidationResult,
)
from rental_backup.models.snapshot import (
    Bill,
    BillDetail,
    MeterClass,
    MeterNameOverride,
    PriceSettings,
    SnapshotMetadata,
    Tenant,
    classify_meter,
)
from rental_backup.normalization.normalizer import FormatNormalizer, NormalizedSnapshot
from rental_backup.normalization.parser import SnapshotFormatError, parse_snapshot_bytes
from rental_backup.services.storage.interface import (
    MeterNameRejectedError,
    RentalStoreInterface,
)
from rental_backup.validation.validator import SnapshotValidator, to_decimal


logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class _AcceptedRecords:
    """Records that passed validation, as models plus their source dicts."""
    tenants: list[Tenant] = field(default_factory=list)
    bills: list[tuple[Bill, list[BillDetail]]] = field(default_factory=list)
    bill_records: list[dict] = field(default_factory=list)
    prices: Optional[PriceSettings] = None
    overrides: list[MeterNameOverride] = field(default_factory=list)
    override_records: list[dict] = field(default_factory=list)


@dataclass
class _ImportRun:
    """Mutable state of one import operation."""
    correlation_id: UUID
    stage: ImportStage = ImportStage.READING
    stats: ImportStats = field(default_factory=ImportStats)
    errors: list[ImportErrorRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    orphaned_records: list[str] = field(default_factory=list)

    def enter(self, stage: ImportStage) -> None:
        self.stage = stage
        logger.debug(
            "import_stage_entered",
            stage=stage.value,
            correlation_id=str(self.correlation_id),
        )


class SnapshotImporter:
    """
    Restores snapshots using a full-replace policy.
    """

    def __init__(
        self,
        store: RentalStoreInterface,
        validator: Optional[SnapshotValidator] = None,
        normalizer: Optional[FormatNormalizer] = None,
        settings: Optional[BackupSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().backup
        self._validator = validator or SnapshotValidator(self._settings)
        self._normalizer = normalizer or FormatNormalizer()
        self._audit_logger = audit_logger

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    async def import_snapshot(
        self,
        data: bytes,
        source: str = "upload",
        correlation_id: Optional[UUID] = None,
    ) -> ImportResult:
        """
        Import snapshot bytes.

        Never raises for bad input; every problem ends up in the result.
        """
        run = _ImportRun(correlation_id=correlation_id or create_correlation_id())

        run.enter(ImportStage.READING)
        if data is None:
            return await self._fail(run, "No snapshot data supplied")
        if self._audit_logger:
            await self._audit_logger.log_import_started(
                source=source,
                size_bytes=len(data),
                correlation_id=run.correlation_id,
            )

        run.enter(ImportStage.PARSING)
        try:
            raw = parse_snapshot_bytes(data, self._settings.max_snapshot_size_bytes)
        except SnapshotFormatError as e:
            return await self._fail(run, str(e))

        run.enter(ImportStage.VALIDATING)
        structure = self._validator.validate_snapshot(raw.payload)
        run.warnings.extend(structure.warnings)
        if not structure.is_valid:
            for message in structure.errors:
                self._add_error(run, ImportErrorType.DATA_VALIDATION_ERROR, message)
            return await self._finish(run, rejected=True, metadata=None)

        run.enter(ImportStage.NORMALIZING)
        try:
            normalized = self._normalizer.normalize(raw)
        except Exception as e:
            logger.exception("normalization_failed", correlation_id=str(run.correlation_id))
            self._add_error(run, ImportErrorType.UNKNOWN_ERROR, f"Normalization failed: {e}")
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type="normalization_failed",
                    error_message=str(e),
                    correlation_id=run.correlation_id,
                )
            return await self._finish(run, rejected=True, metadata=None)
        run.warnings.extend(normalized.notes)
        for room, reason in normalized.skipped:
            await self._skip(
                run, "bills", room,
                ImportErrorType.DATA_VALIDATION_ERROR,
                [reason],
            )

        accepted = await self._screen_records(run, normalized, raw.prices)

        run.enter(ImportStage.INTEGRITY_CHECKING)
        integrity = self._validator.check_integrity(
            room_numbers=[t.room_number for t in accepted.tenants],
            bills=accepted.bill_records,
            overrides=accepted.override_records,
        )
        if not integrity.is_intact:
            run.orphaned_records.extend(integrity.orphaned_records)
            run.warnings.extend(
                f"Orphaned record: {label}" for label in integrity.orphaned_records
            )
            if self._audit_logger:
                await self._audit_logger.log_integrity_warning(
                    orphaned_records=integrity.orphaned_records,
                    correlation_id=run.correlation_id,
                )

        run.enter(ImportStage.WRITING)
        await self._write(run, accepted)

        run.enter(ImportStage.DONE)
        return await self._finish(run, rejected=False, metadata=normalized.metadata)

    # =========================================================================
    # SCREENING (per-record validation)
    # =========================================================================

    async def _screen_records(
        self,
        run: _ImportRun,
        normalized: NormalizedSnapshot,
        raw_prices: Optional[dict[str, Any]],
    ) -> _AcceptedRecords:
        accepted = _AcceptedRecords()

        # Prices are validated in their original form so keyword format
        # problems are still visible after normalization
        if raw_prices is not None and normalized.prices is not None:
            result = self._validator.validate_prices(raw_prices)
            if await self._accept(run, result, "prices", "settings"):
                accepted.prices = self._build(
                    run, "prices", "settings",
                    lambda: PriceSettings.model_validate(normalized.prices),
                )

        known_rooms: set[str] = set()
        for record in normalized.tenants:
            key = self._record_key(record, "roomNumber")
            result = self._validator.validate_tenant(record, known_rooms)
            if not await self._accept(run, result, "tenant", key):
                continue
            tenant = self._build(run, "tenant", key, lambda: self._tenant_from(record))
            if tenant is not None:
                accepted.tenants.append(tenant)
                known_rooms.add(tenant.room_number)

        for record in normalized.meter_configs:
            key = self._record_key(record, "defaultName")
            result = self._validator.validate_meter_override(record)
            if not await self._accept(run, result, "meterConfig", key):
                continue
            if classify_meter(record.get("defaultName")) != MeterClass.EXTRA:
                await self._skip(
                    run, "meterConfig", key,
                    ImportErrorType.DATA_VALIDATION_ERROR,
                    [f"'{key}' is not an extra meter and cannot be renamed"],
                )
                continue
            override = self._build(
                run, "meterConfig", key,
                lambda: MeterNameOverride.model_validate(record),
            )
            if override is not None:
                accepted.overrides.append(override)
                accepted.override_records.append(record)

        seen_bills: set[tuple[str, str]] = set()
        for record in normalized.bills:
            key = f"{self._record_key(record, 'tenantRoomNumber')}/{self._record_key(record, 'month')}"
            result = self._validator.validate_bill(record, seen_bills)
            if not await self._accept(run, result, "bill", key):
                continue
            built = self._build(run, "bill", key, lambda: self._bill_from(record))
            if built is not None:
                accepted.bills.append(built)
                accepted.bill_records.append(record)
                seen_bills.add((built[0].tenant_room_number, built[0].month))

        return accepted

    async def _accept(
        self,
        run: _ImportRun,
        result: ValidationResult,
        entity_type: str,
        key: str,
    ) -> bool:
        """Record warnings; record and skip on errors."""
        run.warnings.extend(result.warnings)
        if result.is_valid:
            return True
        await self._skip(
            run, entity_type, key,
            ImportErrorType.DATA_VALIDATION_ERROR,
            result.errors,
        )
        return False

    def _build(
        self,
        run: _ImportRun,
        entity_type: str,
        key: str,
        factory: Callable[[], T],
    ) -> Optional[T]:
        """Construct a model; a construction failure skips the record."""
        try:
            return factory()
        except ValidationError as e:
            reasons = [f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()]
            self._add_error(
                run,
                ImportErrorType.DATA_VALIDATION_ERROR,
                f"{entity_type} {key} rejected: {'; '.join(reasons)}",
            )
        except Exception as e:
            logger.exception("record_build_failed", entity_type=entity_type, key=key)
            self._add_error(
                run,
                ImportErrorType.UNKNOWN_ERROR,
                f"{entity_type} {key} could not be read: {e}",
            )
        return None

    @staticmethod
    def _record_key(record: Any, name: str) -> str:
        if isinstance(record, dict) and record.get(name) not in (None, ""):
            return str(record[name])
        return "?"

    @staticmethod
    def _tenant_from(record: dict) -> Tenant:
        # Negative rent is a warning upstream; store it as 0
        rent = to_decimal(record.get("rent"))
        if rent is not None and rent < 0:
            record = {**record, "rent": Decimal("0")}
        return Tenant.model_validate(record)

    @staticmethod
    def _bill_from(record: dict) -> tuple[Bill, list[BillDetail]]:
        bill = Bill.model_validate({k: v for k, v in record.items() if k != "details"})
        details = [BillDetail.model_validate(d) for d in record.get("details") or []]
        return bill, details

    # =========================================================================
    # WRITING
    # =========================================================================

    async def _write(self, run: _ImportRun, accepted: _AcceptedRecords) -> None:
        if accepted.prices is not None:
            try:
                await self._store.save_price_settings(
                    accepted.prices.water_price_per_unit,
                    accepted.prices.electricity_price_per_unit,
                )
                await self._store.save_privacy_keywords(accepted.prices.privacy_keywords)
                run.stats.prices_imported = 1
            except Exception as e:
                await self._write_failed(run, "prices", "settings", e)

        # Full replace: nothing from the previous state survives
        try:
            existing = await self._store.list_tenants()
        except Exception as e:
            existing = []
            await self._write_failed(run, "tenants", "*", e)
        for tenant in existing:
            try:
                await self._store.delete_tenant(tenant)
            except Exception as e:
                await self._write_failed(run, "tenant", f"{tenant.room_number} (delete)", e)
        logger.info(
            "existing_tenants_deleted",
            count=len(existing),
            correlation_id=str(run.correlation_id),
        )

        for tenant in accepted.tenants:
            try:
                await self._store.insert_tenant(tenant)
                run.stats.tenants_imported += 1
            except Exception as e:
                await self._write_failed(run, "tenant", tenant.room_number, e)

        for override in accepted.overrides:
            try:
                await self._store.save_meter_name_override(
                    default_name=override.default_name,
                    custom_name=override.custom_name,
                    meter_type=override.meter_type,
                    tenant_room_number=override.tenant_room_number,
                )
                run.stats.meter_configs_imported += 1
            except Exception as e:
                await self._write_failed(run, "meterConfig", override.default_name, e)

        for bill, details in accepted.bills:
            try:
                await self._store.save_bill(bill, details)
                run.stats.bills_imported += 1
            except Exception as e:
                await self._write_failed(
                    run, "bill", f"{bill.tenant_room_number}/{bill.month}", e,
                )

    async def _write_failed(
        self,
        run: _ImportRun,
        entity_type: str,
        key: str,
        error: Exception,
    ) -> None:
        # A refused meter rename is a data problem, not a storage failure
        if isinstance(error, MeterNameRejectedError):
            error_type = ImportErrorType.DATA_VALIDATION_ERROR
        else:
            error_type = ImportErrorType.DATABASE_ERROR
            logger.error(
                "store_write_failed",
                entity_type=entity_type,
                key=key,
                error=str(error),
                correlation_id=str(run.correlation_id),
            )
        await self._skip(run, entity_type, key, error_type, [str(error)])

    # =========================================================================
    # RESULT
    # =========================================================================

    def _add_error(
        self,
        run: _ImportRun,
        error_type: ImportErrorType,
        message: str,
        details: Optional[str] = None,
    ) -> None:
        run.errors.append(ImportErrorRecord(type=error_type, message=message, details=details))

    async def _skip(
        self,
        run: _ImportRun,
        entity_type: str,
        key: str,
        error_type: ImportErrorType,
        reasons: list[str],
    ) -> None:
        self._add_error(
            run,
            error_type,
            f"{entity_type} {key} skipped: {'; '.join(reasons)}",
            details=run.stage.value,
        )
        logger.warning(
            "record_skipped",
            entity_type=entity_type,
            key=key,
            error_type=error_type.value,
            reasons=reasons,
            correlation_id=str(run.correlation_id),
        )
        if self._audit_logger:
            await self._audit_logger.log_record_skipped(
                entity_type=entity_type,
                entity_key=key,
                error_type=error_type.value,
                reasons=reasons,
                correlation_id=run.correlation_id,
            )

    async def _fail(self, run: _ImportRun, message: str) -> ImportResult:
        """Abort during READING or PARSING."""
        failed_stage = run.stage
        run.enter(ImportStage.FAILED)
        self._add_error(run, ImportErrorType.FILE_FORMAT_ERROR, message, details=failed_stage.value)
        run.stats.errors_encountered = len(run.errors)

        logger.error(
            "import_failed",
            stage=failed_stage.value,
            error=message,
            correlation_id=str(run.correlation_id),
        )
        if self._audit_logger:
            await self._audit_logger.log_import_failed(
                stage=failed_stage.value,
                error_message=message,
                correlation_id=run.correlation_id,
            )
        return ImportResult(
            success=False,
            message=f"Import failed: {message}",
            stage=ImportStage.FAILED,
            stats=run.stats,
            errors=run.errors,
        )

    async def _finish(
        self,
        run: _ImportRun,
        rejected: bool,
        metadata: Optional[SnapshotMetadata],
    ) -> ImportResult:
        run.stats.errors_encountered = len(run.errors)
        storage_errors = sum(
            1 for e in run.errors if e.type == ImportErrorType.DATABASE_ERROR
        )
        success = not rejected and storage_errors == 0

        if rejected:
            message = "Import rejected: snapshot structure is invalid, nothing was written"
        elif not success:
            message = f"Import partially failed: {storage_errors} records could not be stored"
        elif run.errors:
            message = f"Import succeeded; {len(run.errors)} records were skipped"
        else:
            message = "Import succeeded"

        logger.info(
            "import_finished",
            success=success,
            stage=run.stage.value,
            errors=len(run.errors),
            warnings=len(run.warnings),
            correlation_id=str(run.correlation_id),
            **run.stats.model_dump(),
        )
        if self._audit_logger:
            await self._audit_logger.log_import_completed(
                success=success,
                stats=run.stats.model_dump(),
                correlation_id=run.correlation_id,
            )

        return ImportResult(
            success=success,
            message=message,
            stage=run.stage,
            stats=run.stats,
            errors=run.errors,
            warnings=run.warnings,
            orphaned_records=run.orphaned_records,
            metadata=metadata,
        )
