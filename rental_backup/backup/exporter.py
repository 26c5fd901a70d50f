"""
Snapshot Exporter

Walks the store's four collections and writes a snapshot.

Bills are always written in the nested room -> month shape so that
older app versions can still read new backups. Extra meters are
written under their *current* display name, resolved through the
override lookup, so a restored snapshot keeps the names the user sees.

DESIGN DECISION: Export is lossless for everything the model tracks.
Details the nested shape has no dedicated slot for (a second rent line,
"other" charges) go into `extraFees` with their type preserved.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional
from uuid import UUID

import structlog

from rental_backup.audit import AuditLogger, create_correlation_id
from rental_backup.config import BackupSettings, get_settings
from rental_backup.models.snapshot import (
    RENT_DETAIL_NAME,
    BillDetail,
    BillWithDetails,
    DetailType,
    MeterClass,
    PriceSettings,
    Snapshot,
    SnapshotMetadata,
    classify_meter,
)
from rental_backup.services.storage.interface import RentalStoreInterface


logger = structlog.get_logger(__name__)

MANUAL_EXPORT_PATTERN = "complete_backup_%Y-%m-%d_%H-%M-%S.json"


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, datetime):
        return _to_millis(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _is_extra_meter(detail: BillDetail) -> bool:
    """Extra-typed details with readings or a meter name are meters, not fees."""
    if detail.type in (DetailType.WATER, DetailType.ELECTRICITY):
        return True
    if detail.type != DetailType.EXTRA:
        return False
    has_readings = any(
        v is not None
        for v in (detail.previous_reading, detail.current_reading, detail.usage)
    )
    return has_readings or classify_meter(detail.name) == MeterClass.EXTRA


def _meter_entry(detail: BillDetail) -> dict[str, Any]:
    entry: dict[str, Any] = {"amount": detail.amount}
    if detail.previous_reading is not None:
        entry["previous"] = detail.previous_reading
    if detail.current_reading is not None:
        entry["current"] = detail.current_reading
    if detail.usage is not None:
        entry["usage"] = detail.usage
    if detail.price_per_unit is not None:
        entry["pricePerUnit"] = detail.price_per_unit
    return entry


def encode_nested_bill(bill: BillWithDetails) -> dict[str, Any]:
    """
    Write one bill in the legacy nested shape.

    The nested shape has fixed slots, so detail order is not kept. A
    restored bill lists its details as main water, main electricity,
    extra meters, fees, then the primary rent line.
    """
    entry: dict[str, Any] = {
        "month": bill.bill.month,
        "totalAmount": bill.bill.total_amount,
        "createdDate": _to_millis(bill.bill.created_date),
    }
    extra_meters: list[dict[str, Any]] = []
    extra_fees: list[dict[str, Any]] = []

    for detail in bill.details:
        main_slot = detail.type.value if detail.type in (DetailType.WATER, DetailType.ELECTRICITY) else None
        if (
            main_slot
            and main_slot not in entry
            and classify_meter(detail.name) == MeterClass.MAIN
        ):
            entry[main_slot] = _meter_entry(detail)
        elif _is_extra_meter(detail):
            extra_meters.append({
                "type": detail.type.value,
                "name": detail.name,
                **_meter_entry(detail),
            })
        elif (
            detail.type == DetailType.RENT
            and "rent" not in entry
            and detail.amount > 0
            and detail.name == RENT_DETAIL_NAME
        ):
            entry["rent"] = detail.amount
        else:
            extra_fees.append({
                "type": detail.type.value,
                "name": detail.name,
                "amount": detail.amount,
            })

    if extra_meters:
        entry["extraMeters"] = extra_meters
    if extra_fees:
        entry["extraFees"] = extra_fees
    return entry


def snapshot_to_wire(snapshot: Snapshot) -> dict[str, Any]:
    """
    Convert a Snapshot to its JSON document.

    Duplicate (room, month) bills cannot both live in the nested shape;
    the later one wins and the collision is logged.
    """
    bills: dict[str, dict[str, Any]] = {}
    for bill in snapshot.bills:
        room = bills.setdefault(bill.bill.tenant_room_number, {})
        if bill.bill.month in room:
            logger.warning(
                "export_bill_collision",
                room_number=bill.bill.tenant_room_number,
                month=bill.bill.month,
            )
        room[bill.bill.month] = encode_nested_bill(bill)

    metadata = snapshot.metadata
    document: dict[str, Any] = {
        "metadata": {
            "version": metadata.format_version,
            "exportTime": _to_millis(metadata.export_timestamp),
            "appVersion": metadata.app_version,
            "dataStructureVersion": metadata.schema_version,
            "totalRecords": metadata.total_records,
        },
        "tenants": [
            {"roomNumber": t.room_number, "name": t.name, "rent": t.rent}
            for t in snapshot.tenants
        ],
        "bills": bills,
        "meterConfigs": [
            {
                "meterType": o.meter_type,
                "defaultName": o.default_name,
                "customName": o.custom_name,
                "tenantRoomNumber": o.tenant_room_number,
                "isActive": o.is_active,
                "createdDate": _to_millis(o.created_date),
                "updatedDate": _to_millis(o.updated_date),
            }
            for o in snapshot.meter_overrides
        ],
    }
    if snapshot.prices is not None:
        document["prices"] = {
            "waterPrice": snapshot.prices.water_price_per_unit,
            "electricityPrice": snapshot.prices.electricity_price_per_unit,
            "privacyKeywords": list(snapshot.prices.privacy_keywords),
        }
    return document


class SnapshotExporter:
    """
    Builds and serializes snapshots from a store.
    """

    def __init__(
        self,
        store: RentalStoreInterface,
        settings: Optional[BackupSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().backup
        self._audit_logger = audit_logger

    async def build_snapshot(self) -> Snapshot:
        """
        Read every collection and freeze it into a Snapshot.

        Extra-meter details carry their resolved display names.
        """
        tenants = await self._store.list_tenants()
        bills = await self._store.list_bills_with_details()
        overrides = await self._store.list_meter_name_overrides()
        prices = await self._store.get_price_settings()

        if prices is None:
            prices = PriceSettings(
                water_price_per_unit=Decimal(str(self._settings.default_water_price)),
                electricity_price_per_unit=Decimal(str(self._settings.default_electricity_price)),
            )

        resolved = [await self._resolve_display_names(bill) for bill in bills]

        metadata = SnapshotMetadata(
            format_version="1.0",
            export_timestamp=datetime.now(timezone.utc),
            app_version=self._settings.app_version,
            schema_version=self._settings.data_structure_version,
            total_records={
                "tenants": len(tenants),
                "bills": len(resolved),
                "meterConfigs": len(overrides),
            },
        )
        return Snapshot(
            metadata=metadata,
            tenants=tenants,
            bills=resolved,
            prices=prices,
            meter_overrides=overrides,
        )

    async def _resolve_display_names(self, bill: BillWithDetails) -> BillWithDetails:
        details = []
        for detail in bill.details:
            if detail.is_metered and classify_meter(detail.name) == MeterClass.EXTRA:
                name = await self._store.resolve_meter_display_name(
                    detail.name,
                    bill.bill.tenant_room_number,
                )
                if name != detail.name:
                    detail = detail.model_copy(update={"name": name})
            details.append(detail)
        return BillWithDetails(bill=bill.bill, details=details)

    def serialize(self, snapshot: Snapshot) -> bytes:
        indent = self._settings.json_indent or None
        text = json.dumps(
            snapshot_to_wire(snapshot),
            ensure_ascii=False,
            indent=indent,
            default=_json_default,
        )
        return text.encode("utf-8")

    async def export_snapshot(self, correlation_id: Optional[UUID] = None) -> bytes:
        """
        Export the whole store as snapshot bytes.

        Raises:
            StorageError: If the store cannot be read
        """
        correlation_id = correlation_id or create_correlation_id()
        try:
            snapshot = await self.build_snapshot()
            data = self.serialize(snapshot)
        except Exception as e:
            logger.error("export_failed", error=str(e), correlation_id=str(correlation_id))
            if self._audit_logger:
                await self._audit_logger.log_export_failed(
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        logger.info(
            "export_completed",
            size_bytes=len(data),
            **snapshot.metadata.total_records,
        )
        if self._audit_logger:
            await self._audit_logger.log_export_completed(
                totals=snapshot.metadata.total_records,
                size_bytes=len(data),
                correlation_id=correlation_id,
            )
        return data

    async def export_to_directory(self, directory: Path) -> Path:
        """
        Write a timestamped manual backup into directory.

        Returns:
            Path of the written file
        """
        data = await self.export_snapshot()
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / datetime.now().strftime(MANUAL_EXPORT_PATTERN)
        path.write_bytes(data)
        logger.info("manual_export_written", path=str(path), size_bytes=len(data))
        return path
