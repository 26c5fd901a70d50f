"""
Format Normalizer

Snapshots have been written in several shapes over the app's history:

CURRENT ("v2"):
    "bills": [{tenantRoomNumber, month, totalAmount, createdDate,
               details: [{type, name, amount, pricePerUnit,
                          previousReading, currentReading, usage}]}]

LEGACY NESTED (also what export writes, for older readers):
    "bills": {room: {month: {water: {...}, electricity: {...},
                             extraMeters: [...], extraFees: [...],
                             rent, totalAmount | total, createdDate,
                             meters: [...], extraData: {...}}}}

Tenants may use `room_number` instead of `roomNumber`; prices may live
under `price` with `water`/`electricity` keys; months may be written as
2024/03, 2024年03月 or 202403.

DESIGN DECISION: The normalizer produces plain canonical dicts, not
models. The validator then checks those dicts record by record, so a
single malformed record can be reported and skipped instead of failing
model construction for the whole snapshot.
"""

import json
import re
from decimal import Decimal
from typing import Any, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError

from rental_backup.models.raw import (
    BillsShape,
    FlatBills,
    NestedBills,
    RawSnapshot,
)
from rental_backup.models.snapshot import (
    EXTRA_FEE_NAME,
    MAIN_ELECTRICITY_METER,
    MAIN_WATER_METER,
    METERED_TYPES,
    OTHER_DETAIL_NAME,
    RENT_DETAIL_NAME,
    DetailType,
    SnapshotMetadata,
)
from rental_backup.validation.validator import first_present, to_decimal


logger = structlog.get_logger(__name__)


_MONTH_DASH = re.compile(r"^\d{4}-\d{2}$")
_MONTH_SLASH = re.compile(r"^(\d{4})/(\d{2})$")
_MONTH_CHINESE = re.compile(r"^(\d{4})年(\d{2})月$")
_MONTH_COMPACT = re.compile(r"^(\d{4})(\d{2})$")
_NON_DIGITS = re.compile(r"\D")

_METERED_VALUES = {t.value for t in METERED_TYPES}
_FEE_TYPES = {DetailType.EXTRA.value, DetailType.RENT.value, DetailType.OTHER.value}


def coerce_month(value: Any) -> Any:
    """
    Coerce a month string to YYYY-MM.

    Accepts YYYY-MM, YYYY/MM, YYYY年MM月 and YYYYMM. Anything else
    is stripped to digits; six or more digits give year + month.
    Otherwise the input is returned unchanged so validation rejects it.
    """
    if not isinstance(value, str):
        return value

    text = value.strip()
    if _MONTH_DASH.match(text):
        return text

    for pattern in (_MONTH_SLASH, _MONTH_CHINESE, _MONTH_COMPACT):
        match = pattern.match(text)
        if match:
            return f"{match.group(1)}-{match.group(2)}"

    digits = _NON_DIGITS.sub("", text)
    if len(digits) >= 6:
        return f"{digits[:4]}-{digits[4:6]}"

    return value


def _number(value: Any) -> Any:
    """Decimal when convertible; otherwise the raw value for the validator to reject."""
    if value is None:
        return None
    number = to_decimal(value)
    return number if number is not None else value


def _price_per_unit(value: Any) -> Optional[Decimal]:
    # Zero/absent prices are stored as "no price"
    number = to_decimal(value)
    return number if number is not None and number > 0 else None


def _strip(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def _text(value: Any) -> Any:
    """Like _strip, but bare numbers (a room keyed as 101) become strings."""
    if isinstance(value, (int, Decimal)) and not isinstance(value, bool):
        return str(value)
    return _strip(value)


def _parse_keywords(value: Any) -> list[str]:
    """privacyKeywords may be an array or a JSON-encoded array."""
    if isinstance(value, str):
        if not value.strip():
            return []
        try:
            value = json.loads(value)
        except ValueError:
            return []
    if not isinstance(value, list):
        return []
    return [k.strip() for k in value if isinstance(k, str) and k.strip()]


class NormalizedSnapshot(BaseModel):
    """
    Canonical, still unvalidated, snapshot content.

    Bills are always a flat list here, whatever the input shape was.
    """

    metadata: SnapshotMetadata
    source_shape: BillsShape
    tenants: list[Any] = Field(default_factory=list)
    bills: list[Any] = Field(default_factory=list)
    prices: Optional[dict[str, Any]] = None
    meter_configs: list[Any] = Field(default_factory=list)
    notes: list[str] = Field(
        default_factory=list,
        description="Non-fatal observations made while normalizing"
    )
    skipped: list[tuple[str, str]] = Field(
        default_factory=list,
        description="(room, reason) for nested bill groups that could not be read"
    )


class FormatNormalizer:
    """
    Converts a RawSnapshot of any known shape to the canonical shape.
    """

    def normalize(self, raw: RawSnapshot) -> NormalizedSnapshot:
        notes: list[str] = []
        skipped: list[tuple[str, str]] = []

        bills = raw.bills
        if isinstance(bills, FlatBills):
            canonical_bills = [self.normalize_flat_bill(r) for r in bills.records]
        elif isinstance(bills, NestedBills):
            canonical_bills = self.flatten_nested_bills(bills.rooms, skipped)
        else:
            canonical_bills = []

        meter_configs = []
        for record in raw.meter_configs:
            config = self.normalize_meter_config(record)
            if isinstance(config, dict) and config.get("isActive") is False:
                notes.append(
                    f"Inactive meter config for '{config.get('defaultName')}' ignored"
                )
                continue
            meter_configs.append(config)

        normalized = NormalizedSnapshot(
            metadata=self.normalize_metadata(raw.metadata, notes),
            source_shape=bills.kind,
            tenants=[self.normalize_tenant(r) for r in (raw.tenants or [])],
            bills=canonical_bills,
            prices=self.normalize_prices(raw.prices) if raw.prices is not None else None,
            meter_configs=meter_configs,
            notes=notes,
            skipped=skipped,
        )

        logger.info(
            "snapshot_normalized",
            source_shape=normalized.source_shape.value,
            tenants=len(normalized.tenants),
            bills=len(normalized.bills),
            meter_configs=len(normalized.meter_configs),
            notes=len(notes),
            skipped=len(skipped),
        )
        return normalized

    # =========================================================================
    # METADATA / TENANTS / PRICES / METER CONFIGS
    # =========================================================================

    def normalize_metadata(
        self,
        metadata: Optional[dict[str, Any]],
        notes: list[str],
    ) -> SnapshotMetadata:
        """Missing or unreadable metadata means a legacy 1.0 snapshot."""
        if metadata is None:
            return SnapshotMetadata(format_version="1.0", schema_version="1.0")
        try:
            return SnapshotMetadata.model_validate(metadata)
        except ValidationError as e:
            notes.append(f"Snapshot metadata unreadable, treating as legacy: {e.error_count()} problems")
            return SnapshotMetadata(format_version="1.0", schema_version="1.0")

    def normalize_tenant(self, record: Any) -> Any:
        if not isinstance(record, dict):
            return record
        return {
            "roomNumber": _text(first_present(record, "roomNumber", "room_number")),
            "name": _text(record.get("name")),
            "rent": _number(record.get("rent")),
        }

    def normalize_prices(self, record: Any) -> Any:
        if not isinstance(record, dict):
            return record
        return {
            "waterPricePerUnit": _number(
                first_present(record, "waterPricePerUnit", "waterPrice", "water")
            ),
            "electricityPricePerUnit": _number(
                first_present(record, "electricityPricePerUnit", "electricityPrice", "electricity")
            ),
            "privacyKeywords": _parse_keywords(record.get("privacyKeywords")),
        }

    def normalize_meter_config(self, record: Any) -> Any:
        if not isinstance(record, dict):
            return record
        return {
            # A missing meterType is only a warning, so it must not fail the model
            "meterType": _text(record.get("meterType")) or "",
            "defaultName": _text(record.get("defaultName")),
            "customName": _text(record.get("customName")) or "",
            "tenantRoomNumber": _text(record.get("tenantRoomNumber")) or "",
            "isActive": record.get("isActive", True),
            "createdDate": record.get("createdDate"),
            "updatedDate": record.get("updatedDate"),
        }

    # =========================================================================
    # BILLS
    # =========================================================================

    def normalize_flat_bill(self, record: Any) -> Any:
        """A current-shape bill record; keys are already canonical."""
        if not isinstance(record, dict):
            return record

        details = record.get("details")
        if isinstance(details, list):
            details = [self.normalize_detail(d) for d in details]

        bill = {
            "tenantRoomNumber": _text(
                first_present(record, "tenantRoomNumber", "roomNumber", "room_number")
            ),
            "month": coerce_month(record.get("month")),
            "totalAmount": _number(first_present(record, "totalAmount", "total")),
            "createdDate": record.get("createdDate"),
            "details": details if details is not None else [],
        }
        if isinstance(bill["details"], list) and not bill["details"]:
            bill["details"] = [self._other_detail()]
        return bill

    def normalize_detail(self, detail: Any) -> Any:
        if not isinstance(detail, dict):
            return detail
        return self._detail(
            detail_type=_strip(detail.get("type")),
            name=_strip(detail.get("name")),
            amount=detail.get("amount"),
            price_per_unit=detail.get("pricePerUnit"),
            previous=detail.get("previousReading"),
            current=detail.get("currentReading"),
            usage=detail.get("usage"),
        )

    def flatten_nested_bills(
        self,
        rooms: dict[str, Any],
        skipped: list[tuple[str, str]],
    ) -> list[Any]:
        """room -> month -> billData  ==>  [bill, ...]"""
        bills = []
        for room, months in rooms.items():
            if not isinstance(months, dict):
                skipped.append((room, "bills for this room are not a month map"))
                continue
            for month, bill_data in months.items():
                bills.append(self.synthesize_bill(room, month, bill_data))
        return bills

    def synthesize_bill(self, room: str, month: str, bill_data: Any) -> Any:
        """
        Build one canonical bill from a legacy nested entry.

        Details come out in slot order: water, electricity, extraMeters,
        extraFees, legacy meters, sub-meters, rent.
        """
        if not isinstance(bill_data, dict):
            # Keep the key so the record is reported, not silently lost
            return {
                "tenantRoomNumber": _strip(room),
                "month": coerce_month(month),
                "totalAmount": None,
                "createdDate": None,
                "details": [],
            }

        details: list[Any] = []

        for key, detail_type, main_name in (
            ("water", DetailType.WATER.value, MAIN_WATER_METER),
            ("electricity", DetailType.ELECTRICITY.value, MAIN_ELECTRICITY_METER),
        ):
            meter = bill_data.get(key)
            if isinstance(meter, dict):
                details.append(self._nested_meter(meter, detail_type, main_name))

        for index, meter in enumerate(self._list(bill_data.get("extraMeters"))):
            if not isinstance(meter, dict):
                details.append(meter)
                continue
            detail_type = _strip(meter.get("type")) or DetailType.EXTRA.value
            name = meter["name"] if "name" in meter else f"{detail_type}表{index + 1}"
            details.append(self._nested_meter(meter, detail_type, _strip(name)))

        for index, fee in enumerate(self._list(bill_data.get("extraFees"))):
            if not isinstance(fee, dict):
                details.append(fee)
                continue
            fee_type = _strip(fee.get("type")) or DetailType.EXTRA.value
            if fee_type not in _FEE_TYPES:
                fee_type = DetailType.EXTRA.value
            name = fee["name"] if "name" in fee else f"{EXTRA_FEE_NAME}{index + 1}"
            details.append(self._detail(
                detail_type=fee_type,
                name=_strip(name),
                amount=fee.get("amount"),
            ))

        # Oldest exports: free-form meter list with string readings
        for index, meter in enumerate(self._list(bill_data.get("meters"))):
            if not isinstance(meter, dict):
                details.append(meter)
                continue
            meter_type = _strip(meter.get("type")) or "unknown"
            if meter_type not in _METERED_VALUES:
                meter_type = DetailType.EXTRA.value
            name = _strip(meter.get("name")) or f"{meter.get('type') or meter_type}表{index + 1}"
            details.append(self._nested_meter(meter, meter_type, name))

        extra_data = bill_data.get("extraData")
        if isinstance(extra_data, dict):
            for key, detail_type, prefix in (
                ("subWaterMeters", DetailType.WATER.value, "子水表"),
                ("subElectricityMeters", DetailType.ELECTRICITY.value, "子电表"),
            ):
                for index, meter in enumerate(self._list(extra_data.get(key))):
                    if not isinstance(meter, dict):
                        continue
                    name = _strip(meter.get("name")) or f"{prefix}{index + 1}"
                    details.append(self._nested_meter(meter, detail_type, name))

        rent = to_decimal(bill_data.get("rent"))
        if rent is not None and rent > 0:
            details.append(self._detail(
                detail_type=DetailType.RENT.value,
                name=RENT_DETAIL_NAME,
                amount=rent,
            ))

        if not details:
            details.append(self._other_detail())

        total = first_present(bill_data, "totalAmount", "total")
        if total is None:
            total = sum(
                (to_decimal(d.get("amount")) or Decimal("0") for d in details if isinstance(d, dict)),
                Decimal("0"),
            )

        return {
            "tenantRoomNumber": _strip(room),
            "month": coerce_month(month),
            "totalAmount": _number(total),
            "createdDate": bill_data.get("createdDate"),
            "details": details,
        }

    # -------------------------------------------------------------------------
    # helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _list(value: Any) -> list[Any]:
        return value if isinstance(value, list) else []

    def _nested_meter(self, meter: dict, detail_type: str, name: Any) -> dict:
        return self._detail(
            detail_type=detail_type,
            name=name,
            amount=meter.get("amount"),
            price_per_unit=meter.get("pricePerUnit"),
            previous=first_present(meter, "previous", "previousReading"),
            current=first_present(meter, "current", "currentReading"),
            usage=meter.get("usage"),
        )

    def _detail(
        self,
        detail_type: Any,
        name: Any,
        amount: Any,
        price_per_unit: Any = None,
        previous: Any = None,
        current: Any = None,
        usage: Any = None,
    ) -> dict:
        """One canonical detail. Metered details get usage defaulted."""
        previous_reading = _number(previous)
        current_reading = _number(current)
        usage_value = _number(usage)

        if detail_type in _METERED_VALUES:
            if (
                usage_value is None
                and isinstance(previous_reading, Decimal)
                and isinstance(current_reading, Decimal)
            ):
                usage_value = current_reading - previous_reading
            unit_price = _price_per_unit(price_per_unit)
        else:
            previous_reading = current_reading = usage_value = unit_price = None

        return {
            "type": detail_type,
            "name": name,
            "amount": _number(amount) if amount is not None else Decimal("0"),
            "pricePerUnit": unit_price,
            "previousReading": previous_reading,
            "currentReading": current_reading,
            "usage": usage_value,
        }

    def _other_detail(self) -> dict:
        return self._detail(
            detail_type=DetailType.OTHER.value,
            name=OTHER_DETAIL_NAME,
            amount=Decimal("0"),
        )
