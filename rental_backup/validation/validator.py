"""
Snapshot Validation

DESIGN DECISION: Validation is split by scope:

SNAPSHOT LEVEL:
- Required top-level collections (tenants, bills, prices)
- Metadata sanity (known data structure version, version format)
- A snapshot that fails here is never written

RECORD LEVEL:
- One check per entity: tenant, bill (with its meter details),
  price settings, meter-name override
- An invalid record is skipped; the rest of the restore continues

CROSS-RECORD:
- Integrity: bills and overrides that point at unknown room numbers
- Duplicates: repeated room numbers, repeated (room, month) bills

Errors reject the record. Warnings never do.

IMPORTANT: Validation NEVER fixes anything. It reports issues and
leaves the policy to the importer.
"""

import json
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from rental_backup.config import BackupSettings, get_settings
from rental_backup.models.results import (
    IntegrityResult,
    ValidationIssue,
    ValidationResult,
)
from rental_backup.models.snapshot import METERED_TYPES, DetailType


MONTH_RE = re.compile(r"^\d{4}-\d{2}$")
VERSION_RE = re.compile(r"^\d+\.\d+$")

# Tolerance for sum/usage cross-checks
AMOUNT_TOLERANCE = Decimal("0.01")

# Prices above these look like a typo (per-unit, local currency)
SUSPICIOUS_WATER_PRICE = Decimal("100")
SUSPICIOUS_ELECTRICITY_PRICE = Decimal("10")

KNOWN_METER_TYPES = {"water", "electricity"}


def to_decimal(value: Any) -> Optional[Decimal]:
    """
    Convert a JSON value to a finite Decimal.

    Accepts numbers and numeric strings (legacy files store readings
    as strings). Returns None for anything else, including NaN/Infinity.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, (int, float)):
        number = Decimal(str(value))
    elif isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
    else:
        return None
    return number if number.is_finite() else None


def first_present(record: dict, *keys: str) -> Any:
    """
    Value of the first key present in record.

    None and blank strings count as absent, so a blank current key falls
    back to its legacy spelling.
    """
    for key in keys:
        value = record.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        return value
    return None


def _is_blank(value: Any) -> bool:
    return value is None or not str(value).strip()


def _error(field: str, issue_type: str, message: str, fix: Optional[str] = None) -> ValidationIssue:
    return ValidationIssue(
        field=field,
        issue_type=issue_type,
        message=message,
        severity="error",
        suggested_fix=fix,
    )


def _warning(field: str, issue_type: str, message: str, fix: Optional[str] = None) -> ValidationIssue:
    return ValidationIssue(
        field=field,
        issue_type=issue_type,
        message=message,
        severity="warning",
        suggested_fix=fix,
    )


class SnapshotValidator:
    """
    Stateless rule set for snapshots and their records.

    Every method takes a JSON-like dict and returns a ValidationResult.
    Record validators accept both current and legacy key names.
    """

    def __init__(self, settings: Optional[BackupSettings] = None):
        self._settings = settings or get_settings().backup

    # =========================================================================
    # SNAPSHOT LEVEL
    # =========================================================================

    def validate_snapshot(self, payload: Any) -> ValidationResult:
        """
        Check the top-level structure of a parsed snapshot.

        Checks:
        - tenants / bills / prices (or legacy price) present and well-typed
        - metadata, when present, is an object with a known version
        """
        issues: list[ValidationIssue] = []

        if not isinstance(payload, dict):
            issues.append(_error("$", "invalid_type", "Snapshot must be a JSON object"))
            return ValidationResult(issues=issues)

        if "tenants" not in payload:
            issues.append(_error("tenants", "missing", "Snapshot has no tenants collection"))
        elif not isinstance(payload["tenants"], list):
            issues.append(_error("tenants", "invalid_type", "tenants must be an array"))

        if "bills" not in payload:
            issues.append(_error("bills", "missing", "Snapshot has no bills collection"))
        elif not isinstance(payload["bills"], (list, dict)):
            issues.append(_error(
                "bills", "invalid_type",
                "bills must be an array or a room -> month object",
            ))

        prices = first_present(payload, "prices", "price")
        if prices is None:
            issues.append(_error("prices", "missing", "Snapshot has no price settings"))
        elif not isinstance(prices, dict):
            issues.append(_error("prices", "invalid_type", "prices must be an object"))

        meter_configs = payload.get("meterConfigs")
        if meter_configs is not None and not isinstance(meter_configs, list):
            issues.append(_warning(
                "meterConfigs", "invalid_type",
                "meterConfigs is not an array and will be ignored",
            ))

        if "metadata" in payload:
            issues.extend(self.validate_metadata(payload["metadata"]).issues)

        return ValidationResult(issues=issues)

    def validate_metadata(self, metadata: Any) -> ValidationResult:
        """
        Metadata problems are warnings: an odd header should not block
        a restore of otherwise good data.
        """
        issues: list[ValidationIssue] = []

        if not isinstance(metadata, dict):
            issues.append(_warning(
                "metadata", "invalid_type",
                "metadata is not an object; treating snapshot as legacy",
            ))
            return ValidationResult(issues=issues)

        version = metadata.get("version")
        if version is None:
            issues.append(_warning("metadata.version", "missing", "metadata.version is missing"))
        elif not VERSION_RE.match(str(version)):
            issues.append(_warning(
                "metadata.version", "invalid_format",
                f"metadata.version '{version}' is not in N.N format",
            ))

        if metadata.get("exportTime") is None:
            issues.append(_warning(
                "metadata.exportTime", "missing", "metadata.exportTime is missing",
            ))

        structure_version = metadata.get("dataStructureVersion")
        if structure_version is None:
            issues.append(_warning(
                "metadata.dataStructureVersion", "missing",
                "metadata.dataStructureVersion is missing",
            ))
        elif str(structure_version) not in self._settings.supported_versions_list:
            issues.append(_warning(
                "metadata.dataStructureVersion", "unknown_version",
                f"Unknown data structure version '{structure_version}'",
                "The file may come from a newer app version; some fields may be ignored",
            ))

        return ValidationResult(issues=issues)

    # =========================================================================
    # RECORD LEVEL
    # =========================================================================

    def validate_tenant(
        self,
        record: Any,
        known_rooms: Optional[set[str]] = None,
    ) -> ValidationResult:
        """
        Checks:
        - roomNumber / room_number and name non-blank (error)
        - rent present and finite (error), negative (warning)
        - room number not already seen in this snapshot (error)
        """
        issues: list[ValidationIssue] = []

        if not isinstance(record, dict):
            issues.append(_error("tenant", "invalid_type", "Tenant record must be an object"))
            return ValidationResult(issues=issues)

        room = first_present(record, "roomNumber", "room_number")
        if _is_blank(room):
            issues.append(_error("roomNumber", "missing", "Tenant room number is blank"))
        elif known_rooms is not None and str(room).strip() in known_rooms:
            issues.append(_error(
                "roomNumber", "duplicate",
                f"Duplicate tenant room number '{str(room).strip()}'",
            ))

        if _is_blank(record.get("name")):
            issues.append(_error(
                "name", "missing",
                f"Tenant name is blank (room '{room or ''}')",
            ))

        raw_rent = record.get("rent")
        rent = to_decimal(raw_rent)
        if raw_rent is None:
            issues.append(_error("rent", "missing", f"Tenant rent is missing (room '{room or ''}')"))
        elif rent is None:
            issues.append(_error(
                "rent", "invalid_value",
                f"Tenant rent '{raw_rent}' is not a finite number (room '{room or ''}')",
            ))
        elif rent < 0:
            issues.append(_warning(
                "rent", "negative",
                f"Tenant rent is negative ({rent}) for room '{room}'",
                "Rent will be stored as 0",
            ))

        return ValidationResult(issues=issues)

    def validate_bill(
        self,
        record: Any,
        seen_keys: Optional[set[tuple[str, str]]] = None,
    ) -> ValidationResult:
        """
        Validate one canonical bill record.

        Checks:
        - tenantRoomNumber non-blank (error)
        - month matches YYYY-MM (error)
        - totalAmount present and finite (error), negative (warning)
        - every detail: name present, amount finite; metered details go
          through the shared meter rule
        - details sum to totalAmount (warning)
        - (room, month) not already seen (warning)
        """
        issues: list[ValidationIssue] = []

        if not isinstance(record, dict):
            issues.append(_error("bill", "invalid_type", "Bill record must be an object"))
            return ValidationResult(issues=issues)

        room = record.get("tenantRoomNumber")
        month = record.get("month")
        label = f"{room or '?'}/{month or '?'}"

        if _is_blank(room):
            issues.append(_error(
                "tenantRoomNumber", "missing",
                f"Bill {label} has no tenant room number",
            ))

        if month is None or not MONTH_RE.match(str(month)):
            issues.append(_error(
                "month", "invalid_format",
                f"Bill {label} has malformed month '{month}'",
                "Month must be YYYY-MM",
            ))

        raw_total = record.get("totalAmount")
        total = to_decimal(raw_total)
        if raw_total is None:
            issues.append(_error("totalAmount", "missing", f"Bill {label} has no total amount"))
        elif total is None:
            issues.append(_error(
                "totalAmount", "invalid_value",
                f"Bill {label} total '{raw_total}' is not a finite number",
            ))
        elif total < 0:
            issues.append(_warning(
                "totalAmount", "negative",
                f"Bill {label} total is negative ({total})",
            ))

        details = record.get("details") or []
        if not isinstance(details, list):
            issues.append(_error("details", "invalid_type", f"Bill {label} details must be an array"))
            details = []

        detail_sum = Decimal("0")
        sum_is_known = True
        for index, detail in enumerate(details):
            detail_result = self.validate_detail(detail, f"Bill {label} detail #{index + 1}")
            issues.extend(detail_result.issues)
            amount = to_decimal(detail.get("amount")) if isinstance(detail, dict) else None
            if amount is None:
                sum_is_known = False
            else:
                detail_sum += amount

        if details and sum_is_known and total is not None:
            if abs(detail_sum - total) > AMOUNT_TOLERANCE:
                issues.append(_warning(
                    "totalAmount", "sum_mismatch",
                    f"Bill {label} total {total} differs from detail sum {detail_sum}",
                ))

        if seen_keys is not None and not _is_blank(room) and month is not None:
            key = (str(room).strip(), str(month))
            if key in seen_keys:
                issues.append(_warning(
                    "month", "duplicate",
                    f"Duplicate bill for room '{key[0]}' month '{key[1]}'",
                ))

        return ValidationResult(issues=issues)

    def validate_detail(self, detail: Any, label: str = "Detail") -> ValidationResult:
        """Validate one canonical bill detail."""
        issues: list[ValidationIssue] = []

        if not isinstance(detail, dict):
            issues.append(_error("details", "invalid_type", f"{label} must be an object"))
            return ValidationResult(issues=issues)

        detail_type = detail.get("type")
        valid_types = {t.value for t in DetailType}
        if detail_type not in valid_types:
            issues.append(_error(
                "details.type", "invalid_value",
                f"{label} has unknown type '{detail_type}'",
            ))

        if _is_blank(detail.get("name")):
            issues.append(_error("details.name", "missing", f"{label} has a blank name"))

        if detail_type in {t.value for t in METERED_TYPES}:
            issues.extend(self.validate_meter_reading(detail, label).issues)
        else:
            raw_amount = detail.get("amount")
            amount = to_decimal(raw_amount)
            if amount is None:
                issues.append(_error(
                    "details.amount", "invalid_value",
                    f"{label} amount '{raw_amount}' is not a finite number",
                ))
            elif amount < 0:
                issues.append(_warning("details.amount", "negative", f"{label} amount is negative"))

        return ValidationResult(issues=issues)

    def validate_meter_reading(self, reading: Any, label: str = "Meter") -> ValidationResult:
        """
        The shared meter rule.

        Works on both canonical details (previousReading/currentReading)
        and legacy nested sub-objects (previous/current). Missing
        readings count as 0; missing usage is current - previous.

        Checks:
        - current < previous (warning)
        - usage negative (warning), usage disagrees with readings (warning)
        - amount not a number (error), negative (warning)
        """
        issues: list[ValidationIssue] = []

        if not isinstance(reading, dict):
            issues.append(_error("meter", "invalid_type", f"{label} must be an object"))
            return ValidationResult(issues=issues)

        previous = to_decimal(first_present(reading, "previousReading", "previous")) or Decimal("0")
        current = to_decimal(first_present(reading, "currentReading", "current")) or Decimal("0")
        explicit_usage = to_decimal(reading.get("usage"))
        usage = explicit_usage if explicit_usage is not None else current - previous

        if current < previous:
            issues.append(_warning(
                "meter.currentReading", "reading_decreased",
                f"{label}: current reading {current} is below previous reading {previous}",
                "Check whether the meter was replaced or the readings swapped",
            ))

        if usage < 0:
            issues.append(_warning("meter.usage", "negative", f"{label}: usage is negative ({usage})"))
        elif explicit_usage is not None and abs(explicit_usage - (current - previous)) > AMOUNT_TOLERANCE:
            issues.append(_warning(
                "meter.usage", "usage_mismatch",
                f"{label}: usage {explicit_usage} differs from readings ({current - previous})",
            ))

        raw_amount = reading.get("amount")
        amount = to_decimal(raw_amount)
        if raw_amount is not None and amount is None:
            issues.append(_error(
                "meter.amount", "invalid_value",
                f"{label}: amount '{raw_amount}' is not a finite number",
            ))
        elif amount is not None and amount < 0:
            issues.append(_warning("meter.amount", "negative", f"{label}: amount is negative ({amount})"))

        return ValidationResult(issues=issues)

    def validate_prices(self, record: Any) -> ValidationResult:
        """
        Checks:
        - both unit prices present and finite (error)
        - non-positive prices (warning); unusually high prices (warning)
        - privacyKeywords is an array or a JSON-encoded array (warning)
        """
        issues: list[ValidationIssue] = []

        if not isinstance(record, dict):
            issues.append(_error("prices", "invalid_type", "Price settings must be an object"))
            return ValidationResult(issues=issues)

        checks = (
            ("water", ("waterPricePerUnit", "waterPrice", "water"), SUSPICIOUS_WATER_PRICE),
            ("electricity", ("electricityPricePerUnit", "electricityPrice", "electricity"), SUSPICIOUS_ELECTRICITY_PRICE),
        )
        for utility, keys, ceiling in checks:
            raw = first_present(record, *keys)
            price = to_decimal(raw)
            if raw is None:
                issues.append(_error(keys[0], "missing", f"{utility.capitalize()} price is missing"))
            elif price is None:
                issues.append(_error(
                    keys[0], "invalid_value",
                    f"{utility.capitalize()} price '{raw}' is not a finite number",
                ))
            elif price <= 0:
                issues.append(_warning(
                    keys[0], "non_positive",
                    f"{utility.capitalize()} price is {price}",
                    "A zero price may be intentional; check before relying on totals",
                ))
            elif price > ceiling:
                issues.append(_warning(
                    keys[0], "suspicious_value",
                    f"{utility.capitalize()} price {price} is unusually high",
                ))

        keywords = record.get("privacyKeywords")
        if keywords is not None:
            issues.extend(self._validate_keywords(keywords))

        return ValidationResult(issues=issues)

    def _validate_keywords(self, keywords: Any) -> list[ValidationIssue]:
        if isinstance(keywords, str):
            if not keywords.strip():
                return []
            try:
                keywords = json.loads(keywords)
            except ValueError:
                return [_warning(
                    "privacyKeywords", "invalid_format",
                    "privacyKeywords is a string but not a JSON array",
                )]

        if not isinstance(keywords, list):
            return [_warning(
                "privacyKeywords", "invalid_type",
                "privacyKeywords must be an array of strings",
            )]

        issues = []
        for index, keyword in enumerate(keywords):
            if not isinstance(keyword, str) or not keyword.strip():
                issues.append(_warning(
                    "privacyKeywords", "blank",
                    f"Privacy keyword #{index + 1} is blank and will be dropped",
                ))
        return issues

    def validate_meter_override(self, record: Any) -> ValidationResult:
        """
        Checks:
        - meterType is water or electricity (warning)
        - defaultName non-blank (error)
        - customName non-blank (warning)
        """
        issues: list[ValidationIssue] = []

        if not isinstance(record, dict):
            issues.append(_error("meterConfig", "invalid_type", "Meter config must be an object"))
            return ValidationResult(issues=issues)

        meter_type = record.get("meterType")
        if meter_type not in KNOWN_METER_TYPES:
            issues.append(_warning(
                "meterType", "unknown_value",
                f"Unknown meter type '{meter_type}'",
            ))

        if _is_blank(record.get("defaultName")):
            issues.append(_error("defaultName", "missing", "Meter config default name is blank"))

        if _is_blank(record.get("customName")):
            issues.append(_warning(
                "customName", "missing",
                f"Meter config for '{record.get('defaultName')}' has a blank custom name",
            ))

        return ValidationResult(issues=issues)

    # =========================================================================
    # CROSS-RECORD
    # =========================================================================

    def check_integrity(
        self,
        room_numbers: Iterable[str],
        bills: Iterable[dict],
        overrides: Iterable[dict],
    ) -> IntegrityResult:
        """
        Find bills and overrides pointing at rooms with no tenant.

        An override with a blank tenantRoomNumber is global and never
        an orphan.
        """
        rooms = set(room_numbers)
        missing: set[str] = set()
        orphans: list[str] = []

        for bill in bills:
            room = bill.get("tenantRoomNumber")
            if room not in rooms:
                missing.add(str(room))
                orphans.append(f"bill {room}/{bill.get('month')}")

        for override in overrides:
            room = override.get("tenantRoomNumber")
            if not _is_blank(room) and room not in rooms:
                missing.add(str(room))
                orphans.append(f"meterConfig {override.get('defaultName')}@{room}")

        return IntegrityResult(
            missing_references=sorted(missing),
            orphaned_records=orphans,
        )
