"""
Data Models Package

This package contains all Pydantic models used by the backup engine.
All data flowing through export and restore must conform to these schemas.
"""

from rental_backup.models.snapshot import (
    ELECTRICITY_METER_TOKEN,
    EXTRA_FEE_NAME,
    MAIN_ELECTRICITY_METER,
    MAIN_METER_NAMES,
    MAIN_WATER_METER,
    OTHER_DETAIL_NAME,
    RENT_DETAIL_NAME,
    WATER_METER_TOKEN,
    Bill,
    BillDetail,
    BillWithDetails,
    DetailType,
    MeterClass,
    MeterNameOverride,
    PriceSettings,
    Snapshot,
    SnapshotMetadata,
    Tenant,
    classify_meter,
)
from rental_backup.models.raw import (
    BillsShape,
    FlatBills,
    MissingBills,
    NestedBills,
    RawSnapshot,
)
from rental_backup.models.results import (
    ImportErrorRecord,
    ImportErrorType,
    ImportResult,
    ImportStage,
    ImportStats,
    IntegrityResult,
    ValidationIssue,
    ValidationResult,
)
from rental_backup.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Reserved names
    "ELECTRICITY_METER_TOKEN",
    "EXTRA_FEE_NAME",
    "MAIN_ELECTRICITY_METER",
    "MAIN_METER_NAMES",
    "MAIN_WATER_METER",
    "OTHER_DETAIL_NAME",
    "RENT_DETAIL_NAME",
    "WATER_METER_TOKEN",
    # Snapshot models
    "Bill",
    "BillDetail",
    "BillWithDetails",
    "DetailType",
    "MeterClass",
    "MeterNameOverride",
    "PriceSettings",
    "Snapshot",
    "SnapshotMetadata",
    "Tenant",
    "classify_meter",
    # Raw models
    "BillsShape",
    "FlatBills",
    "MissingBills",
    "NestedBills",
    "RawSnapshot",
    # Results
    "ImportErrorRecord",
    "ImportErrorType",
    "ImportResult",
    "ImportStage",
    "ImportStats",
    "IntegrityResult",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
