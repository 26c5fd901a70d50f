"""
Result Models

Validation, integrity and import results. These are what callers of
the backup engine actually see: a structured account of what was
written, what was skipped and why.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from rental_backup.models.snapshot import SnapshotMetadata


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_format', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Outcome of validating a snapshot or one entity.

    Errors reject the entity; warnings let it through.
    """

    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def errors(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "error"]

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]

    @property
    def is_valid(self) -> bool:
        return not any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == "error")

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        return ValidationResult(issues=[*self.issues, *other.issues])


class IntegrityResult(BaseModel):
    """
    Cross-entity reference check.

    Orphans are reported, never blocking: the records are still written.
    """

    missing_references: list[str] = Field(
        default_factory=list,
        description="Room numbers referenced but not present among tenants"
    )
    orphaned_records: list[str] = Field(
        default_factory=list,
        description="Human-readable labels of records with a dangling room number"
    )

    @property
    def is_intact(self) -> bool:
        return not self.orphaned_records


# =============================================================================
# IMPORT
# =============================================================================

class ImportStage(str, Enum):
    """
    Stages of one import operation.

    FAILED is only reachable from READING and PARSING; after that,
    failures are recorded per record.
    """
    READING = "reading"
    PARSING = "parsing"
    VALIDATING = "validating"
    NORMALIZING = "normalizing"
    INTEGRITY_CHECKING = "integrity_checking"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"


class ImportErrorType(str, Enum):
    """Classification of import errors."""
    FILE_FORMAT_ERROR = "file_format_error"
    DATA_VALIDATION_ERROR = "data_validation_error"
    DATABASE_ERROR = "database_error"
    CONFLICT_ERROR = "conflict_error"  # reserved for merge strategies
    UNKNOWN_ERROR = "unknown_error"


class ImportErrorRecord(BaseModel):
    """One error collected during import."""

    type: ImportErrorType
    message: str
    details: Optional[str] = None


class ImportStats(BaseModel):
    """Per-collection counts of what was written."""

    tenants_imported: int = 0
    bills_imported: int = 0
    prices_imported: int = 0
    meter_configs_imported: int = 0
    conflicts_resolved: int = 0
    errors_encountered: int = 0


class ImportResult(BaseModel):
    """
    Summary of an import operation.

    `success` is True unless a storage error occurred (or the operation
    aborted before writing). Skipped invalid records do not flip it.
    """

    success: bool
    message: str
    stage: ImportStage = ImportStage.DONE
    stats: ImportStats = Field(default_factory=ImportStats)
    errors: list[ImportErrorRecord] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    orphaned_records: list[str] = Field(default_factory=list)
    metadata: Optional[SnapshotMetadata] = None

    @property
    def database_errors(self) -> list[ImportErrorRecord]:
        return [e for e in self.errors if e.type == ImportErrorType.DATABASE_ERROR]

    def errors_of_type(self, error_type: ImportErrorType) -> list[ImportErrorRecord]:
        return [e for e in self.errors if e.type == error_type]
