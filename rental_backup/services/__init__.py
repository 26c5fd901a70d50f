"""Services package."""

from rental_backup.services.storage import (
    AuditStorageInterface,
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryRentalStore,
    MeterNameRejectedError,
    NotFoundError,
    RentalStoreInterface,
    StorageError,
)
from rental_backup.services.meter_names import (
    check_override_allowed,
    prepare_custom_name,
    sanitize_custom_name,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "DuplicateError",
    "InMemoryAuditStorage",
    "InMemoryRentalStore",
    "MeterNameRejectedError",
    "NotFoundError",
    "RentalStoreInterface",
    "StorageError",
    # Meter name rules
    "check_override_allowed",
    "prepare_custom_name",
    "sanitize_custom_name",
]
