"""
Storage Services Package

Provides abstract interfaces and an in-memory implementation for data storage.
The application plugs in its own store by implementing RentalStoreInterface.
"""

from rental_backup.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    MeterNameRejectedError,
    NotFoundError,
    RentalStoreInterface,
    StorageError,
)
from rental_backup.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryRentalStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "RentalStoreInterface",
    # Exceptions
    "DuplicateError",
    "MeterNameRejectedError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryRentalStore",
]
