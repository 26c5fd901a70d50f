"""
Abstract Storage Interface

DESIGN DECISION: The backup engine never talks to a database directly.
It consumes the small set of CRUD operations defined here. This allows us to:
1. Plug the engine into whatever persistence the application uses
2. Use in-memory storage for testing
3. Keep restore logic decoupled from storage implementation

The interface is intentionally simple - four collections, no queries
beyond "list everything".
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional
from uuid import UUID

from rental_backup.models.audit import AuditEvent
from rental_backup.models.snapshot import (
    Bill,
    BillDetail,
    BillWithDetails,
    MeterNameOverride,
    PriceSettings,
    Tenant,
)


class RentalStoreInterface(ABC):
    """
    Abstract interface for the rental store.

    Any store implementation must implement these methods.
    """

    # -------------------------------------------------------------------------
    # Tenants
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_tenants(self) -> list[Tenant]:
        """
        List all tenants.

        Returns:
            Tenants ordered by room number
        """
        pass

    @abstractmethod
    async def insert_tenant(self, tenant: Tenant) -> None:
        """
        Insert a tenant.

        Args:
            tenant: The tenant to insert

        Raises:
            DuplicateError: If a tenant with the same room number exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete_tenant(self, tenant: Tenant) -> None:
        """
        Delete a tenant and everything that depends on it.

        Deleting a tenant removes that tenant's bills and deactivates
        that tenant's meter-name overrides.

        Args:
            tenant: The tenant to delete

        Raises:
            NotFoundError: If the tenant doesn't exist
        """
        pass

    # -------------------------------------------------------------------------
    # Bills
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_bills_with_details(self) -> list[BillWithDetails]:
        """
        List every bill with its details.

        Returns:
            Bills ordered by room number then month
        """
        pass

    @abstractmethod
    async def save_bill(self, bill: Bill, details: list[BillDetail]) -> None:
        """
        Save a bill with its details.

        Args:
            bill: The bill header
            details: Its line items, in display order

        Raises:
            StorageError: If the write fails
        """
        pass

    # -------------------------------------------------------------------------
    # Prices
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_price_settings(self) -> Optional[PriceSettings]:
        """
        Get the store-wide price settings.

        Returns:
            The settings, or None if never saved
        """
        pass

    @abstractmethod
    async def save_price_settings(
        self,
        water_price: Decimal,
        electricity_price: Decimal,
    ) -> None:
        """
        Save unit prices, keeping the privacy keywords untouched.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def save_privacy_keywords(self, keywords: list[str]) -> None:
        """
        Replace the privacy keyword list.

        Raises:
            StorageError: If the write fails
        """
        pass

    # -------------------------------------------------------------------------
    # Meter-name overrides
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_meter_name_overrides(self) -> list[MeterNameOverride]:
        """
        List active meter-name overrides.

        Returns:
            Active overrides, newest first
        """
        pass

    @abstractmethod
    async def save_meter_name_override(
        self,
        default_name: str,
        custom_name: str,
        meter_type: str,
        tenant_room_number: str = "",
    ) -> Optional[MeterNameOverride]:
        """
        Give an extra meter a custom display name.

        A custom name equal to the default name resets the meter
        (the active override is deactivated and None is returned).

        Args:
            default_name: The meter's default name
            custom_name: The desired display name
            meter_type: water or electricity
            tenant_room_number: Tenant scope, empty for global

        Returns:
            The stored override, or None on reset

        Raises:
            MeterNameRejectedError: If the meter is a main meter or the
                custom name is not acceptable
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def resolve_meter_display_name(
        self,
        default_name: str,
        tenant_room_number: str,
    ) -> str:
        """
        Resolve the name to show for a meter.

        Returns:
            The newest active override for this tenant, else default_name
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one restore).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class MeterNameRejectedError(StorageError):
    """
    A meter-name override was refused.

    Raised for main meters, non-meter names and unacceptable custom names.
    """
    pass
