"""
In-Memory Storage Implementation

A complete, dependency-free implementation of the storage interfaces.
Used by the test-suite and by tooling that restores a snapshot only to
inspect it. Mirrors the semantics the application's database gives the
backup engine: cascading tenant deletes, one active override per
(default name, tenant), and "newest active override wins" lookups.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from rental_backup.models.audit import AuditEvent
from rental_backup.models.snapshot import (
    Bill,
    BillDetail,
    BillWithDetails,
    MeterNameOverride,
    PriceSettings,
    Tenant,
)
from rental_backup.services.meter_names import prepare_custom_name
from rental_backup.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    NotFoundError,
    RentalStoreInterface,
)


logger = structlog.get_logger(__name__)


class InMemoryRentalStore(RentalStoreInterface):
    """
    Rental store backed by plain Python collections.
    """

    def __init__(self, max_custom_name_length: int = 20):
        self._tenants: dict[str, Tenant] = {}
        self._bills: list[BillWithDetails] = []
        self._prices: Optional[PriceSettings] = None
        self._overrides: list[MeterNameOverride] = []
        self._max_custom_name_length = max_custom_name_length

    # -------------------------------------------------------------------------
    # Tenants
    # -------------------------------------------------------------------------

    async def list_tenants(self) -> list[Tenant]:
        return sorted(self._tenants.values(), key=lambda t: t.room_number)

    async def insert_tenant(self, tenant: Tenant) -> None:
        if tenant.room_number in self._tenants:
            raise DuplicateError(f"Tenant already exists: {tenant.room_number}")
        self._tenants[tenant.room_number] = tenant.model_copy()

    async def delete_tenant(self, tenant: Tenant) -> None:
        if tenant.room_number not in self._tenants:
            raise NotFoundError(f"Tenant not found: {tenant.room_number}")
        del self._tenants[tenant.room_number]

        # Cascade: bills go, overrides are deactivated
        before = len(self._bills)
        self._bills = [
            b for b in self._bills
            if b.bill.tenant_room_number != tenant.room_number
        ]
        for override in self._overrides:
            if override.tenant_room_number == tenant.room_number:
                override.is_active = False

        logger.debug(
            "tenant_deleted",
            room_number=tenant.room_number,
            bills_removed=before - len(self._bills),
        )

    # -------------------------------------------------------------------------
    # Bills
    # -------------------------------------------------------------------------

    async def list_bills_with_details(self) -> list[BillWithDetails]:
        return sorted(
            (b.model_copy(deep=True) for b in self._bills),
            key=lambda b: (b.bill.tenant_room_number, b.bill.month),
        )

    async def save_bill(self, bill: Bill, details: list[BillDetail]) -> None:
        self._bills.append(
            BillWithDetails(
                bill=bill.model_copy(),
                details=[d.model_copy() for d in details],
            )
        )

    # -------------------------------------------------------------------------
    # Prices
    # -------------------------------------------------------------------------

    async def get_price_settings(self) -> Optional[PriceSettings]:
        return self._prices.model_copy(deep=True) if self._prices else None

    async def save_price_settings(
        self,
        water_price: Decimal,
        electricity_price: Decimal,
    ) -> None:
        keywords = self._prices.privacy_keywords if self._prices else []
        self._prices = PriceSettings(
            water_price_per_unit=water_price,
            electricity_price_per_unit=electricity_price,
            privacy_keywords=list(keywords),
        )

    async def save_privacy_keywords(self, keywords: list[str]) -> None:
        if self._prices is None:
            # Keywords can't live without a price row; start from zero prices
            self._prices = PriceSettings(
                water_price_per_unit=Decimal("0"),
                electricity_price_per_unit=Decimal("0"),
            )
        self._prices = self._prices.model_copy(
            update={"privacy_keywords": [k.strip() for k in keywords if k and k.strip()]}
        )

    # -------------------------------------------------------------------------
    # Meter-name overrides
    # -------------------------------------------------------------------------

    async def list_meter_name_overrides(self) -> list[MeterNameOverride]:
        active = [o for o in self._overrides if o.is_active]
        return [
            o.model_copy()
            for o in sorted(active, key=lambda o: o.updated_date, reverse=True)
        ]

    async def save_meter_name_override(
        self,
        default_name: str,
        custom_name: str,
        meter_type: str,
        tenant_room_number: str = "",
    ) -> Optional[MeterNameOverride]:
        name = prepare_custom_name(
            default_name,
            custom_name,
            max_length=self._max_custom_name_length,
        )

        self._deactivate(default_name, tenant_room_number)
        if name == default_name:
            logger.debug(
                "meter_name_reset",
                default_name=default_name,
                tenant_room_number=tenant_room_number,
            )
            return None

        now = datetime.now(timezone.utc)
        override = MeterNameOverride(
            meter_type=meter_type,
            default_name=default_name,
            custom_name=name,
            tenant_room_number=tenant_room_number,
            created_date=now,
            updated_date=now,
        )
        self._overrides.append(override)
        return override.model_copy()

    async def resolve_meter_display_name(
        self,
        default_name: str,
        tenant_room_number: str,
    ) -> str:
        # Only tenant-specific overrides apply; global ones are not consulted
        if not default_name or not tenant_room_number:
            return default_name

        candidates = [
            o for o in self._overrides
            if o.is_active
            and o.default_name == default_name
            and o.tenant_room_number == tenant_room_number
            and o.custom_name.strip()
        ]
        if not candidates:
            return default_name
        return max(candidates, key=lambda o: o.updated_date).custom_name

    def _deactivate(self, default_name: str, tenant_room_number: str) -> None:
        for override in self._overrides:
            if (
                override.default_name == default_name
                and override.tenant_room_number == tenant_room_number
            ):
                override.is_active = False


class InMemoryAuditStorage(AuditStorageInterface):
    """
    Append-only audit log held in memory.
    """

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]
