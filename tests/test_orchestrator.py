"""
Flow tests for BackupService: export -> import round trips and the
auto-backup hooks.
"""

import pytest
from decimal import Decimal

from rental_backup.models.results import ImportErrorType, ImportStage
from rental_backup.models.snapshot import Bill, BillDetail, DetailType, Tenant
from rental_backup.orchestrator import BackupService, create_backup_service
from rental_backup.services.storage import InMemoryRentalStore


def _details_by_name(bill):
    return {d.name: d for d in bill.details}


async def _populate(store):
    await store.insert_tenant(Tenant(room_number="101", name="张三", rent=Decimal("1500")))
    await store.insert_tenant(Tenant(room_number="102", name="李四", rent=Decimal("1800.50")))
    await store.save_price_settings(Decimal("4.5"), Decimal("1.2"))
    await store.save_privacy_keywords(["身份证"])
    await store.save_meter_name_override("1号电表", "厨房电表", "electricity", "102")
    await store.save_bill(
        Bill(tenant_room_number="101", month="2024-03", total_amount=Decimal("1612.5")),
        [
            BillDetail(
                type=DetailType.WATER,
                name="主水表",
                amount=Decimal("112.5"),
                price_per_unit=Decimal("4.5"),
                previous_reading=Decimal("10"),
                current_reading=Decimal("35"),
            ),
            BillDetail(type=DetailType.RENT, name="房租", amount=Decimal("1500")),
        ],
    )
    await store.save_bill(
        Bill(tenant_room_number="102", month="2024-03", total_amount=Decimal("1836.50")),
        [
            BillDetail(
                type=DetailType.ELECTRICITY,
                name="1号电表",
                amount=Decimal("36"),
                price_per_unit=Decimal("1.2"),
                previous_reading=Decimal("100"),
                current_reading=Decimal("130"),
            ),
            BillDetail(type=DetailType.RENT, name="房租", amount=Decimal("1800.50")),
        ],
    )


@pytest.fixture
def service(store, settings, audit_storage):
    return create_backup_service(store=store, audit_storage=audit_storage, settings=settings)


class TestRoundTrip:
    """Tests for export followed by import."""

    @pytest.mark.asyncio
    async def test_export_import_round_trip(self, service, store, settings):
        """Test a restored store matches the exported one."""
        await _populate(store)
        data = await service.export_snapshot()

        target = InMemoryRentalStore()
        result = await BackupService(target, settings=settings).import_snapshot(data)

        assert result.success is True
        assert result.errors == []
        assert await target.list_tenants() == await store.list_tenants()
        assert await target.get_price_settings() == await store.get_price_settings()

        restored = {b.bill.tenant_room_number: b for b in await target.list_bills_with_details()}
        original = {b.bill.tenant_room_number: b for b in await store.list_bills_with_details()}
        assert restored["101"].bill.total_amount == original["101"].bill.total_amount
        assert _details_by_name(restored["101"]) == _details_by_name(original["101"])

        # The extra meter comes back under its display name
        electricity = _details_by_name(restored["102"])["厨房电表"]
        assert electricity.type == DetailType.ELECTRICITY
        assert electricity.usage == Decimal("30")
        assert electricity.amount == Decimal("36")

        overrides = await target.list_meter_name_overrides()
        assert [(o.default_name, o.custom_name) for o in overrides] == [("1号电表", "厨房电表")]

    @pytest.mark.asyncio
    async def test_round_trip_restores_details_in_slot_order(self, service, store, settings):
        """Test details come back meters first, fees next, rent last."""
        await store.insert_tenant(Tenant(room_number="101", name="张三", rent=Decimal("1500")))
        await store.save_bill(
            Bill(tenant_room_number="101", month="2024-03", total_amount=Decimal("1605")),
            [
                BillDetail(type=DetailType.RENT, name="房租", amount=Decimal("1500")),
                BillDetail(type=DetailType.OTHER, name="卫生费", amount=Decimal("5")),
                BillDetail(
                    type=DetailType.WATER,
                    name="主水表",
                    amount=Decimal("100"),
                    previous_reading=Decimal("10"),
                    current_reading=Decimal("35"),
                ),
            ],
        )
        data = await service.export_snapshot()

        target = InMemoryRentalStore()
        await BackupService(target, settings=settings).import_snapshot(data)

        restored = (await target.list_bills_with_details())[0]
        assert [d.name for d in restored.details] == ["主水表", "卫生费", "房租"]

    @pytest.mark.asyncio
    async def test_restore_refreshes_auto_backup(self, service, store):
        """Test a successful restore writes the auto-backup."""
        data = await service.export_snapshot()
        await _populate(store)

        result = await service.import_snapshot(data)

        assert result.success is True
        assert service.auto_backup.latest_backup() is not None
        assert await store.list_tenants() == []


class TestAutoBackupFlows:
    """Tests for bill saves and auto-backup restores."""

    @pytest.mark.asyncio
    async def test_save_bill_writes_auto_backup(self, service, store):
        """Test saving a bill refreshes the auto-backup."""
        await store.insert_tenant(Tenant(room_number="101", name="张三", rent=Decimal("1500")))

        written = await service.save_bill(
            Bill(tenant_room_number="101", month="2024-04", total_amount=Decimal("1500")),
            [BillDetail(type=DetailType.RENT, name="房租", amount=Decimal("1500"))],
        )

        assert written is True
        assert len(await store.list_bills_with_details()) == 1

    @pytest.mark.asyncio
    async def test_import_auto_backup(self, service, store):
        """Test restoring from the auto-backup file."""
        await _populate(store)
        assert await service.auto_backup.perform_backup() is True
        await store.delete_tenant((await store.list_tenants())[0])

        result = await service.import_auto_backup()

        assert result.success is True
        assert result.stats.tenants_imported == 2
        assert len(await store.list_bills_with_details()) == 2

    @pytest.mark.asyncio
    async def test_import_auto_backup_missing_file(self, service):
        """Test a missing auto-backup is a failed import, not an exception."""
        result = await service.import_auto_backup()

        assert result.success is False
        assert result.stage == ImportStage.FAILED
        assert result.errors[0].type == ImportErrorType.FILE_FORMAT_ERROR

    @pytest.mark.asyncio
    async def test_export_to_directory(self, service, tmp_path):
        """Test manual export through the service."""
        path = await service.export_to_directory(tmp_path / "manual")
        assert path.is_file()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
