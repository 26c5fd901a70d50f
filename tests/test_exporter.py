"""
Tests for SnapshotExporter and the nested bill encoding.
"""

import json
import pytest
from datetime import datetime, timezone
from decimal import Decimal

from rental_backup.backup import SnapshotExporter, encode_nested_bill
from rental_backup.models.audit import AuditEventType
from rental_backup.models.snapshot import (
    Bill,
    BillDetail,
    BillWithDetails,
    DetailType,
    Snapshot,
    SnapshotMetadata,
    Tenant,
)
from rental_backup.services.storage import InMemoryRentalStore, StorageError


CREATED = datetime(2024, 3, 9, 16, 0, tzinfo=timezone.utc)


def _bill(*details, room="101", month="2024-03", total="0"):
    return BillWithDetails(
        bill=Bill(
            tenant_room_number=room,
            month=month,
            total_amount=Decimal(total),
            created_date=CREATED,
        ),
        details=list(details),
    )


def _meter(detail_type, name, previous, current, amount, price=None):
    return BillDetail(
        type=detail_type,
        name=name,
        amount=Decimal(amount),
        price_per_unit=Decimal(price) if price else None,
        previous_reading=Decimal(previous),
        current_reading=Decimal(current),
    )


@pytest.fixture
def exporter(store, settings, audit_logger):
    return SnapshotExporter(store, settings=settings, audit_logger=audit_logger)


class BrokenStore(InMemoryRentalStore):
    """Store that cannot list bills."""

    async def list_bills_with_details(self):
        raise StorageError("database locked")


class TestEncodeNestedBill:
    """Tests for encode_nested_bill."""

    def test_main_meters_and_rent(self):
        """Test main meters go to their slots and rent to the rent key."""
        entry = encode_nested_bill(_bill(
            _meter(DetailType.WATER, "主水表", "10", "35", "100", "4"),
            _meter(DetailType.ELECTRICITY, "主电表", "100", "130", "30"),
            BillDetail(type=DetailType.RENT, name="房租", amount=Decimal("1500")),
            total="1630",
        ))

        assert entry["month"] == "2024-03"
        assert entry["totalAmount"] == Decimal("1630")
        assert entry["createdDate"] == int(CREATED.timestamp() * 1000)
        assert entry["water"] == {
            "amount": Decimal("100"),
            "previous": Decimal("10"),
            "current": Decimal("35"),
            "usage": Decimal("25"),
            "pricePerUnit": Decimal("4"),
        }
        assert "pricePerUnit" not in entry["electricity"]
        assert entry["rent"] == Decimal("1500")
        assert "extraMeters" not in entry
        assert "extraFees" not in entry

    def test_extra_meters_and_fees(self):
        """Test extra meters and other charges keep their type."""
        entry = encode_nested_bill(_bill(
            _meter(DetailType.ELECTRICITY, "1号电表", "5", "9", "4"),
            _meter(DetailType.WATER, "主水表", "1", "2", "4"),
            _meter(DetailType.WATER, "主水表", "2", "3", "4"),
            BillDetail(type=DetailType.OTHER, name="卫生费", amount=Decimal("5")),
            BillDetail(type=DetailType.RENT, name="押金", amount=Decimal("500")),
        ))

        assert [m["name"] for m in entry["extraMeters"]] == ["1号电表", "主水表"]
        assert entry["extraMeters"][0]["type"] == "electricity"
        assert entry["extraFees"] == [
            {"type": "other", "name": "卫生费", "amount": Decimal("5")},
            {"type": "rent", "name": "押金", "amount": Decimal("500")},
        ]
        assert "rent" not in entry


class TestSnapshotExporter:
    """Tests for SnapshotExporter."""

    @pytest.mark.asyncio
    async def test_export_document(self, exporter, store, settings):
        """Test the exported document layout."""
        await store.insert_tenant(Tenant(room_number="101", name="张三", rent=Decimal("1500")))
        await store.save_bill(
            _bill(total="1500").bill,
            [BillDetail(type=DetailType.RENT, name="房租", amount=Decimal("1500"))],
        )
        await store.save_price_settings(Decimal("4.5"), Decimal("1"))

        document = json.loads(await exporter.export_snapshot())

        assert document["metadata"]["version"] == "1.0"
        assert document["metadata"]["appVersion"] == settings.app_version
        assert document["metadata"]["dataStructureVersion"] == settings.data_structure_version
        assert document["metadata"]["totalRecords"] == {"tenants": 1, "bills": 1, "meterConfigs": 0}
        assert isinstance(document["metadata"]["exportTime"], int)
        assert document["tenants"] == [{"roomNumber": "101", "name": "张三", "rent": 1500}]
        assert document["bills"]["101"]["2024-03"]["rent"] == 1500
        assert document["prices"] == {
            "waterPrice": 4.5,
            "electricityPrice": 1,
            "privacyKeywords": [],
        }
        assert document["meterConfigs"] == []

    @pytest.mark.asyncio
    async def test_default_prices_when_none_saved(self, exporter, settings):
        """Test an empty store still exports prices from settings."""
        document = json.loads(await exporter.export_snapshot())
        assert document["prices"]["waterPrice"] == settings.default_water_price
        assert document["tenants"] == []
        assert document["bills"] == {}

    @pytest.mark.asyncio
    async def test_extra_meter_uses_display_name(self, exporter, store):
        """Test extra meters are exported under their current custom name."""
        await store.insert_tenant(Tenant(room_number="102", name="李四", rent=Decimal("1800")))
        await store.save_meter_name_override("1号电表", "厨房电表", "electricity", "102")
        await store.save_bill(
            _bill(room="102", total="30").bill,
            [_meter(DetailType.ELECTRICITY, "1号电表", "100", "130", "30")],
        )

        document = json.loads(await exporter.export_snapshot())

        meters = document["bills"]["102"]["2024-03"]["extraMeters"]
        assert [m["name"] for m in meters] == ["厨房电表"]
        config = document["meterConfigs"][0]
        assert config["defaultName"] == "1号电表"
        assert config["customName"] == "厨房电表"
        assert config["tenantRoomNumber"] == "102"

    @pytest.mark.asyncio
    async def test_export_is_audited(self, exporter, audit_storage):
        """Test a completed export leaves an audit event."""
        await exporter.export_snapshot()
        events = await audit_storage.get_recent_events()
        assert [e.event_type for e in events] == [AuditEventType.EXPORT_COMPLETED]

    @pytest.mark.asyncio
    async def test_export_failure_is_audited_and_raised(self, settings, audit_logger, audit_storage):
        """Test store failures propagate after being audited."""
        exporter = SnapshotExporter(BrokenStore(), settings=settings, audit_logger=audit_logger)

        with pytest.raises(StorageError):
            await exporter.export_snapshot()

        events = await audit_storage.get_recent_events()
        assert [e.event_type for e in events] == [AuditEventType.EXPORT_FAILED]

    @pytest.mark.asyncio
    async def test_export_to_directory(self, exporter, tmp_path):
        """Test manual exports get a timestamped file name."""
        path = await exporter.export_to_directory(tmp_path / "exports")

        assert path.parent == tmp_path / "exports"
        assert path.name.startswith("complete_backup_")
        assert path.suffix == ".json"
        assert json.loads(path.read_bytes())["metadata"]["version"] == "1.0"

    def test_serialize_keeps_chinese_text(self, exporter):
        """Test non-ASCII text is written as UTF-8, not escaped."""
        snapshot = Snapshot(
            metadata=SnapshotMetadata(),
            tenants=[Tenant(room_number="101", name="张三", rent=Decimal("1"))],
        )
        snapshot_bytes = exporter.serialize(snapshot)
        assert "张三".encode("utf-8") in snapshot_bytes


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
