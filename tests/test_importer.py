"""
Tests for SnapshotImporter.

Import runs end to end against the in-memory store. The store is
pre-populated where the full-replace policy matters.
"""

import json
import pytest
from decimal import Decimal

from rental_backup.backup import SnapshotImporter
from rental_backup.models.audit import AuditEventType
from rental_backup.models.results import ImportErrorType, ImportStage
from rental_backup.models.snapshot import Bill, BillDetail, DetailType, Tenant
from rental_backup.normalization import FormatNormalizer
from rental_backup.services.storage import InMemoryRentalStore, StorageError


def _bytes(payload) -> bytes:
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


@pytest.fixture
def importer(store, settings, audit_logger):
    return SnapshotImporter(store, settings=settings, audit_logger=audit_logger)


class FailingBillStore(InMemoryRentalStore):
    """Store whose bill writes always fail."""

    async def save_bill(self, bill, details):
        raise StorageError("disk full")


class ExplodingNormalizer(FormatNormalizer):
    """Normalizer with a bug in it."""

    def normalize(self, raw):
        raise RuntimeError("boom")


class TestImportSnapshot:
    """Tests for the happy path and per-record isolation."""

    @pytest.mark.asyncio
    async def test_flat_snapshot(self, importer, store, flat_payload):
        """Test a clean snapshot is written completely."""
        result = await importer.import_snapshot(_bytes(flat_payload))

        assert result.success is True
        assert result.message == "Import succeeded"
        assert result.stage == ImportStage.DONE
        assert result.errors == []
        assert result.stats.tenants_imported == 2
        assert result.stats.bills_imported == 2
        assert result.stats.prices_imported == 1
        assert result.stats.meter_configs_imported == 1
        assert result.metadata.schema_version == "2.0"

        prices = await store.get_price_settings()
        assert prices.water_price_per_unit == Decimal("4")
        assert prices.privacy_keywords == ["身份证", "电话"]
        assert await store.resolve_meter_display_name("1号电表", "102") == "厨房电表"

    @pytest.mark.asyncio
    async def test_nested_snapshot(self, importer, store, nested_payload):
        """Test a legacy nested snapshot is flattened and written."""
        result = await importer.import_snapshot(_bytes(nested_payload))

        assert result.success is True
        assert result.stats.bills_imported == 1
        bills = await store.list_bills_with_details()
        assert bills[0].bill.month == "2024-03"
        water = next(d for d in bills[0].details if d.type == DetailType.WATER)
        assert water.name == "主水表"
        assert water.usage == Decimal("25")

    @pytest.mark.asyncio
    async def test_blank_room_number_is_skipped(self, importer, store):
        """Test ten valid tenants plus one blank room number imports ten with one error."""
        tenants = [
            {"roomNumber": str(100 + i), "name": f"租客{i}", "rent": 1000}
            for i in range(10)
        ]
        tenants.append({"roomNumber": " ", "name": "无房号", "rent": 1000})
        payload = {
            "tenants": tenants,
            "bills": [],
            "prices": {"waterPrice": 4, "electricityPrice": 1},
        }

        result = await importer.import_snapshot(_bytes(payload))

        assert result.success is True
        assert result.stats.tenants_imported == 10
        assert len(result.errors) == 1
        assert result.errors[0].type == ImportErrorType.DATA_VALIDATION_ERROR
        assert "room number is blank" in result.errors[0].message
        assert result.message == "Import succeeded; 1 records were skipped"
        assert len(await store.list_tenants()) == 10

    @pytest.mark.asyncio
    async def test_invalid_bill_is_skipped(self, importer, store, flat_payload):
        """Test a bill with a malformed month is skipped, the rest written."""
        flat_payload["bills"][1]["month"] = "not-a-month"

        result = await importer.import_snapshot(_bytes(flat_payload))

        assert result.success is True
        assert result.stats.bills_imported == 1
        assert len(result.errors) == 1
        assert result.errors[0].message.startswith("bill 102/not-a-month skipped")

    @pytest.mark.asyncio
    async def test_duplicate_room_is_skipped(self, importer, flat_payload):
        """Test the second tenant with a repeated room number is rejected."""
        flat_payload["tenants"].append({"roomNumber": "101", "name": "王五", "rent": 1})

        result = await importer.import_snapshot(_bytes(flat_payload))

        assert result.stats.tenants_imported == 2
        assert len(result.errors_of_type(ImportErrorType.DATA_VALIDATION_ERROR)) == 1

    @pytest.mark.asyncio
    async def test_negative_rent_is_stored_as_zero(self, importer, store, flat_payload):
        """Test negative rent warns and is stored as zero."""
        flat_payload["tenants"][0]["rent"] = -100

        result = await importer.import_snapshot(_bytes(flat_payload))

        assert result.errors == []
        assert any("negative" in w for w in result.warnings)
        tenants = {t.room_number: t for t in await store.list_tenants()}
        assert tenants["101"].rent == Decimal("0")

    @pytest.mark.asyncio
    async def test_main_meter_config_is_rejected(self, importer, store, flat_payload):
        """Test a snapshot cannot rename a main meter."""
        flat_payload["meterConfigs"].append({
            "meterType": "water",
            "defaultName": "主水表",
            "customName": "大水表",
            "tenantRoomNumber": "101",
        })

        result = await importer.import_snapshot(_bytes(flat_payload))

        assert result.success is True
        assert result.stats.meter_configs_imported == 1
        assert len(result.errors_of_type(ImportErrorType.DATA_VALIDATION_ERROR)) == 1
        assert await store.resolve_meter_display_name("主水表", "101") == "主水表"

    @pytest.mark.asyncio
    async def test_over_long_custom_name_is_data_error(self, importer, flat_payload):
        """Test the store's name rules surface as data errors, not storage errors."""
        flat_payload["meterConfigs"][0]["customName"] = "很" * 30

        result = await importer.import_snapshot(_bytes(flat_payload))

        assert result.success is True
        assert result.stats.meter_configs_imported == 0
        assert result.database_errors == []
        assert len(result.errors_of_type(ImportErrorType.DATA_VALIDATION_ERROR)) == 1

    @pytest.mark.asyncio
    async def test_meter_config_without_type_is_imported(self, importer, store, flat_payload):
        """Test a missing meterType warns but the override is still stored."""
        flat_payload["meterConfigs"] = [
            {"defaultName": "1号电表", "customName": "厨房", "tenantRoomNumber": "101"},
        ]

        result = await importer.import_snapshot(_bytes(flat_payload))

        assert result.errors == []
        assert result.stats.meter_configs_imported == 1
        assert "Unknown meter type ''" in result.warnings
        assert await store.resolve_meter_display_name("1号电表", "101") == "厨房"

    @pytest.mark.asyncio
    async def test_legacy_room_number_forms(self, importer, store, flat_payload):
        """Test numeric room numbers and a blank roomNumber with room_number are accepted."""
        flat_payload["tenants"][0]["roomNumber"] = 101
        flat_payload["tenants"][1]["roomNumber"] = ""
        flat_payload["tenants"][1]["room_number"] = "102"
        flat_payload["bills"][0]["tenantRoomNumber"] = 101

        result = await importer.import_snapshot(_bytes(flat_payload))

        assert result.errors == []
        assert result.stats.tenants_imported == 2
        assert result.stats.bills_imported == 2
        assert result.orphaned_records == []
        assert {t.room_number for t in await store.list_tenants()} == {"101", "102"}


class TestFullReplace:
    """Tests for the full-replace conflict policy."""

    @pytest.mark.asyncio
    async def test_existing_data_is_replaced(self, importer, store, flat_payload):
        """Test tenants and bills not in the snapshot are gone afterwards."""
        old = Tenant(room_number="301", name="旧租客", rent=Decimal("900"))
        await store.insert_tenant(old)
        await store.save_bill(
            Bill(tenant_room_number="301", month="2023-12", total_amount=Decimal("900")),
            [BillDetail(type=DetailType.RENT, name="房租", amount=Decimal("900"))],
        )

        result = await importer.import_snapshot(_bytes(flat_payload))

        assert result.success is True
        rooms = [t.room_number for t in await store.list_tenants()]
        assert rooms == ["101", "102"]
        bills = await store.list_bills_with_details()
        assert {b.bill.tenant_room_number for b in bills} == {"101", "102"}

    @pytest.mark.asyncio
    async def test_reimport_is_idempotent(self, importer, store, flat_payload):
        """Test importing the same snapshot twice leaves one copy."""
        await importer.import_snapshot(_bytes(flat_payload))
        result = await importer.import_snapshot(_bytes(flat_payload))

        assert result.success is True
        assert len(await store.list_tenants()) == 2
        assert len(await store.list_bills_with_details()) == 2

    @pytest.mark.asyncio
    async def test_orphaned_bills_are_reported_and_written(self, importer, store, flat_payload):
        """Test bills for unknown rooms are written but reported."""
        flat_payload["bills"][0]["tenantRoomNumber"] = "999"

        result = await importer.import_snapshot(_bytes(flat_payload))

        assert result.success is True
        assert result.orphaned_records == ["bill 999/2024-03"]
        assert result.stats.bills_imported == 2
        assert any("Orphaned record" in w for w in result.warnings)


class TestImportFailures:
    """Tests for operation-level failures."""

    @pytest.mark.asyncio
    async def test_unparsable_bytes(self, importer, store, audit_storage):
        """Test invalid JSON fails the whole import without writing."""
        await store.insert_tenant(Tenant(room_number="101", name="张三", rent=Decimal("1")))

        result = await importer.import_snapshot(b"{not json")

        assert result.success is False
        assert result.stage == ImportStage.FAILED
        assert result.errors[0].type == ImportErrorType.FILE_FORMAT_ERROR
        assert result.errors[0].details == "parsing"
        assert len(await store.list_tenants()) == 1

        events = await audit_storage.get_recent_events()
        assert AuditEventType.IMPORT_FAILED in {e.event_type for e in events}

    @pytest.mark.asyncio
    async def test_empty_bytes(self, importer):
        """Test empty input is a file format error."""
        result = await importer.import_snapshot(b"")
        assert result.stage == ImportStage.FAILED
        assert result.errors[0].type == ImportErrorType.FILE_FORMAT_ERROR

    @pytest.mark.asyncio
    async def test_missing_prices_rejects_snapshot(self, importer, store, flat_payload):
        """Test a structurally invalid snapshot writes nothing."""
        await store.insert_tenant(Tenant(room_number="301", name="旧租客", rent=Decimal("1")))
        del flat_payload["prices"]

        result = await importer.import_snapshot(_bytes(flat_payload))

        assert result.success is False
        assert result.stage == ImportStage.VALIDATING
        assert result.message.startswith("Import rejected")
        assert [t.room_number for t in await store.list_tenants()] == ["301"]

    @pytest.mark.asyncio
    async def test_storage_errors_fail_the_import(self, settings, flat_payload):
        """Test a failing store write makes the import unsuccessful."""
        importer = SnapshotImporter(FailingBillStore(), settings=settings)

        result = await importer.import_snapshot(_bytes(flat_payload))

        assert result.success is False
        assert result.stage == ImportStage.DONE
        assert len(result.database_errors) == 2
        assert result.stats.tenants_imported == 2
        assert result.stats.bills_imported == 0
        assert result.message == "Import partially failed: 2 records could not be stored"

    @pytest.mark.asyncio
    async def test_unexpected_normalizer_error(self, store, settings, audit_logger, audit_storage, flat_payload):
        """Test a crashing normalizer rejects the snapshot without writing."""
        await store.insert_tenant(Tenant(room_number="301", name="旧租客", rent=Decimal("1")))
        importer = SnapshotImporter(
            store,
            normalizer=ExplodingNormalizer(),
            settings=settings,
            audit_logger=audit_logger,
        )

        result = await importer.import_snapshot(_bytes(flat_payload))

        assert result.success is False
        assert result.errors[0].type == ImportErrorType.UNKNOWN_ERROR
        assert len(await store.list_tenants()) == 1
        events = await audit_storage.get_recent_events()
        assert AuditEventType.SYSTEM_ERROR in {e.event_type for e in events}

    @pytest.mark.asyncio
    async def test_unreadable_nested_room_is_an_error(self, importer, nested_payload):
        """Test a nested room that is not a month map is reported as a skipped record."""
        nested_payload["bills"]["102"] = [{"month": "2024-03", "totalAmount": 10}]

        result = await importer.import_snapshot(_bytes(nested_payload))

        assert result.success is True
        assert result.stats.bills_imported == 1
        assert result.stats.errors_encountered == 1
        assert len(result.errors) == 1
        assert result.errors[0].type == ImportErrorType.DATA_VALIDATION_ERROR
        assert result.errors[0].details == "normalizing"
        assert result.errors[0].message.startswith("bills 102 skipped")

    @pytest.mark.asyncio
    async def test_skips_are_audited(self, importer, audit_storage, flat_payload):
        """Test every skipped record produces an audit event."""
        flat_payload["tenants"][1]["name"] = ""

        result = await importer.import_snapshot(_bytes(flat_payload))

        events = await audit_storage.get_recent_events()
        skipped = [e for e in events if e.event_type == AuditEventType.RECORD_SKIPPED]
        assert len(skipped) == 1
        assert skipped[0].entity_key == "102"
        same_run = await audit_storage.get_events_by_correlation_id(skipped[0].correlation_id)
        assert same_run[0].event_type == AuditEventType.IMPORT_STARTED
        assert same_run[-1].event_type == AuditEventType.IMPORT_COMPLETED
        assert result.orphaned_records == ["bill 102/2024-03", "meterConfig 1号电表@102"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
