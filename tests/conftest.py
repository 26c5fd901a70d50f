"""
Shared fixtures for the backup engine tests.

Everything runs against the in-memory store; the auto-backup directory
always points into pytest's tmp_path.
"""

import pytest

from rental_backup.audit import AuditLogger
from rental_backup.config import BackupSettings
from rental_backup.services.storage import InMemoryAuditStorage, InMemoryRentalStore


@pytest.fixture
def settings(tmp_path):
    return BackupSettings(
        auto_backup_dir=tmp_path / "auto",
        auto_backup_enabled=True,
        auto_backup_after_restore=True,
    )


@pytest.fixture
def store():
    return InMemoryRentalStore()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def flat_payload():
    """A current-shape snapshot with two tenants and two bills."""
    return {
        "metadata": {
            "version": "1.0",
            "exportTime": 1710000000000,
            "appVersion": "1.0.0",
            "dataStructureVersion": "2.0",
            "totalRecords": {"tenants": 2, "bills": 2, "meterConfigs": 1},
        },
        "tenants": [
            {"roomNumber": "101", "name": "张三", "rent": 1500},
            {"roomNumber": "102", "name": "李四", "rent": 1800},
        ],
        "bills": [
            {
                "tenantRoomNumber": "101",
                "month": "2024-03",
                "totalAmount": 1605,
                "createdDate": 1710000000000,
                "details": [
                    {
                        "type": "water",
                        "name": "主水表",
                        "amount": 100,
                        "pricePerUnit": 4,
                        "previousReading": 10,
                        "currentReading": 35,
                        "usage": 25,
                    },
                    {"type": "rent", "name": "房租", "amount": 1500},
                    {"type": "other", "name": "卫生费", "amount": 5},
                ],
            },
            {
                "tenantRoomNumber": "102",
                "month": "2024-03",
                "totalAmount": 1830,
                "details": [
                    {
                        "type": "electricity",
                        "name": "1号电表",
                        "amount": 30,
                        "pricePerUnit": 1,
                        "previousReading": 100,
                        "currentReading": 130,
                    },
                    {"type": "rent", "name": "房租", "amount": 1800},
                ],
            },
        ],
        "prices": {
            "waterPrice": 4,
            "electricityPrice": 1,
            "privacyKeywords": ["身份证", "电话"],
        },
        "meterConfigs": [
            {
                "meterType": "electricity",
                "defaultName": "1号电表",
                "customName": "厨房电表",
                "tenantRoomNumber": "102",
                "isActive": True,
                "createdDate": 1710000000000,
                "updatedDate": 1710000000000,
            }
        ],
    }


@pytest.fixture
def nested_payload():
    """The legacy nested shape for the same bill as flat_payload's room 101."""
    return {
        "tenants": [
            {"room_number": "101", "name": "张三", "rent": 1500},
        ],
        "bills": {
            "101": {
                "2024/03": {
                    "water": {"previous": 10, "current": 35, "amount": 100, "pricePerUnit": 4},
                    "rent": 1500,
                    "extraFees": [{"type": "other", "name": "卫生费", "amount": 5}],
                    "totalAmount": 1605,
                    "createdDate": 1710000000000,
                }
            }
        },
        "price": {"water": 4, "electricity": 1, "privacyKeywords": "[\"身份证\"]"},
    }

