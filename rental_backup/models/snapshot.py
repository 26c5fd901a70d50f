"""
Core Data Models for Rental Backup

These models define the canonical in-memory shape of everything a
snapshot carries: tenants, bills with their details, price settings,
meter-name overrides and the snapshot metadata.

Field names are snake_case in Python and camelCase on the wire
(`roomNumber`, `tenantRoomNumber`, ...). Models accept either form.

DESIGN DECISION: Money and meter readings are Decimal, never float.
Snapshot JSON is parsed with Decimal floats, so a restore never
introduces binary rounding into stored amounts.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


# =============================================================================
# RESERVED NAMES
# =============================================================================

MAIN_WATER_METER = "主水表"
MAIN_ELECTRICITY_METER = "主电表"
MAIN_METER_NAMES = frozenset({MAIN_WATER_METER, MAIN_ELECTRICITY_METER})

WATER_METER_TOKEN = "水表"
ELECTRICITY_METER_TOKEN = "电表"

RENT_DETAIL_NAME = "房租"
OTHER_DETAIL_NAME = "其他费用"
EXTRA_FEE_NAME = "额外费用"

MONTH_PATTERN = r"^\d{4}-\d{2}$"

# Decimals go out as JSON numbers, not strings
Money = Annotated[
    Decimal,
    PlainSerializer(lambda v: float(v), return_type=float, when_used="json"),
]


# =============================================================================
# ENUMS
# =============================================================================

class DetailType(str, Enum):
    """Kinds of line item a bill can carry."""
    WATER = "water"
    ELECTRICITY = "electricity"
    EXTRA = "extra"
    RENT = "rent"
    OTHER = "other"


METERED_TYPES = frozenset({DetailType.WATER, DetailType.ELECTRICITY, DetailType.EXTRA})


class MeterClass(str, Enum):
    """
    Classification of a meter by its default name.

    Only EXTRA meters may receive a custom display name.
    """
    MAIN = "main"
    EXTRA = "extra"
    NOT_A_METER = "not_a_meter"


def classify_meter(name: Optional[str]) -> MeterClass:
    """
    Classify a meter by its default name.

    The two reserved main-meter names are MAIN. Any other name that
    contains the water-meter or electricity-meter token is EXTRA.
    Everything else (rent, fees) is not a meter at all.
    """
    name = (name or "").strip()
    if name in MAIN_METER_NAMES:
        return MeterClass.MAIN
    if WATER_METER_TOKEN in name or ELECTRICITY_METER_TOKEN in name:
        return MeterClass.EXTRA
    return MeterClass.NOT_A_METER


def _from_timestamp(value: Any) -> Any:
    """Accept epoch milliseconds as well as ISO strings for timestamps."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc)
    return value


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _WireModel(BaseModel):
    """Base for models that travel through snapshot JSON."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# =============================================================================
# ENTITIES
# =============================================================================

class Tenant(_WireModel):
    """
    A tenant, identified by room number.

    Created wholesale during restore and deleted wholesale before it.
    """

    room_number: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Room number (unique key)"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Tenant name"
    )
    rent: Money = Field(
        ...,
        ge=0,
        description="Monthly rent"
    )


class BillDetail(_WireModel):
    """
    One line item of a bill.

    For water/electricity details the name doubles as the meter identity.
    """

    type: DetailType
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display label; meter name for metered types"
    )
    amount: Money = Field(
        ...,
        description="Amount charged for this line"
    )
    price_per_unit: Optional[Money] = None
    previous_reading: Optional[Money] = None
    current_reading: Optional[Money] = None
    usage: Optional[Money] = None

    @property
    def is_metered(self) -> bool:
        return self.type in METERED_TYPES

    @model_validator(mode='after')
    def default_usage(self) -> 'BillDetail':
        """Usage defaults to current - previous when not supplied."""
        if (
            self.is_metered
            and self.usage is None
            and self.previous_reading is not None
            and self.current_reading is not None
        ):
            self.usage = self.current_reading - self.previous_reading
        return self


class Bill(_WireModel):
    """
    A monthly bill for one tenant.

    `tenant_room_number` is a soft reference; the store does not enforce it.
    """

    tenant_room_number: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Room number of the owning tenant"
    )
    month: str = Field(
        ...,
        pattern=MONTH_PATTERN,
        description="Billing month, YYYY-MM"
    )
    total_amount: Money = Field(
        ...,
        description="Bill total"
    )
    created_date: datetime = Field(
        default_factory=_now,
        description="When the bill was created"
    )

    @field_validator('created_date', mode='before')
    @classmethod
    def parse_created_date(cls, v: Any) -> Any:
        if v is None:
            return _now()
        return _from_timestamp(v)


class BillWithDetails(BaseModel):
    """A bill together with its ordered details."""

    bill: Bill
    details: list[BillDetail] = Field(default_factory=list)

    @property
    def detail_total(self) -> Decimal:
        return sum((detail.amount for detail in self.details), Decimal("0"))


class PriceSettings(_WireModel):
    """
    Store-wide unit prices plus the receipt privacy keywords.

    There is exactly one of these per store.
    """

    water_price_per_unit: Money = Field(
        ...,
        description="Water price per unit"
    )
    electricity_price_per_unit: Money = Field(
        ...,
        description="Electricity price per unit"
    )
    privacy_keywords: list[str] = Field(
        default_factory=list,
        description="Keywords redacted on generated receipts"
    )

    @field_validator('privacy_keywords')
    @classmethod
    def drop_blank_keywords(cls, v: list[str]) -> list[str]:
        return [keyword.strip() for keyword in v if keyword and keyword.strip()]


class MeterNameOverride(_WireModel):
    """
    Custom display name for an extra meter.

    Keyed by (meter_type, default_name, tenant_room_number). An empty
    tenant_room_number means the override applies to every tenant.
    """

    meter_type: str = Field(
        ...,
        description="water or electricity"
    )
    default_name: str = Field(
        ...,
        min_length=1,
        description="Name the meter was created with"
    )
    custom_name: str = Field(
        ...,
        description="Name shown instead of the default"
    )
    tenant_room_number: str = Field(
        default="",
        description="Tenant this override applies to (empty = global)"
    )
    is_active: bool = True
    created_date: datetime = Field(default_factory=_now)
    updated_date: datetime = Field(default_factory=_now)

    @field_validator('created_date', 'updated_date', mode='before')
    @classmethod
    def parse_dates(cls, v: Any) -> Any:
        if v is None:
            return _now()
        return _from_timestamp(v)

    @field_validator('tenant_room_number', mode='before')
    @classmethod
    def none_means_global(cls, v: Any) -> Any:
        return "" if v is None else v


# =============================================================================
# SNAPSHOT
# =============================================================================

class SnapshotMetadata(BaseModel):
    """Header of a snapshot file."""

    model_config = ConfigDict(populate_by_name=True)

    format_version: str = Field(
        default="1.0",
        alias="version",
        description="Snapshot file format version"
    )
    export_timestamp: datetime = Field(
        default_factory=_now,
        alias="exportTime",
    )
    app_version: str = Field(
        default="unknown",
        alias="appVersion",
    )
    schema_version: str = Field(
        default="1.0",
        alias="dataStructureVersion",
        description="Version of the data structure the payload follows"
    )
    total_records: dict[str, int] = Field(
        default_factory=dict,
        alias="totalRecords",
    )

    @field_validator('export_timestamp', mode='before')
    @classmethod
    def parse_export_time(cls, v: Any) -> Any:
        if v is None:
            return _now()
        return _from_timestamp(v)

    @field_validator('format_version', 'app_version', 'schema_version', mode='before')
    @classmethod
    def stringify(cls, v: Any) -> Any:
        # Hand-edited files sometimes carry versions as numbers
        if isinstance(v, (int, float, Decimal)) and not isinstance(v, bool):
            return str(v)
        return v


class Snapshot(BaseModel):
    """
    The full persisted state of the application.

    Immutable once built; rebuilt fresh for every export.
    """

    model_config = ConfigDict(frozen=True)

    metadata: SnapshotMetadata
    tenants: list[Tenant] = Field(default_factory=list)
    bills: list[BillWithDetails] = Field(default_factory=list)
    prices: Optional[PriceSettings] = None
    meter_overrides: list[MeterNameOverride] = Field(default_factory=list)
