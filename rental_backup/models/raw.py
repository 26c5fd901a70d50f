"""
Raw Snapshot Models

The parser turns untrusted bytes into a RawSnapshot exactly once.
The shape of the `bills` collection is decided here and carried as a
tagged union, so later stages pattern-match on `bills.kind` instead of
re-probing the JSON.

Individual records stay as plain dicts: record-level problems are
reported by the validator per record, not by failing the whole parse.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field


class BillsShape(str, Enum):
    """Historical encodings of the bill collection."""
    FLAT = "flat"        # list of complete bill records
    NESTED = "nested"    # room -> month -> bill data
    MISSING = "missing"


class FlatBills(BaseModel):
    """Current shape: `bills` is a list of bill records."""

    kind: Literal[BillsShape.FLAT] = BillsShape.FLAT
    records: list[Any] = Field(default_factory=list)


class NestedBills(BaseModel):
    """Legacy shape: `bills` is {room: {month: billData}}."""

    kind: Literal[BillsShape.NESTED] = BillsShape.NESTED
    rooms: dict[str, Any] = Field(default_factory=dict)


class MissingBills(BaseModel):
    """No usable `bills` key in the payload."""

    kind: Literal[BillsShape.MISSING] = BillsShape.MISSING


RawBills = Annotated[
    Union[FlatBills, NestedBills, MissingBills],
    Field(discriminator="kind"),
]


class RawSnapshot(BaseModel):
    """
    A parsed but unvalidated snapshot.

    `payload` keeps the original top-level object for the structural
    validator; the other fields are the pieces later stages consume.
    """

    payload: dict[str, Any]
    metadata: Optional[dict[str, Any]] = None
    tenants: Optional[list[Any]] = None
    bills: RawBills = Field(default_factory=MissingBills)
    prices: Optional[dict[str, Any]] = None
    meter_configs: list[Any] = Field(default_factory=list)

    @property
    def is_legacy(self) -> bool:
        """Snapshots without metadata predate the versioned format."""
        return self.metadata is None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "RawSnapshot":
        """Pick the collections out of a top-level JSON object."""
        bills_value = payload.get("bills")
        if isinstance(bills_value, list):
            bills: Union[FlatBills, NestedBills, MissingBills] = FlatBills(records=bills_value)
        elif isinstance(bills_value, dict):
            bills = NestedBills(rooms=bills_value)
        else:
            bills = MissingBills()

        prices = payload.get("prices")
        if prices is None:
            prices = payload.get("price")

        metadata = payload.get("metadata")
        tenants = payload.get("tenants")
        meter_configs = payload.get("meterConfigs")

        return cls(
            payload=payload,
            metadata=metadata if isinstance(metadata, dict) else None,
            tenants=tenants if isinstance(tenants, list) else None,
            bills=bills,
            prices=prices if isinstance(prices, dict) else None,
            meter_configs=meter_configs if isinstance(meter_configs, list) else [],
        )
