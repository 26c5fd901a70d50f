"""
Snapshot Parser

Turns raw bytes into a RawSnapshot. This is the only stage of a
restore that may fail as a whole: once the bytes are a JSON object,
every later problem is reported per record.
"""

import json
import re
from decimal import Decimal
from typing import Optional

import structlog

from rental_backup.models.raw import RawSnapshot


logger = structlog.get_logger(__name__)

# Control characters other than \t \n \r break some JSON decoders and
# show up in files that went through chat apps.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


class SnapshotFormatError(Exception):
    """The input is not a readable snapshot at all."""
    pass


def clean_json_text(text: str) -> str:
    """Strip a leading BOM and stray control characters."""
    return _CONTROL_CHARS.sub("", text.lstrip("\ufeff"))


def parse_snapshot_bytes(data: bytes, max_size_bytes: Optional[int] = None) -> RawSnapshot:
    """
    Parse snapshot bytes.

    Floats are parsed as Decimal so amounts keep their exact value.

    Raises:
        SnapshotFormatError: For empty, oversized, non-UTF-8 or
            non-JSON input, or a JSON value that is not an object
    """
    if not data or not data.strip():
        raise SnapshotFormatError("Snapshot is empty")

    if max_size_bytes is not None and len(data) > max_size_bytes:
        raise SnapshotFormatError(
            f"Snapshot is {len(data)} bytes, limit is {max_size_bytes}"
        )

    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise SnapshotFormatError(f"Snapshot is not valid UTF-8: {e}")

    text = clean_json_text(text)
    if not text.strip():
        raise SnapshotFormatError("Snapshot is empty")

    try:
        payload = json.loads(text, parse_float=Decimal)
    except json.JSONDecodeError as e:
        raise SnapshotFormatError(
            f"Snapshot is not valid JSON (line {e.lineno}, column {e.colno}): {e.msg}"
        )

    if not isinstance(payload, dict):
        raise SnapshotFormatError(
            f"Snapshot must be a JSON object, got {type(payload).__name__}"
        )

    raw = RawSnapshot.from_payload(payload)
    logger.debug(
        "snapshot_parsed",
        size_bytes=len(data),
        bills_shape=raw.bills.kind.value,
        legacy=raw.is_legacy,
    )
    return raw
