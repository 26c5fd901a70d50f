"""Snapshot parsing and format normalization package."""

from rental_backup.normalization.parser import (
    SnapshotFormatError,
    clean_json_text,
    parse_snapshot_bytes,
)
from rental_backup.normalization.normalizer import (
    FormatNormalizer,
    NormalizedSnapshot,
    coerce_month,
)

__all__ = [
    "FormatNormalizer",
    "NormalizedSnapshot",
    "SnapshotFormatError",
    "clean_json_text",
    "coerce_month",
    "parse_snapshot_bytes",
]
