"""Snapshot validation package."""

from rental_backup.validation.validator import (
    SnapshotValidator,
    first_present,
    to_decimal,
)

__all__ = ["SnapshotValidator", "first_present", "to_decimal"]
