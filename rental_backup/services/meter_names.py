"""
Meter Name Rules

Only extra meters may carry a custom display name. Main meters keep
their reserved names forever. These rules are shared by every store
implementation so that a restore cannot smuggle in a main-meter
override through the back door.
"""

import re

from rental_backup.models.snapshot import MeterClass, classify_meter
from rental_backup.services.storage.interface import MeterNameRejectedError


_UNSAFE_CHARS = re.compile(r"[<>\"'&]")
_WHITESPACE = re.compile(r"\s+")


def sanitize_custom_name(name: str) -> str:
    """Remove markup characters and collapse whitespace."""
    cleaned = _UNSAFE_CHARS.sub("", name or "")
    return _WHITESPACE.sub(" ", cleaned).strip()


def is_valid_custom_name(name: str, max_length: int = 20) -> bool:
    return bool(name and name.strip()) and 1 <= len(name) <= max_length


def check_override_allowed(default_name: str) -> None:
    """
    Raise MeterNameRejectedError unless the meter is an extra meter.

    Raises:
        MeterNameRejectedError: For main meters and for names that are
            not meters at all
    """
    meter_class = classify_meter(default_name)
    if meter_class == MeterClass.MAIN:
        raise MeterNameRejectedError(
            f"Main meter '{default_name}' cannot be renamed"
        )
    if meter_class == MeterClass.NOT_A_METER:
        raise MeterNameRejectedError(
            f"'{default_name}' is not a water or electricity meter"
        )


def prepare_custom_name(
    default_name: str,
    custom_name: str,
    max_length: int = 20,
) -> str:
    """
    Apply every override rule and return the name to store.

    Returns:
        The sanitized custom name. Equal to default_name when the
        caller is asking for a reset.

    Raises:
        MeterNameRejectedError: If the override is not allowed
    """
    check_override_allowed(default_name)

    if not is_valid_custom_name(custom_name, max_length):
        raise MeterNameRejectedError(
            f"Custom name must be 1-{max_length} characters, got {custom_name!r}"
        )

    sanitized = sanitize_custom_name(custom_name)
    if not sanitized:
        raise MeterNameRejectedError(
            f"Custom name {custom_name!r} is empty after sanitizing"
        )
    return sanitized
