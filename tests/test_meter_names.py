"""
Tests for meter-name rules.
"""

import pytest

from rental_backup.services.meter_names import (
    check_override_allowed,
    is_valid_custom_name,
    prepare_custom_name,
    sanitize_custom_name,
)
from rental_backup.services.storage import MeterNameRejectedError


class TestMeterNameRules:
    """Tests for the override rules."""

    @pytest.mark.parametrize("name", ["主水表", "主电表"])
    def test_main_meters_cannot_be_renamed(self, name):
        """Test main meters keep their reserved names."""
        with pytest.raises(MeterNameRejectedError):
            check_override_allowed(name)

    def test_non_meters_cannot_be_renamed(self):
        """Test rent and fees are not meters."""
        with pytest.raises(MeterNameRejectedError):
            check_override_allowed("房租")

    def test_extra_meter_is_allowed(self):
        """Test an extra meter passes the check."""
        check_override_allowed("1号水表")

    def test_sanitize(self):
        """Test markup characters are removed and whitespace collapsed."""
        assert sanitize_custom_name(" <厨房>  水表 ") == "厨房 水表"

    def test_length_limit(self):
        """Test custom names are limited in length."""
        assert is_valid_custom_name("厨房", max_length=20)
        assert not is_valid_custom_name("x" * 21, max_length=20)
        assert not is_valid_custom_name("   ")

    def test_prepare_rejects_name_empty_after_sanitizing(self):
        """Test a name made only of markup characters is rejected."""
        with pytest.raises(MeterNameRejectedError):
            prepare_custom_name("1号水表", "<>")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
