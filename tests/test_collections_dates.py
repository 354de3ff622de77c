"""Tests for zone-local calendar helpers."""

from datetime import UTC, date, datetime

import pytest

from app.config import BUENOS_AIRES_TIME_ZONE as BA
from app.services.collections import dates

# =============================================================================
# Anchor dates
# =============================================================================


class TestAnchorDateForMonth:
    """Tests for get_anchor_date_for_month."""

    def test_anchor_is_local_midnight(self):
        """Test anchor is local midnight."""
        result = dates.get_anchor_date_for_month(date(2024, 2, 15), 8, BA)
        assert result == datetime(2024, 2, 8, 3, 0, tzinfo=UTC)

    def test_anchor_day_clipped_to_april(self):
        """Anchor day 31 in April lands on April 30."""
        result = dates.get_anchor_date_for_month(date(2024, 4, 2), 31, BA)
        assert dates.date_key_in_timezone(result, BA) == "2024-04-30"

    def test_february_leap_and_common_year(self):
        """Test anchor day 31 clipped to April 30th."""
        leap = dates.get_anchor_date_for_month(date(2024, 2, 1), 31, BA)
        common = dates.get_anchor_date_for_month(date(2023, 2, 1), 30, BA)
        assert dates.date_key_in_timezone(leap, BA) == "2024-02-29"
        assert dates.date_key_in_timezone(common, BA) == "2023-02-28"

    def test_instant_reference_uses_local_month(self):
        """00:30 UTC on March 1st is still February in Buenos Aires."""
        reference = datetime(2024, 3, 1, 0, 30, tzinfo=UTC)
        result = dates.get_anchor_date_for_month(reference, 8, BA)
        assert dates.date_key_in_timezone(result, BA) == "2024-02-08"

    def test_naive_reference_read_as_utc(self):
        """Test instant reference uses local month."""
        result = dates.get_anchor_date_for_month(datetime(2024, 3, 1, 0, 30), 8, BA)
        assert dates.date_key_in_timezone(result, BA) == "2024-02-08"

    @pytest.mark.parametrize("anchor_day", [0, 32, -1, True, 1.5, "8"])
    def test_invalid_anchor_day_rejected(self, anchor_day):
        """Test invalid anchor day rejected."""
        with pytest.raises(ValueError):
            dates.get_anchor_date_for_month(date(2024, 2, 1), anchor_day, BA)

    def test_unknown_zone_rejected(self):
        """Test unknown zone rejected."""
        with pytest.raises(ValueError, match="Unknown time zone"):
            dates.get_anchor_date_for_month(date(2024, 2, 1), 8, "Mars/Olympus_Mons")


class TestNextAnchorDate:
    """Tests for next_anchor_date."""

    def test_next_month_keeps_anchor_day(self):
        """Test next month keeps anchor day."""
        anchor = dates.get_anchor_date_for_month(date(2024, 1, 8), 8, BA)
        assert dates.date_key_in_timezone(dates.next_anchor_date(anchor, 8, BA), BA) == "2024-02-08"

    def test_clips_into_short_month(self):
        """Test clips into short month."""
        anchor = dates.get_anchor_date_for_month(date(2024, 1, 31), 31, BA)
        result = dates.next_anchor_date(anchor, 31, BA)
        assert dates.date_key_in_timezone(result, BA) == "2024-02-29"

    def test_recovers_full_day_after_clipped_month(self):
        """Test recovers full day after clipped month."""
        clipped = dates.get_anchor_date_for_month(date(2024, 4, 1), 31, BA)
        result = dates.next_anchor_date(clipped, 31, BA)
        assert dates.date_key_in_timezone(result, BA) == "2024-05-31"

    def test_december_rolls_year(self):
        """Test December rolls over to January."""
        anchor = dates.get_anchor_date_for_month(date(2024, 12, 8), 8, BA)
        assert dates.date_key_in_timezone(dates.next_anchor_date(anchor, 8, BA), BA) == "2025-01-08"


# =============================================================================
# Day keys and arithmetic
# =============================================================================


class TestDateKeys:
    """Tests for date key conversion."""

    def test_key_follows_zone_not_utc(self):
        """Test day key follows the zone, not UTC."""
        instant = datetime(2024, 2, 8, 2, 0, tzinfo=UTC)
        assert dates.date_key_in_timezone(instant, BA) == "2024-02-07"
        assert dates.date_key_in_timezone(instant, "UTC") == "2024-02-08"

    def test_start_of_local_day(self):
        """Test start of local day."""
        assert dates.start_of_local_day("2024-02-08", BA) == datetime(
            2024, 2, 8, 3, 0, tzinfo=UTC
        )

    @pytest.mark.parametrize("key", ["2024/02/08", "2024-2-8", "", "2024-13-01"])
    def test_malformed_key_rejected(self, key):
        """Test malformed key rejected."""
        with pytest.raises(ValueError):
            dates.parse_date_key(key)


class TestAddDaysLocal:
    """Tests for add_days_local."""

    def test_adds_calendar_days(self):
        """Test adds calendar days."""
        start = datetime(2024, 2, 8, 3, 0, tzinfo=UTC)
        assert dates.add_days_local(start, 4, BA) == datetime(2024, 2, 12, 3, 0, tzinfo=UTC)

    def test_zero_days_is_identity(self):
        """Test zero days is identity."""
        start = datetime(2024, 2, 8, 3, 0, tzinfo=UTC)
        assert dates.add_days_local(start, 0, BA) == start

    def test_crosses_month_end(self):
        """Test crosses month end."""
        start = dates.start_of_local_day("2024-01-30", BA)
        result = dates.add_days_local(start, 3, BA)
        assert dates.date_key_in_timezone(result, BA) == "2024-02-02"

    def test_keeps_local_midnight_across_dst(self):
        """New York springs forward on 2024-03-10; midnight stays midnight."""
        tz = "America/New_York"
        start = dates.start_of_local_day("2024-03-09", tz)
        assert start == datetime(2024, 3, 9, 5, 0, tzinfo=UTC)
        result = dates.add_days_local(start, 2, tz)
        assert result == datetime(2024, 3, 11, 4, 0, tzinfo=UTC)
        assert dates.date_key_in_timezone(result, tz) == "2024-03-11"

    def test_rejects_non_integer_offset(self):
        """Test local midnight kept across DST changes."""
        with pytest.raises(ValueError):
            dates.add_days_local(datetime(2024, 2, 8, tzinfo=UTC), 1.5, BA)
