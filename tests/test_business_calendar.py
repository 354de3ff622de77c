"""Tests for the Buenos Aires business-day calendar."""

from datetime import UTC, date, datetime

from app.services.collections.business_calendar import BusinessCalendar

CARNIVAL_2024 = ["2024-02-12", "2024-02-13"]


class TestBusinessCalendar:
    """Tests for BusinessCalendar."""

    def test_weekends_are_not_business_days(self):
        """Test weekends are not business days."""
        calendar = BusinessCalendar()
        assert calendar.is_business_day("2024-02-09") is True  # Friday
        assert calendar.is_business_day("2024-02-10") is False  # Saturday
        assert calendar.is_business_day(date(2024, 2, 11)) is False  # Sunday

    def test_configured_holidays_are_skipped(self):
        """Test configured holidays are skipped."""
        calendar = BusinessCalendar(holidays=CARNIVAL_2024)
        assert calendar.is_business_day("2024-02-12") is False
        assert calendar.next_business_day("2024-02-10") == date(2024, 2, 14)

    def test_instant_is_read_in_calendar_zone(self):
        """01:00 UTC on Saturday is still Friday in Buenos Aires."""
        calendar = BusinessCalendar()
        assert calendar.is_business_day(datetime(2024, 2, 10, 1, 0, tzinfo=UTC)) is True

    def test_add_business_days_skips_weekend(self):
        """Test instant is read in calendar zone."""
        calendar = BusinessCalendar()
        due = datetime(2024, 2, 8, 3, 0, tzinfo=UTC)  # Thursday
        assert calendar.add_business_days(due, 2) == datetime(2024, 2, 12, 3, 0, tzinfo=UTC)

    def test_add_business_days_skips_holidays(self):
        """Test add business days skips holidays."""
        calendar = BusinessCalendar(holidays=CARNIVAL_2024)
        due = datetime(2024, 2, 8, 3, 0, tzinfo=UTC)
        assert calendar.add_business_days(due, 2) == datetime(2024, 2, 14, 3, 0, tzinfo=UTC)
        assert calendar.add_business_days(due, 4) == datetime(2024, 2, 16, 3, 0, tzinfo=UTC)

    def test_zero_business_days_returns_local_midnight(self):
        """Test zero business days returns local midnight."""
        calendar = BusinessCalendar()
        saturday_noon = datetime(2024, 2, 10, 15, 0, tzinfo=UTC)
        assert calendar.add_business_days(saturday_noon, 0) == datetime(
            2024, 2, 10, 3, 0, tzinfo=UTC
        )

    def test_resolve_operational_date_defers(self):
        """Test resolve operational date defers."""
        calendar = BusinessCalendar(holidays=CARNIVAL_2024)
        resolved = calendar.resolve_operational_date("2024-02-10")
        assert resolved.business_day is False
        assert resolved.deferred_to_next_business_day is True
        assert resolved.business_date == "2024-02-14"

    def test_resolve_operational_date_allows_non_business_day(self):
        """Test resolve operational date allows non business day."""
        calendar = BusinessCalendar()
        resolved = calendar.resolve_operational_date("2024-02-10", allow_non_business_day=True)
        assert resolved.business_date == "2024-02-10"
        assert resolved.deferred_to_next_business_day is False
