"""Tests for FX rate resolution."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from app.config import BUENOS_AIRES_TIME_ZONE as BA
from app.models.agency_billing import BillingFxRate
from app.services.collections.exceptions import MissingFxRateError, NoFxRateAvailableError
from app.services.collections.fx_rates import FxRateResolver


class TestFxRateResolver:
    """Tests for FxRateResolver."""

    def test_exact_rate(self, db_session, add_fx_rate):
        """Test exact rate."""
        add_fx_rate("2024-02-08", "1000.50")
        resolved = FxRateResolver(db_session, BA).resolve("2024-02-08", allow_fallback=False)
        assert resolved.rate_date_key == "2024-02-08"
        assert resolved.rate_date == datetime(2024, 2, 8, 3, 0, tzinfo=UTC)
        assert resolved.ars_per_usd == Decimal("1000.50")

    def test_missing_rate_without_fallback(self, db_session, add_fx_rate):
        """Test missing rate without fallback."""
        add_fx_rate("2024-02-07", "990")
        with pytest.raises(MissingFxRateError, match="Missing dolar_bsp rate for 2024-02-08"):
            FxRateResolver(db_session, BA).resolve("2024-02-08", allow_fallback=False)

    def test_fallback_uses_latest_earlier_rate(self, db_session, add_fx_rate):
        """Test fallback uses latest earlier rate."""
        add_fx_rate("2023-12-29", "800")
        add_fx_rate("2024-01-01", "810")
        add_fx_rate("2024-01-09", "830")
        resolved = FxRateResolver(db_session, BA).resolve("2024-01-08", allow_fallback=True)
        assert resolved.rate_date_key == "2024-01-01"
        assert resolved.ars_per_usd == Decimal("810")

    def test_fallback_without_earlier_rate(self, db_session, add_fx_rate):
        """Test fallback without earlier rate."""
        add_fx_rate("2024-01-09", "830")
        with pytest.raises(NoFxRateAvailableError, match="on or before 2024-01-08"):
            FxRateResolver(db_session, BA).resolve("2024-01-08", allow_fallback=True)

    def test_other_fx_types_ignored(self, db_session, add_fx_rate):
        """Test rates of other FX types ignored."""
        add_fx_rate("2024-02-08", "1200", fx_type="dolar_blue")
        with pytest.raises(MissingFxRateError):
            FxRateResolver(db_session, BA).resolve("2024-02-08", allow_fallback=False)

    def test_cache_is_per_resolver(self, db_session, add_fx_rate):
        """Test cache is per resolver."""
        add_fx_rate("2024-02-08", "1000")
        resolver = FxRateResolver(db_session, BA)
        first = resolver.resolve("2024-02-08", allow_fallback=False)

        db_session.query(BillingFxRate).delete()
        db_session.flush()

        assert resolver.resolve("2024-02-08", allow_fallback=False) == first
        with pytest.raises(MissingFxRateError):
            FxRateResolver(db_session, BA).resolve("2024-02-08", allow_fallback=False)
