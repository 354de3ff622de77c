from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from app.config import settings
from app.models.agency_billing import BillingFxRate
from app.services.collections.dates import as_utc, date_key_in_timezone, start_of_local_day
from app.services.collections.exceptions import MissingFxRateError, NoFxRateAvailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedFxRate:
    rate_date: datetime
    ars_per_usd: Decimal
    rate_date_key: str


class FxRateResolver:
    """Resolves the reference exchange rate for a zone-local day.

    One resolver belongs to one anchor run; its cache is never shared
    between runs.
    """

    def __init__(self, db: Session, timezone: str | None = None, fx_type: str | None = None):
        self.db = db
        self.timezone = timezone or settings.billing_timezone
        self.fx_type = fx_type or settings.fx_type
        self._cache: dict[str, ResolvedFxRate] = {}

    def _to_resolved(self, row: BillingFxRate) -> ResolvedFxRate:
        rate_date = as_utc(row.rate_date)
        return ResolvedFxRate(
            rate_date=rate_date,
            ars_per_usd=Decimal(str(row.ars_per_usd or 0)),
            rate_date_key=date_key_in_timezone(rate_date, self.timezone),
        )

    def lookup(self, date_key: str, allow_fallback: bool) -> ResolvedFxRate:
        target = start_of_local_day(date_key, self.timezone)
        exact = (
            self.db.query(BillingFxRate)
            .filter(BillingFxRate.fx_type == self.fx_type)
            .filter(BillingFxRate.rate_date == target)
            .first()
        )
        if exact:
            return self._to_resolved(exact)
        if not allow_fallback:
            raise MissingFxRateError(date_key, self.fx_type)
        fallback = (
            self.db.query(BillingFxRate)
            .filter(BillingFxRate.fx_type == self.fx_type)
            .filter(BillingFxRate.rate_date <= target)
            .order_by(BillingFxRate.rate_date.desc(), BillingFxRate.id.desc())
            .first()
        )
        if not fallback:
            raise NoFxRateAvailableError(date_key, self.fx_type)
        resolved = self._to_resolved(fallback)
        logger.info(
            "Using fallback %s rate from %s for %s", self.fx_type, resolved.rate_date_key, date_key
        )
        return resolved

    def resolve(self, date_key: str, allow_fallback: bool) -> ResolvedFxRate:
        cached = self._cache.get(date_key)
        if cached is not None:
            return cached
        resolved = self.lookup(date_key, allow_fallback)
        self._cache[date_key] = resolved
        return resolved
