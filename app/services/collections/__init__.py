"""Collections services package.

- Anchor runs: cycle freeze, charge emission, attempt scheduling
- Zone-local calendar helpers and the business-day calendar
- FX rate resolution and cycle pricing
- The scheduled daily anchor job
"""

from app.services.collections.business_calendar import BusinessCalendar, OperationalDate
from app.services.collections.exceptions import (
    AnchorRunError,
    AnchorRunInputError,
    AnchorTransactionTimeoutError,
    FxRateError,
    MissingFxRateError,
    NoFxRateAvailableError,
)
from app.services.collections.fx_rates import FxRateResolver, ResolvedFxRate
from app.services.collections.pricing import (
    PricingBuilder,
    build_cycle_pricing_snapshot,
    price_snapshot,
)
from app.services.collections.run_anchor import AnchorRun, AnchorRunConfig, run_anchor

__all__ = [
    # Orchestration
    "AnchorRun",
    "AnchorRunConfig",
    "run_anchor",
    # Collaborators
    "BusinessCalendar",
    "OperationalDate",
    "FxRateResolver",
    "ResolvedFxRate",
    "PricingBuilder",
    "build_cycle_pricing_snapshot",
    "price_snapshot",
    # Errors
    "AnchorRunError",
    "AnchorRunInputError",
    "AnchorTransactionTimeoutError",
    "FxRateError",
    "MissingFxRateError",
    "NoFxRateAvailableError",
]
