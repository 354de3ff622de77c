from app.models.agency_billing import (  # noqa: F401
    AgencyBillingAddon,
    AgencyBillingAttempt,
    AgencyBillingCharge,
    AgencyBillingCycle,
    AgencyBillingPaymentMethod,
    AgencyBillingSubscription,
    AgencySubscriptionStatus,
    AttemptStatus,
    BillingCycleStatus,
    BillingFxRate,
    BillingMethodStatus,
    BillingMethodType,
    ChargeKind,
    ChargeStatus,
    ReconciliationStatus,
)
from app.models.billing_event import BillingEvent  # noqa: F401
from app.models.billing_jobs import (  # noqa: F401
    BillingJobLock,
    BillingJobRun,
    BillingJobRunStatus,
    BillingJobSource,
)
from app.models.sequence import AgencyCounter  # noqa: F401
