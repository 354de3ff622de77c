"""Recurring billing anchor run.

For every active agency subscription the run freezes the billing cycle of
the anchor date, emits one idempotent charge and schedules its collection
attempts. Each subscription is processed in its own unit of work; a failure
is recorded in the summary and the run moves on to the next subscription.

Every write is a find-or-create on a unique key, so the run can be repeated
for the same date as often as needed:

- cycle: (subscription_id, anchor_date)
- charge: (agency_id, "{agency_id}-{anchor_date_key}")
- attempt: (charge_id, attempt_no)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.metrics import observe_anchor_subscription
from app.models.agency_billing import (
    AgencyBillingAttempt,
    AgencyBillingCharge,
    AgencyBillingCycle,
    AgencyBillingPaymentMethod,
    AgencyBillingSubscription,
    AgencySubscriptionStatus,
    AttemptStatus,
    BillingCycleStatus,
    BillingMethodStatus,
    ChargeKind,
    ChargeStatus,
    ReconciliationStatus,
)
from app.schemas.collections import (
    CyclePricingSnapshot,
    FxRateUsed,
    PricingContext,
    RunAnchorErrorItem,
    RunAnchorRequest,
    RunAnchorSummary,
)
from app.services.billing_events import ANCHOR_RUN_PROCESSED, log_billing_event
from app.services.collections.business_calendar import BusinessCalendar
from app.services.collections.dates import (
    add_days_local,
    as_utc,
    date_key_in_timezone,
    get_anchor_date_for_month,
    local_date,
    next_anchor_date,
)
from app.services.collections.exceptions import (
    AnchorRunInputError,
    AnchorTransactionTimeoutError,
)
from app.services.collections.fx_rates import FxRateResolver, ResolvedFxRate
from app.services.collections.pricing import PricingBuilder, build_cycle_pricing_snapshot
from app.services.common import normalize_error_message, round_money, to_decimal
from app.services.numbering import next_agency_counter

logger = logging.getLogger(__name__)

CHARGE_COUNTER_KEY = "agency_billing_charge"
CHARGE_NOTES = "Recurring collection scheduled by anchor run"
ATTEMPT_NOTES = "Scheduled by anchor run"


@dataclass(frozen=True)
class AnchorRunConfig:
    timezone: str
    anchor_day: int
    retry_days: tuple[int, ...]
    use_business_days: bool
    direct_debit_discount_pct: Decimal
    fx_type: str
    collection_channel: str
    attempt_channel: str
    tx_max_wait_ms: int
    tx_timeout_ms: int

    @classmethod
    def from_settings(cls) -> AnchorRunConfig:
        return cls(
            timezone=settings.billing_timezone,
            anchor_day=settings.billing_anchor_day,
            retry_days=tuple(settings.dunning_retry_days),
            use_business_days=settings.dunning_use_business_days,
            direct_debit_discount_pct=to_decimal(settings.direct_debit_discount_pct),
            fx_type=settings.fx_type,
            collection_channel=settings.collection_channel,
            attempt_channel=settings.attempt_channel,
            tx_max_wait_ms=settings.run_anchor_tx_max_wait_ms,
            tx_timeout_ms=settings.run_anchor_tx_timeout_ms,
        )


@dataclass
class SubscriptionOutcome:
    cycle_created: bool
    charge_created: bool
    attempts_created: int

    @property
    def idempotent(self) -> bool:
        return not self.cycle_created and not self.charge_created and self.attempts_created == 0


@dataclass
class _RunTotals:
    processed: int = 0
    cycles_created: int = 0
    charges_created: int = 0
    attempts_created: int = 0
    skipped_idempotent: int = 0
    fx_rates_used: dict[str, Decimal] = field(default_factory=dict)
    errors: list[RunAnchorErrorItem] = field(default_factory=list)

    def add(self, outcome: SubscriptionOutcome) -> None:
        self.processed += 1
        self.cycles_created += int(outcome.cycle_created)
        self.charges_created += int(outcome.charge_created)
        self.attempts_created += outcome.attempts_created
        if outcome.idempotent:
            self.skipped_idempotent += 1


def sorted_retry_offsets(days: Iterable[int]) -> list[int]:
    """Dunning offsets with day 0 always present, deduplicated and ascending."""
    offsets = {0}
    for day in days:
        offsets.add(max(0, int(day)))
    return sorted(offsets)


def build_idempotency_key(agency_id: int, anchor_date_key: str) -> str:
    return f"{agency_id}-{anchor_date_key}"


def build_charge_label(anchor_date: datetime, timezone: str) -> str:
    day = local_date(anchor_date, timezone)
    return f"Subscription {day.month:02d}/{day.year}"


def summary_status(processed: int, error_count: int) -> str:
    if error_count:
        return "partial" if processed else "failed"
    return "success" if processed else "no_op"


class AnchorRun:
    def __init__(
        self,
        db: Session,
        *,
        config: AnchorRunConfig | None = None,
        pricing_builder: PricingBuilder | None = None,
        business_calendar: BusinessCalendar | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.db = db
        self.config = config or AnchorRunConfig.from_settings()
        self.pricing_builder = pricing_builder or build_cycle_pricing_snapshot
        self.business_calendar = business_calendar or BusinessCalendar.from_settings()
        self.clock = clock
        self.retry_offsets = sorted_retry_offsets(self.config.retry_days)

    def execute(self, payload: RunAnchorRequest) -> RunAnchorSummary:
        if payload.agency_ids is not None and not payload.agency_ids:
            raise AnchorRunInputError("Agency filter is empty")

        fx_resolver = FxRateResolver(self.db, self.config.timezone, self.config.fx_type)
        subscriptions = self._load_subscriptions(payload.agency_ids)
        totals = _RunTotals()
        logger.info(
            "Anchor run started for %s: %d subscriptions (override_fx=%s)",
            payload.anchor_date,
            len(subscriptions),
            payload.override_fx,
        )

        for subscription in subscriptions:
            agency_id = subscription.agency_id
            try:
                outcome = self._run_subscription(subscription, payload, fx_resolver, totals)
            except Exception as exc:
                message = normalize_error_message(exc)
                logger.warning("Anchor run failed for agency %s: %s", agency_id, message)
                totals.errors.append(RunAnchorErrorItem(agency_id=agency_id, message=message))
                observe_anchor_subscription("error")
                continue
            totals.add(outcome)
            observe_anchor_subscription("idempotent" if outcome.idempotent else "created")

        summary = RunAnchorSummary(
            anchor_date=date_key_in_timezone(
                get_anchor_date_for_month(
                    payload.anchor_date, self.config.anchor_day, self.config.timezone
                ),
                self.config.timezone,
            ),
            override_fx=payload.override_fx,
            status=summary_status(totals.processed, len(totals.errors)),
            subscriptions_total=len(subscriptions),
            subscriptions_processed=totals.processed,
            cycles_created=totals.cycles_created,
            charges_created=totals.charges_created,
            attempts_created=totals.attempts_created,
            skipped_idempotent=totals.skipped_idempotent,
            fx_rates_used=[
                FxRateUsed(date=key, ars_per_usd=value)
                for key, value in totals.fx_rates_used.items()
            ],
            errors=totals.errors,
        )
        logger.info(
            "Anchor run finished for %s: %d cycles, %d charges, %d attempts, %d errors",
            summary.anchor_date,
            summary.cycles_created,
            summary.charges_created,
            summary.attempts_created,
            len(summary.errors),
        )
        return summary

    def _load_subscriptions(self, agency_ids: list[int] | None) -> list[AgencyBillingSubscription]:
        query = self.db.query(AgencyBillingSubscription).filter(
            AgencyBillingSubscription.status == AgencySubscriptionStatus.active
        )
        if agency_ids:
            query = query.filter(AgencyBillingSubscription.agency_id.in_(agency_ids))
        return query.order_by(AgencyBillingSubscription.agency_id.asc()).all()

    def _run_subscription(
        self,
        subscription: AgencyBillingSubscription,
        payload: RunAnchorRequest,
        fx_resolver: FxRateResolver,
        totals: _RunTotals,
    ) -> SubscriptionOutcome:
        timezone = subscription.timezone or self.config.timezone
        anchor_date = get_anchor_date_for_month(
            payload.anchor_date, subscription.anchor_day, timezone
        )
        anchor_date_key = date_key_in_timezone(anchor_date, timezone)

        fx = fx_resolver.resolve(anchor_date_key, payload.override_fx)
        totals.fx_rates_used[fx.rate_date_key] = fx.ars_per_usd

        started = self.clock()
        nested = self.db.begin_nested()
        try:
            self._apply_transaction_timeouts()
            outcome = self._process_subscription(
                subscription, payload, anchor_date, anchor_date_key, timezone, fx, started
            )
            nested.commit()
            self.db.commit()
        except Exception:
            if nested.is_active:
                nested.rollback()
            else:
                self.db.rollback()
            raise
        return outcome

    def _process_subscription(
        self,
        subscription: AgencyBillingSubscription,
        payload: RunAnchorRequest,
        anchor_date: datetime,
        anchor_date_key: str,
        timezone: str,
        fx: ResolvedFxRate,
        started: float,
    ) -> SubscriptionOutcome:
        agency_id = subscription.agency_id
        period_end = next_anchor_date(anchor_date, subscription.anchor_day, timezone)
        method, method_fallback = self._pick_payment_method(subscription)

        discount_pct = (
            subscription.direct_debit_discount_pct
            if subscription.direct_debit_discount_pct is not None
            else self.config.direct_debit_discount_pct
        )
        pricing = self.pricing_builder(
            self.db,
            PricingContext(
                agency_id=agency_id,
                subscription_discount_pct=to_decimal(discount_pct),
                method_type=method.method_type.value if method else None,
                fx_rate_date=fx.rate_date,
                fx_rate_ars_per_usd=fx.ars_per_usd,
                anchor_date=anchor_date,
            ),
        )
        if not isinstance(pricing, CyclePricingSnapshot):
            pricing = CyclePricingSnapshot.model_validate(pricing)
        self._check_deadline(started)

        cycle, cycle_created = self._find_or_create(
            AgencyBillingCycle,
            {"subscription_id": subscription.id, "anchor_date": anchor_date},
            lambda: self._new_cycle(subscription, anchor_date, period_end, pricing),
        )

        idempotency_key = build_idempotency_key(agency_id, anchor_date_key)
        charge, charge_created = self._find_or_create(
            AgencyBillingCharge,
            {"agency_id": agency_id, "idempotency_key": idempotency_key},
            lambda: self._new_charge(
                subscription, cycle, method, anchor_date, timezone, idempotency_key
            ),
        )
        self._check_deadline(started)

        attempts_created = 0
        due_date = as_utc(charge.due_date)
        for attempt_no, offset in enumerate(self.retry_offsets, start=1):
            _, created = self._find_or_create(
                AgencyBillingAttempt,
                {"charge_id": charge.id, "attempt_no": attempt_no},
                lambda attempt_no=attempt_no, offset=offset: AgencyBillingAttempt(
                    charge_id=charge.id,
                    payment_method_id=method.id if method else None,
                    attempt_no=attempt_no,
                    status=AttemptStatus.pending,
                    channel=self.config.attempt_channel,
                    scheduled_for=self._scheduled_for(due_date, offset, timezone),
                    notes=ATTEMPT_NOTES,
                ),
            )
            attempts_created += int(created)
        self._check_deadline(started)

        subscription.next_anchor_date = period_end

        log_billing_event(
            self.db,
            agency_id=agency_id,
            subscription_id=subscription.id,
            event_type=ANCHOR_RUN_PROCESSED,
            payload=self._event_payload(
                payload,
                anchor_date_key,
                cycle,
                charge,
                cycle_created=cycle_created,
                charge_created=charge_created,
                attempts_created=attempts_created,
                method_fallback=method_fallback,
            ),
            created_by=payload.actor_user_id,
        )
        self.db.flush()
        self._check_deadline(started)

        return SubscriptionOutcome(
            cycle_created=cycle_created,
            charge_created=charge_created,
            attempts_created=attempts_created,
        )

    def _find_or_create(self, model, criteria: dict[str, Any], factory: Callable[[], Any]):
        existing = self.db.query(model).filter_by(**criteria).first()
        if existing is not None:
            return existing, False
        try:
            with self.db.begin_nested():
                instance = factory()
                self.db.add(instance)
                self.db.flush()
        except IntegrityError:
            # A concurrent run won the unique key; use its row.
            existing = self.db.query(model).filter_by(**criteria).first()
            if existing is None:
                raise
            logger.info("%s already created by a concurrent run: %s", model.__name__, criteria)
            return existing, False
        return instance, True

    def _new_cycle(
        self,
        subscription: AgencyBillingSubscription,
        anchor_date: datetime,
        period_end: datetime,
        pricing: CyclePricingSnapshot,
    ) -> AgencyBillingCycle:
        return AgencyBillingCycle(
            agency_id=subscription.agency_id,
            subscription_id=subscription.id,
            anchor_date=anchor_date,
            period_start=anchor_date,
            period_end=period_end,
            status=BillingCycleStatus.frozen,
            fx_type=self.config.fx_type,
            fx_rate_date=pricing.fx_rate_date,
            fx_rate_ars_per_usd=pricing.fx_rate_ars_per_usd,
            base_amount_usd=pricing.base_amount_usd,
            addons_total_usd=pricing.addons_total_usd,
            discount_pct=pricing.discount_pct,
            discount_amount_usd=pricing.discount_amount_usd,
            net_amount_usd=pricing.net_amount_usd,
            vat_rate=pricing.vat_rate,
            vat_amount_usd=pricing.vat_amount_usd,
            total_usd=pricing.total_usd,
            total_ars=pricing.total_ars,
            plan_snapshot=pricing.plan_snapshot.model_dump(mode="json"),
            addons_snapshot=[addon.model_dump(mode="json") for addon in pricing.addons_snapshot],
        )

    def _new_charge(
        self,
        subscription: AgencyBillingSubscription,
        cycle: AgencyBillingCycle,
        method: AgencyBillingPaymentMethod | None,
        anchor_date: datetime,
        timezone: str,
        idempotency_key: str,
    ) -> AgencyBillingCharge:
        # Amounts come from the frozen cycle, never from a fresh pricing pass.
        vat_amount = to_decimal(cycle.vat_amount_usd)
        discount_amount = to_decimal(cycle.discount_amount_usd)
        return AgencyBillingCharge(
            agency_id=subscription.agency_id,
            agency_billing_charge_id=next_agency_counter(
                self.db, subscription.agency_id, CHARGE_COUNTER_KEY
            ),
            subscription_id=subscription.id,
            cycle_id=cycle.id,
            selected_method_id=method.id if method else None,
            period_start=cycle.period_start,
            period_end=cycle.period_end,
            due_date=anchor_date,
            status=ChargeStatus.ready,
            charge_kind=ChargeKind.recurring,
            label=build_charge_label(anchor_date, timezone),
            base_amount_usd=to_decimal(cycle.base_amount_usd)
            + to_decimal(cycle.addons_total_usd),
            adjustments_total_usd=round_money(vat_amount - discount_amount),
            total_usd=cycle.total_usd,
            fx_rate=cycle.fx_rate_ars_per_usd,
            amount_ars_due=cycle.total_ars,
            payment_method=method.method_type.value if method else None,
            idempotency_key=idempotency_key,
            reconciliation_status=ReconciliationStatus.pending,
            dunning_stage=0,
            collection_channel=self.config.collection_channel,
            notes=CHARGE_NOTES,
        )

    def _pick_payment_method(
        self, subscription: AgencyBillingSubscription
    ) -> tuple[AgencyBillingPaymentMethod | None, bool]:
        """Usable method first (default wins), else any method on file."""
        query = self.db.query(AgencyBillingPaymentMethod).filter(
            AgencyBillingPaymentMethod.subscription_id == subscription.id
        )
        ordering = (
            AgencyBillingPaymentMethod.is_default.desc(),
            AgencyBillingPaymentMethod.created_at.asc(),
            AgencyBillingPaymentMethod.id.asc(),
        )
        method = (
            query.filter(
                AgencyBillingPaymentMethod.status.in_(
                    [BillingMethodStatus.active, BillingMethodStatus.pending]
                )
            )
            .order_by(*ordering)
            .first()
        )
        if method:
            return method, False
        fallback = query.order_by(*ordering).first()
        if fallback:
            logger.warning(
                "Agency %s has no active payment method; charge records %s method %s",
                subscription.agency_id,
                fallback.status.value,
                fallback.id,
            )
            return fallback, True
        return None, False

    def _scheduled_for(self, due_date: datetime, offset: int, timezone: str) -> datetime:
        if (
            self.config.use_business_days
            and offset > 0
            and timezone == self.business_calendar.timezone
        ):
            return self.business_calendar.add_business_days(due_date, offset)
        return add_days_local(due_date, offset, timezone)

    def _apply_transaction_timeouts(self) -> None:
        if self.db.get_bind().dialect.name != "postgresql":
            return
        connection = self.db.connection()
        connection.exec_driver_sql(f"SET LOCAL lock_timeout = {int(self.config.tx_max_wait_ms)}")
        connection.exec_driver_sql(
            f"SET LOCAL statement_timeout = {int(self.config.tx_timeout_ms)}"
        )

    def _check_deadline(self, started: float) -> None:
        elapsed_ms = int((self.clock() - started) * 1000)
        if elapsed_ms > self.config.tx_timeout_ms:
            raise AnchorTransactionTimeoutError(elapsed_ms, self.config.tx_timeout_ms)

    def _event_payload(
        self,
        payload: RunAnchorRequest,
        anchor_date_key: str,
        cycle: AgencyBillingCycle,
        charge: AgencyBillingCharge,
        *,
        cycle_created: bool,
        charge_created: bool,
        attempts_created: int,
        method_fallback: bool,
    ) -> dict[str, Any]:
        fx_rate_date = as_utc(cycle.fx_rate_date)
        return {
            "anchor_date": anchor_date_key,
            "cycle_id": str(cycle.id),
            "charge_id": str(charge.id),
            "cycle_created": cycle_created,
            "charge_created": charge_created,
            "attempts_created": attempts_created,
            "fx_rate_date": fx_rate_date.isoformat() if fx_rate_date else None,
            "fx_rate_ars_per_usd": str(cycle.fx_rate_ars_per_usd),
            "override_fx": payload.override_fx,
            "payment_method_fallback": method_fallback,
            "actor_agency_id": payload.actor_agency_id,
        }


def run_anchor(
    db: Session,
    payload: RunAnchorRequest,
    config: AnchorRunConfig | None = None,
    pricing_builder: PricingBuilder | None = None,
    business_calendar: BusinessCalendar | None = None,
) -> RunAnchorSummary:
    return AnchorRun(
        db,
        config=config,
        pricing_builder=pricing_builder,
        business_calendar=business_calendar,
    ).execute(payload)
