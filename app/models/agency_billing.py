import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class AgencySubscriptionStatus(enum.Enum):
    active = "active"
    paused = "paused"
    cancelled = "cancelled"


class BillingMethodType(enum.Enum):
    direct_debit = "direct_debit"
    card = "card"
    transfer = "transfer"
    qr = "qr"
    other = "other"


class BillingMethodStatus(enum.Enum):
    active = "active"
    pending = "pending"
    disabled = "disabled"
    revoked = "revoked"


class BillingCycleStatus(enum.Enum):
    frozen = "frozen"
    closed = "closed"


class ChargeStatus(enum.Enum):
    ready = "ready"
    processing = "processing"
    paid = "paid"
    past_due = "past_due"
    cancelled = "cancelled"


class ChargeKind(enum.Enum):
    recurring = "recurring"
    extra = "extra"


class ReconciliationStatus(enum.Enum):
    pending = "pending"
    matched = "matched"
    mismatched = "mismatched"


class AttemptStatus(enum.Enum):
    pending = "pending"
    presented = "presented"
    paid = "paid"
    rejected = "rejected"
    cancelled = "cancelled"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgencyBillingSubscription(Base):
    __tablename__ = "agency_billing_subscriptions"
    __table_args__ = (
        UniqueConstraint("agency_id", name="uq_agency_billing_subscriptions_agency"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    agency_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    status: Mapped[AgencySubscriptionStatus] = mapped_column(
        Enum(AgencySubscriptionStatus), default=AgencySubscriptionStatus.active
    )
    anchor_day: Mapped[int] = mapped_column(Integer, nullable=False, default=8)
    timezone: Mapped[str | None] = mapped_column(String(64))
    direct_debit_discount_pct: Mapped[Decimal | None] = mapped_column(Numeric(5, 2))
    plan_key: Mapped[str] = mapped_column(String(60), nullable=False, default="standard")
    plan_label: Mapped[str | None] = mapped_column(String(160))
    base_amount_usd: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0.00")
    )
    next_anchor_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    collections_enabled: Mapped[bool | None] = mapped_column(Boolean)
    collections_suspended: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    addons = relationship("AgencyBillingAddon", back_populates="subscription")
    payment_methods = relationship("AgencyBillingPaymentMethod", back_populates="subscription")
    cycles = relationship("AgencyBillingCycle", back_populates="subscription")


class AgencyBillingAddon(Base):
    __tablename__ = "agency_billing_addons"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("agency_billing_subscriptions.id"), nullable=False
    )
    addon_key: Mapped[str] = mapped_column(String(60), nullable=False)
    label: Mapped[str | None] = mapped_column(String(160))
    amount_usd: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    subscription = relationship("AgencyBillingSubscription", back_populates="addons")


class AgencyBillingPaymentMethod(Base):
    __tablename__ = "agency_billing_payment_methods"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("agency_billing_subscriptions.id"), nullable=False
    )
    method_type: Mapped[BillingMethodType] = mapped_column(
        Enum(BillingMethodType), nullable=False
    )
    status: Mapped[BillingMethodStatus] = mapped_column(
        Enum(BillingMethodStatus), default=BillingMethodStatus.pending
    )
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    holder_name: Mapped[str | None] = mapped_column(String(160))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    subscription = relationship("AgencyBillingSubscription", back_populates="payment_methods")


class AgencyBillingCycle(Base):
    __tablename__ = "agency_billing_cycles"
    __table_args__ = (
        UniqueConstraint(
            "subscription_id", "anchor_date", name="uq_agency_billing_cycles_subscription_anchor"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    agency_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("agency_billing_subscriptions.id"), nullable=False
    )
    anchor_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[BillingCycleStatus] = mapped_column(
        Enum(BillingCycleStatus), default=BillingCycleStatus.frozen
    )
    fx_type: Mapped[str] = mapped_column(String(40), nullable=False)
    fx_rate_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    fx_rate_ars_per_usd: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    base_amount_usd: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    addons_total_usd: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    discount_pct: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0.00"))
    discount_amount_usd: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0.00")
    )
    net_amount_usd: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    vat_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), default=Decimal("0.0000"))
    vat_amount_usd: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    total_usd: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    total_ars: Mapped[Decimal] = mapped_column(Numeric(16, 2), default=Decimal("0.00"))
    plan_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    addons_snapshot: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    frozen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    subscription = relationship("AgencyBillingSubscription", back_populates="cycles")
    charges = relationship("AgencyBillingCharge", back_populates="cycle")


class AgencyBillingCharge(Base):
    __tablename__ = "agency_billing_charges"
    __table_args__ = (
        UniqueConstraint(
            "agency_id", "idempotency_key", name="uq_agency_billing_charges_idempotency"
        ),
        UniqueConstraint(
            "agency_id",
            "agency_billing_charge_id",
            name="uq_agency_billing_charges_agency_number",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    agency_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    agency_billing_charge_id: Mapped[int] = mapped_column(Integer, nullable=False)
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("agency_billing_subscriptions.id")
    )
    cycle_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("agency_billing_cycles.id")
    )
    selected_method_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("agency_billing_payment_methods.id")
    )
    period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[ChargeStatus] = mapped_column(Enum(ChargeStatus), default=ChargeStatus.ready)
    charge_kind: Mapped[ChargeKind] = mapped_column(
        Enum(ChargeKind), default=ChargeKind.recurring
    )
    label: Mapped[str] = mapped_column(String(160), nullable=False)
    base_amount_usd: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    adjustments_total_usd: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=Decimal("0.00")
    )
    total_usd: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    fx_rate: Mapped[Decimal | None] = mapped_column(Numeric(14, 4))
    amount_ars_due: Mapped[Decimal | None] = mapped_column(Numeric(16, 2))
    payment_method: Mapped[str | None] = mapped_column(String(40))
    idempotency_key: Mapped[str] = mapped_column(String(80), nullable=False)
    reconciliation_status: Mapped[ReconciliationStatus] = mapped_column(
        Enum(ReconciliationStatus), default=ReconciliationStatus.pending
    )
    dunning_stage: Mapped[int] = mapped_column(Integer, default=0)
    collection_channel: Mapped[str | None] = mapped_column(String(40))
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    cycle = relationship("AgencyBillingCycle", back_populates="charges")
    attempts = relationship(
        "AgencyBillingAttempt",
        back_populates="charge",
        order_by="AgencyBillingAttempt.attempt_no",
    )


class AgencyBillingAttempt(Base):
    __tablename__ = "agency_billing_attempts"
    __table_args__ = (
        UniqueConstraint("charge_id", "attempt_no", name="uq_agency_billing_attempts_charge_no"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    charge_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("agency_billing_charges.id"), nullable=False
    )
    payment_method_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("agency_billing_payment_methods.id")
    )
    attempt_no: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[AttemptStatus] = mapped_column(
        Enum(AttemptStatus), default=AttemptStatus.pending
    )
    channel: Mapped[str | None] = mapped_column(String(40))
    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    charge = relationship("AgencyBillingCharge", back_populates="attempts")


class BillingFxRate(Base):
    """Reference exchange rate, one row per quote type and zone-local day."""

    __tablename__ = "billing_fx_rates"
    __table_args__ = (
        UniqueConstraint("fx_type", "rate_date", name="uq_billing_fx_rates_type_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    fx_type: Mapped[str] = mapped_column(String(40), nullable=False)
    rate_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ars_per_usd: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    source: Mapped[str | None] = mapped_column(String(80))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
