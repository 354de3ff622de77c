"""Create agency billing anchor engine tables.

Revision ID: a1c4e2f7b9d0
Revises:
Create Date: 2026-10-17

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "a1c4e2f7b9d0"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    subscription_status = sa.Enum(
        "active", "paused", "cancelled", name="agencysubscriptionstatus"
    )
    method_type = sa.Enum(
        "direct_debit", "card", "transfer", "qr", "other", name="billingmethodtype"
    )
    method_status = sa.Enum(
        "active", "pending", "disabled", "revoked", name="billingmethodstatus"
    )
    cycle_status = sa.Enum("frozen", "closed", name="billingcyclestatus")
    charge_status = sa.Enum(
        "ready", "processing", "paid", "past_due", "cancelled", name="chargestatus"
    )
    charge_kind = sa.Enum("recurring", "extra", name="chargekind")
    reconciliation_status = sa.Enum(
        "pending", "matched", "mismatched", name="reconciliationstatus"
    )
    attempt_status = sa.Enum(
        "pending", "presented", "paid", "rejected", "cancelled", name="attemptstatus"
    )
    job_source = sa.Enum("cron", "manual", "system", name="billingjobsource")
    job_status = sa.Enum(
        "running",
        "success",
        "partial",
        "failed",
        "no_op",
        "skipped_locked",
        name="billingjobrunstatus",
    )

    op.create_table(
        "agency_billing_subscriptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("agency_id", sa.Integer(), nullable=False),
        sa.Column("status", subscription_status, nullable=True),
        sa.Column("anchor_day", sa.Integer(), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=True),
        sa.Column("direct_debit_discount_pct", sa.Numeric(5, 2), nullable=True),
        sa.Column("plan_key", sa.String(60), nullable=False),
        sa.Column("plan_label", sa.String(160), nullable=True),
        sa.Column("base_amount_usd", sa.Numeric(12, 2), nullable=True),
        sa.Column("next_anchor_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("collections_enabled", sa.Boolean(), nullable=True),
        sa.Column("collections_suspended", sa.Boolean(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("agency_id", name="uq_agency_billing_subscriptions_agency"),
    )
    op.create_index(
        "ix_agency_billing_subscriptions_agency_id",
        "agency_billing_subscriptions",
        ["agency_id"],
    )

    op.create_table(
        "agency_billing_addons",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "subscription_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("agency_billing_subscriptions.id"),
            nullable=False,
        ),
        sa.Column("addon_key", sa.String(60), nullable=False),
        sa.Column("label", sa.String(160), nullable=True),
        sa.Column("amount_usd", sa.Numeric(12, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "agency_billing_payment_methods",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "subscription_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("agency_billing_subscriptions.id"),
            nullable=False,
        ),
        sa.Column("method_type", method_type, nullable=False),
        sa.Column("status", method_status, nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=True),
        sa.Column("holder_name", sa.String(160), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "agency_billing_cycles",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("agency_id", sa.Integer(), nullable=False),
        sa.Column(
            "subscription_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("agency_billing_subscriptions.id"),
            nullable=False,
        ),
        sa.Column("anchor_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", cycle_status, nullable=True),
        sa.Column("fx_type", sa.String(40), nullable=False),
        sa.Column("fx_rate_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("fx_rate_ars_per_usd", sa.Numeric(14, 4), nullable=False),
        sa.Column("base_amount_usd", sa.Numeric(12, 2), nullable=True),
        sa.Column("addons_total_usd", sa.Numeric(12, 2), nullable=True),
        sa.Column("discount_pct", sa.Numeric(5, 2), nullable=True),
        sa.Column("discount_amount_usd", sa.Numeric(12, 2), nullable=True),
        sa.Column("net_amount_usd", sa.Numeric(12, 2), nullable=True),
        sa.Column("vat_rate", sa.Numeric(6, 4), nullable=True),
        sa.Column("vat_amount_usd", sa.Numeric(12, 2), nullable=True),
        sa.Column("total_usd", sa.Numeric(12, 2), nullable=True),
        sa.Column("total_ars", sa.Numeric(16, 2), nullable=True),
        sa.Column("plan_snapshot", sa.JSON(), nullable=False),
        sa.Column("addons_snapshot", sa.JSON(), nullable=False),
        sa.Column("frozen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "subscription_id",
            "anchor_date",
            name="uq_agency_billing_cycles_subscription_anchor",
        ),
    )
    op.create_index("ix_agency_billing_cycles_agency_id", "agency_billing_cycles", ["agency_id"])

    op.create_table(
        "agency_billing_charges",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("agency_id", sa.Integer(), nullable=False),
        sa.Column("agency_billing_charge_id", sa.Integer(), nullable=False),
        sa.Column(
            "subscription_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("agency_billing_subscriptions.id"),
            nullable=True,
        ),
        sa.Column(
            "cycle_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("agency_billing_cycles.id"),
            nullable=True,
        ),
        sa.Column(
            "selected_method_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("agency_billing_payment_methods.id"),
            nullable=True,
        ),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", charge_status, nullable=True),
        sa.Column("charge_kind", charge_kind, nullable=True),
        sa.Column("label", sa.String(160), nullable=False),
        sa.Column("base_amount_usd", sa.Numeric(12, 2), nullable=True),
        sa.Column("adjustments_total_usd", sa.Numeric(12, 2), nullable=True),
        sa.Column("total_usd", sa.Numeric(12, 2), nullable=True),
        sa.Column("fx_rate", sa.Numeric(14, 4), nullable=True),
        sa.Column("amount_ars_due", sa.Numeric(16, 2), nullable=True),
        sa.Column("payment_method", sa.String(40), nullable=True),
        sa.Column("idempotency_key", sa.String(80), nullable=False),
        sa.Column("reconciliation_status", reconciliation_status, nullable=True),
        sa.Column("dunning_stage", sa.Integer(), nullable=True),
        sa.Column("collection_channel", sa.String(40), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "agency_id", "idempotency_key", name="uq_agency_billing_charges_idempotency"
        ),
        sa.UniqueConstraint(
            "agency_id",
            "agency_billing_charge_id",
            name="uq_agency_billing_charges_agency_number",
        ),
    )
    op.create_index(
        "ix_agency_billing_charges_agency_id", "agency_billing_charges", ["agency_id"]
    )

    op.create_table(
        "agency_billing_attempts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "charge_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("agency_billing_charges.id"),
            nullable=False,
        ),
        sa.Column(
            "payment_method_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("agency_billing_payment_methods.id"),
            nullable=True,
        ),
        sa.Column("attempt_no", sa.Integer(), nullable=False),
        sa.Column("status", attempt_status, nullable=True),
        sa.Column("channel", sa.String(40), nullable=True),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "charge_id", "attempt_no", name="uq_agency_billing_attempts_charge_no"
        ),
    )

    op.create_table(
        "billing_fx_rates",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("fx_type", sa.String(40), nullable=False),
        sa.Column("rate_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ars_per_usd", sa.Numeric(14, 4), nullable=False),
        sa.Column("source", sa.String(80), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("fx_type", "rate_date", name="uq_billing_fx_rates_type_date"),
    )

    op.create_table(
        "agency_counters",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("agency_id", sa.Integer(), nullable=False),
        sa.Column("key", sa.String(80), nullable=False),
        sa.Column("next_value", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("agency_id", "key", name="uq_agency_counters_agency_key"),
    )

    op.create_table(
        "billing_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("agency_id", sa.Integer(), nullable=False),
        sa.Column("subscription_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_billing_events_agency_id", "billing_events", ["agency_id"])
    op.create_index("ix_billing_events_subscription_id", "billing_events", ["subscription_id"])
    op.create_index("ix_billing_events_event_type", "billing_events", ["event_type"])

    op.create_table(
        "billing_job_runs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("run_id", sa.String(64), nullable=False, unique=True),
        sa.Column("job_name", sa.String(80), nullable=False),
        sa.Column("source", job_source, nullable=True),
        sa.Column("status", job_status, nullable=True),
        sa.Column("target_date", sa.String(10), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("counters", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_stack", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
    )
    op.create_index("ix_billing_job_runs_job_name", "billing_job_runs", ["job_name"])

    op.create_table(
        "billing_job_locks",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("lock_key", sa.String(160), nullable=False),
        sa.Column("owner_run_id", sa.String(64), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.UniqueConstraint("lock_key", name="uq_billing_job_locks_key"),
    )


def downgrade() -> None:
    op.drop_table("billing_job_locks")
    op.drop_index("ix_billing_job_runs_job_name", table_name="billing_job_runs")
    op.drop_table("billing_job_runs")
    op.drop_index("ix_billing_events_event_type", table_name="billing_events")
    op.drop_index("ix_billing_events_subscription_id", table_name="billing_events")
    op.drop_index("ix_billing_events_agency_id", table_name="billing_events")
    op.drop_table("billing_events")
    op.drop_table("agency_counters")
    op.drop_table("billing_fx_rates")
    op.drop_table("agency_billing_attempts")
    op.drop_index("ix_agency_billing_charges_agency_id", table_name="agency_billing_charges")
    op.drop_table("agency_billing_charges")
    op.drop_index("ix_agency_billing_cycles_agency_id", table_name="agency_billing_cycles")
    op.drop_table("agency_billing_cycles")
    op.drop_table("agency_billing_payment_methods")
    op.drop_table("agency_billing_addons")
    op.drop_index(
        "ix_agency_billing_subscriptions_agency_id", table_name="agency_billing_subscriptions"
    )
    op.drop_table("agency_billing_subscriptions")

    bind = op.get_bind()
    for name in (
        "billingjobrunstatus",
        "billingjobsource",
        "attemptstatus",
        "reconciliationstatus",
        "chargekind",
        "chargestatus",
        "billingcyclestatus",
        "billingmethodstatus",
        "billingmethodtype",
        "agencysubscriptionstatus",
    ):
        sa.Enum(name=name).drop(bind, checkfirst=True)
