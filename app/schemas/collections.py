from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.billing_jobs import BillingJobRunStatus, BillingJobSource

_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

SNAPSHOT_SCHEMA_VERSION = 1


class RunAnchorRequest(BaseModel):
    anchor_date: datetime | date
    override_fx: bool = False
    actor_user_id: int | None = None
    actor_agency_id: int | None = None
    agency_ids: list[int] | None = None

    @field_validator("anchor_date", mode="before")
    @classmethod
    def parse_date_key(cls, value):
        if isinstance(value, str) and _DATE_KEY_RE.match(value.strip()):
            return date.fromisoformat(value.strip())
        return value

    @field_validator("agency_ids", mode="after")
    @classmethod
    def normalize_agency_ids(cls, value: list[int] | None) -> list[int] | None:
        if value is None:
            return None
        for agency_id in value:
            if agency_id <= 0:
                raise ValueError(f"Agency ids must be positive, got {agency_id}")
        return sorted(set(value))


class FxRateUsed(BaseModel):
    date: str
    ars_per_usd: Decimal


class RunAnchorErrorItem(BaseModel):
    agency_id: int
    message: str


class RunAnchorSummary(BaseModel):
    anchor_date: str
    override_fx: bool
    status: Literal["success", "partial", "failed", "no_op"]
    subscriptions_total: int = 0
    subscriptions_processed: int = 0
    cycles_created: int = 0
    charges_created: int = 0
    attempts_created: int = 0
    skipped_idempotent: int = 0
    fx_rates_used: list[FxRateUsed] = Field(default_factory=list)
    errors: list[RunAnchorErrorItem] = Field(default_factory=list)


class PlanSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    schema_version: Literal[1] = SNAPSHOT_SCHEMA_VERSION
    plan_key: str
    label: str | None = None
    base_amount_usd: Decimal


class AddonSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    schema_version: Literal[1] = SNAPSHOT_SCHEMA_VERSION
    addon_id: UUID | None = None
    addon_key: str
    label: str | None = None
    amount_usd: Decimal


class PricingContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    agency_id: int
    subscription_discount_pct: Decimal
    method_type: str | None = None
    fx_rate_date: datetime
    fx_rate_ars_per_usd: Decimal
    anchor_date: datetime


class CyclePricingSnapshot(BaseModel):
    """Amounts owed for one anchor period, as priced at freeze time."""

    model_config = ConfigDict(frozen=True)

    fx_rate_date: datetime
    fx_rate_ars_per_usd: Decimal
    base_amount_usd: Decimal
    addons_total_usd: Decimal
    pre_discount_net_usd: Decimal
    discount_pct: Decimal
    discount_amount_usd: Decimal
    net_amount_usd: Decimal
    vat_rate: Decimal
    vat_amount_usd: Decimal
    total_usd: Decimal
    total_ars: Decimal
    plan_snapshot: PlanSnapshot
    addons_snapshot: list[AddonSnapshot] = Field(default_factory=list)


class RunAnchorDailyJobRequest(BaseModel):
    target_date: str | None = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    override_fx: bool = False
    actor_user_id: int | None = None


class BillingJobResult(BaseModel):
    job_name: str
    run_id: str
    status: BillingJobRunStatus
    target_date: str | None = None
    started_at: datetime
    finished_at: datetime
    duration_ms: int
    counters: dict = Field(default_factory=dict)
    lock_key: str
    skipped_locked: bool = False
    no_op: bool = False
    error_message: str | None = None


class BillingJobRunRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    run_id: str
    job_name: str
    source: BillingJobSource
    status: BillingJobRunStatus
    target_date: str | None = None
    actor_user_id: int | None = None
    counters: dict | None = None
    error_message: str | None = None
    started_at: datetime
    finished_at: datetime | None = None
    duration_ms: int | None = None
