"""Cycle pricing snapshots.

The anchor run treats the builder as a pure collaborator: it receives a
``PricingContext`` and returns a ``CyclePricingSnapshot``. The default
builder prices the subscription's plan plus its active add-ons; deployments
with their own plan catalogue pass another ``PricingBuilder``.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from sqlalchemy.orm import Session

from app.config import settings
from app.models.agency_billing import (
    AgencyBillingAddon,
    AgencyBillingSubscription,
    BillingMethodType,
)
from app.schemas.collections import (
    AddonSnapshot,
    CyclePricingSnapshot,
    PlanSnapshot,
    PricingContext,
)
from app.services.common import round_money, to_decimal


class PricingBuilder(Protocol):
    def __call__(self, db: Session, context: PricingContext) -> CyclePricingSnapshot: ...


def price_snapshot(
    context: PricingContext,
    plan: PlanSnapshot,
    addons: list[AddonSnapshot],
    vat_rate: Decimal,
) -> CyclePricingSnapshot:
    base = round_money(plan.base_amount_usd)
    addons_total = round_money(sum((addon.amount_usd for addon in addons), Decimal("0")))
    pre_discount_net = base + addons_total
    discount_pct = Decimal("0")
    if context.method_type == BillingMethodType.direct_debit.value:
        discount_pct = max(Decimal("0"), min(context.subscription_discount_pct, Decimal("100")))
    discount_amount = round_money(pre_discount_net * discount_pct / Decimal("100"))
    net = pre_discount_net - discount_amount
    vat_amount = round_money(net * vat_rate)
    total_usd = net + vat_amount
    return CyclePricingSnapshot(
        fx_rate_date=context.fx_rate_date,
        fx_rate_ars_per_usd=context.fx_rate_ars_per_usd,
        base_amount_usd=base,
        addons_total_usd=addons_total,
        pre_discount_net_usd=pre_discount_net,
        discount_pct=discount_pct,
        discount_amount_usd=discount_amount,
        net_amount_usd=net,
        vat_rate=vat_rate,
        vat_amount_usd=vat_amount,
        total_usd=total_usd,
        total_ars=round_money(total_usd * context.fx_rate_ars_per_usd),
        plan_snapshot=plan,
        addons_snapshot=addons,
    )


def build_cycle_pricing_snapshot(db: Session, context: PricingContext) -> CyclePricingSnapshot:
    subscription = (
        db.query(AgencyBillingSubscription)
        .filter(AgencyBillingSubscription.agency_id == context.agency_id)
        .first()
    )
    if not subscription:
        raise ValueError(f"No billing subscription for agency {context.agency_id}")
    addons = (
        db.query(AgencyBillingAddon)
        .filter(AgencyBillingAddon.subscription_id == subscription.id)
        .filter(AgencyBillingAddon.is_active.is_(True))
        .order_by(AgencyBillingAddon.addon_key.asc())
        .all()
    )
    plan = PlanSnapshot(
        plan_key=subscription.plan_key,
        label=subscription.plan_label,
        base_amount_usd=to_decimal(subscription.base_amount_usd),
    )
    addon_snapshots = [
        AddonSnapshot(
            addon_id=addon.id,
            addon_key=addon.addon_key,
            label=addon.label,
            amount_usd=to_decimal(addon.amount_usd),
        )
        for addon in addons
    ]
    return price_snapshot(
        context, plan, addon_snapshots, to_decimal(settings.default_vat_rate)
    )
