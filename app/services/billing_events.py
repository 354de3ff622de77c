from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.models.billing_event import BillingEvent

logger = logging.getLogger(__name__)

ANCHOR_RUN_PROCESSED = "anchor_run_processed"


def log_billing_event(
    db: Session,
    *,
    agency_id: int,
    event_type: str,
    payload: dict[str, Any] | None = None,
    subscription_id: UUID | None = None,
    created_by: int | None = None,
) -> BillingEvent:
    """Append an audit row to the caller's transaction without committing it."""
    event = BillingEvent(
        agency_id=agency_id,
        subscription_id=subscription_id,
        event_type=event_type,
        payload=payload or {},
        created_by=created_by,
    )
    db.add(event)
    db.flush()
    logger.debug("Billing event %s recorded for agency %s", event_type, agency_id)
    return event


def list_billing_events(
    db: Session,
    agency_id: int,
    event_type: str | None = None,
    limit: int = 50,
) -> list[BillingEvent]:
    query = db.query(BillingEvent).filter(BillingEvent.agency_id == agency_id)
    if event_type:
        query = query.filter(BillingEvent.event_type == event_type)
    return query.order_by(BillingEvent.created_at.desc()).limit(limit).all()
