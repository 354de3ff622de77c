"""Scheduled wrapper around the anchor run.

A job execution records a ``BillingJobRun`` row, takes a lease lock keyed by
the target date so overlapping triggers (beat plus a manual call) never run
the same day twice at once, and narrows the run to agencies that have
collections rolled out.
"""

from __future__ import annotations

import logging
import re
import time
import traceback
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.metrics import observe_job
from app.models.agency_billing import AgencyBillingSubscription, AgencySubscriptionStatus
from app.models.billing_jobs import (
    BillingJobLock,
    BillingJobRun,
    BillingJobRunStatus,
    BillingJobSource,
)
from app.schemas.collections import BillingJobResult, RunAnchorRequest
from app.services.collections.dates import as_utc, date_key_in_timezone, start_of_local_day
from app.services.collections.run_anchor import run_anchor
from app.services.common import normalize_error_message

logger = logging.getLogger(__name__)

RUN_ANCHOR_DAILY = "run_anchor_daily"

_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def run_anchor_lock_key(target_date: str) -> str:
    return f"billing:run_anchor:{target_date}"


def resolve_target_date(
    target_date: str | None, tz_name: str, now: datetime | None = None
) -> str:
    explicit = (target_date or "").strip()
    if _DATE_KEY_RE.match(explicit):
        return explicit
    return date_key_in_timezone(now or _now(), tz_name)


def job_status_for(processed: int, error_count: int) -> BillingJobRunStatus:
    if error_count:
        return BillingJobRunStatus.partial if processed else BillingJobRunStatus.failed
    return BillingJobRunStatus.success if processed else BillingJobRunStatus.no_op


# =============================================================================
# Run records and locks
# =============================================================================


def start_job_run(
    db: Session,
    job_name: str,
    source: BillingJobSource,
    target_date: str | None = None,
    actor_user_id: int | None = None,
    metadata: dict | None = None,
) -> BillingJobRun:
    run = BillingJobRun(
        run_id=uuid.uuid4().hex,
        job_name=job_name,
        source=source,
        status=BillingJobRunStatus.running,
        target_date=target_date,
        actor_user_id=actor_user_id,
        metadata_=metadata or {},
        started_at=_now(),
    )
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


def finish_job_run(
    db: Session,
    run: BillingJobRun,
    status: BillingJobRunStatus,
    counters: dict,
    finished_at: datetime,
    metadata: dict | None = None,
    error_message: str | None = None,
    error_stack: str | None = None,
) -> BillingJobRun:
    started_at = as_utc(run.started_at) or finished_at
    run.status = status
    run.counters = counters
    run.metadata_ = {**(run.metadata_ or {}), **(metadata or {})}
    run.error_message = error_message
    run.error_stack = error_stack
    run.finished_at = finished_at
    run.duration_ms = max(0, int((finished_at - started_at).total_seconds() * 1000))
    db.commit()
    return run


def acquire_job_lock(
    db: Session,
    lock_key: str,
    owner_run_id: str,
    ttl_seconds: int,
    metadata: dict | None = None,
    now: datetime | None = None,
) -> bool:
    """Take the lease for ``lock_key``; an expired lease is taken over."""
    current = now or _now()
    expires_at = current + timedelta(seconds=ttl_seconds)
    lock = (
        db.query(BillingJobLock)
        .filter(BillingJobLock.lock_key == lock_key)
        .with_for_update()
        .first()
    )
    if lock:
        if as_utc(lock.expires_at) > current:
            db.rollback()
            return False
        logger.info("Taking over expired billing job lock %s from %s", lock_key, lock.owner_run_id)
        lock.owner_run_id = owner_run_id
        lock.acquired_at = current
        lock.expires_at = expires_at
        lock.metadata_ = metadata or {}
        db.commit()
        return True
    try:
        with db.begin_nested():
            db.add(
                BillingJobLock(
                    lock_key=lock_key,
                    owner_run_id=owner_run_id,
                    acquired_at=current,
                    expires_at=expires_at,
                    metadata_=metadata or {},
                )
            )
            db.flush()
    except IntegrityError:
        db.rollback()
        return False
    db.commit()
    return True


def release_job_lock(db: Session, lock_key: str, owner_run_id: str) -> None:
    (
        db.query(BillingJobLock)
        .filter(BillingJobLock.lock_key == lock_key)
        .filter(BillingJobLock.owner_run_id == owner_run_id)
        .delete(synchronize_session=False)
    )
    db.commit()


# =============================================================================
# Agency rollout
# =============================================================================


@dataclass
class RolloutStats:
    agencies_considered: int = 0
    eligible_agency_ids: list[int] = field(default_factory=list)

    @property
    def agencies_enabled(self) -> int:
        return len(self.eligible_agency_ids)

    @property
    def agencies_skipped_disabled(self) -> int:
        return max(0, self.agencies_considered - self.agencies_enabled)


def is_agency_collections_enabled(
    subscription: AgencyBillingSubscription, require_agency_flag: bool
) -> bool:
    if subscription.collections_suspended:
        return False
    if subscription.collections_enabled is None:
        return not require_agency_flag
    return bool(subscription.collections_enabled)


def resolve_rollout_stats(db: Session, require_agency_flag: bool | None = None) -> RolloutStats:
    require_flag = (
        settings.rollout_require_agency_flag
        if require_agency_flag is None
        else require_agency_flag
    )
    subscriptions = (
        db.query(AgencyBillingSubscription)
        .filter(AgencyBillingSubscription.status == AgencySubscriptionStatus.active)
        .order_by(AgencyBillingSubscription.agency_id.asc())
        .all()
    )
    return RolloutStats(
        agencies_considered=len({sub.agency_id for sub in subscriptions}),
        eligible_agency_ids=sorted(
            {
                sub.agency_id
                for sub in subscriptions
                if is_agency_collections_enabled(sub, require_flag)
            }
        ),
    )


# =============================================================================
# Daily anchor job
# =============================================================================


def _execute_run_anchor(
    db: Session,
    target_date: str,
    override_fx: bool,
    actor_user_id: int | None,
) -> tuple[BillingJobRunStatus, dict, dict]:
    rollout = resolve_rollout_stats(db)
    if not rollout.eligible_agency_ids:
        counters = {
            "anchor_date": target_date,
            "subscriptions_considered": 0,
            "subscriptions_processed": 0,
            "cycles_created": 0,
            "charges_created": 0,
            "attempts_created": 0,
            "skipped_idempotent": 0,
            "errors_count": 0,
            "agencies_considered": rollout.agencies_considered,
            "agencies_processed": 0,
            "agencies_skipped_disabled": rollout.agencies_skipped_disabled,
        }
        return BillingJobRunStatus.no_op, counters, {}

    summary = run_anchor(
        db,
        RunAnchorRequest(
            anchor_date=start_of_local_day(target_date, settings.billing_jobs_timezone),
            override_fx=override_fx,
            actor_user_id=actor_user_id,
            agency_ids=rollout.eligible_agency_ids,
        ),
    )
    counters = {
        "anchor_date": summary.anchor_date,
        "subscriptions_considered": summary.subscriptions_total,
        "subscriptions_processed": summary.subscriptions_processed,
        "cycles_created": summary.cycles_created,
        "charges_created": summary.charges_created,
        "attempts_created": summary.attempts_created,
        "skipped_idempotent": summary.skipped_idempotent,
        "errors_count": len(summary.errors),
        "agencies_considered": rollout.agencies_considered,
        "agencies_processed": rollout.agencies_enabled,
        "agencies_skipped_disabled": rollout.agencies_skipped_disabled,
    }
    metadata = {
        "fx_rates_used": [item.model_dump(mode="json") for item in summary.fx_rates_used],
        "errors": [item.model_dump(mode="json") for item in summary.errors],
    }
    return job_status_for(summary.subscriptions_processed, len(summary.errors)), counters, metadata


def run_anchor_daily_job(
    db: Session,
    source: BillingJobSource = BillingJobSource.system,
    actor_user_id: int | None = None,
    target_date: str | None = None,
    override_fx: bool = False,
    now: datetime | None = None,
) -> BillingJobResult:
    """Run the anchor engine for one day under a job record and lease lock.

    Args:
        db: Database session; run and lock rows are committed as they change.
        source: What triggered the job (beat schedule, admin call, system).
        actor_user_id: User recorded on the run and on billing events.
        target_date: ``YYYY-MM-DD``; defaults to today in ``BILLING_JOBS_TZ``.
        override_fx: Allow the latest earlier FX rate when the day has none.
        now: Clock override for the default target date and the lease.

    Returns:
        BillingJobResult describing the terminal status and counters.
    """
    resolved_date = resolve_target_date(target_date, settings.billing_jobs_timezone, now)
    lock_key = run_anchor_lock_key(resolved_date)
    started = time.monotonic()
    run = start_job_run(
        db,
        RUN_ANCHOR_DAILY,
        source,
        target_date=resolved_date,
        actor_user_id=actor_user_id,
        metadata={"lock_key": lock_key, "override_fx": override_fx},
    )
    run_id = run.run_id
    started_at = as_utc(run.started_at)
    logger.info(
        "Billing job %s started: run=%s source=%s target=%s",
        RUN_ANCHOR_DAILY,
        run_id,
        source.value,
        resolved_date,
    )

    acquired = acquire_job_lock(
        db,
        lock_key,
        run_id,
        settings.billing_job_lock_ttl_seconds,
        metadata={"job_name": RUN_ANCHOR_DAILY, "source": source.value},
        now=now,
    )
    if not acquired:
        counters = {"skipped_locked": 1}
        finished_at = _now()
        finish_job_run(db, run, BillingJobRunStatus.skipped_locked, counters, finished_at)
        logger.info("Billing job %s skipped, lock %s is held", RUN_ANCHOR_DAILY, lock_key)
        observe_job(
            RUN_ANCHOR_DAILY,
            BillingJobRunStatus.skipped_locked.value,
            time.monotonic() - started,
        )
        return BillingJobResult(
            job_name=RUN_ANCHOR_DAILY,
            run_id=run_id,
            status=BillingJobRunStatus.skipped_locked,
            target_date=resolved_date,
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=run.duration_ms or 0,
            counters=counters,
            lock_key=lock_key,
            skipped_locked=True,
            no_op=True,
        )

    error_message: str | None = None
    metadata: dict[str, Any] = {}
    try:
        status, counters, metadata = _execute_run_anchor(
            db, resolved_date, override_fx, actor_user_id
        )
        finish_job_run(db, run, status, counters, _now(), metadata=metadata)
    except Exception as exc:
        db.rollback()
        error_message = normalize_error_message(exc)
        status = BillingJobRunStatus.failed
        counters = {"errors_count": 1}
        logger.exception("Billing job %s failed: run=%s", RUN_ANCHOR_DAILY, run_id)
        finish_job_run(
            db,
            run,
            status,
            counters,
            _now(),
            error_message=error_message,
            error_stack=traceback.format_exc(),
        )
    finally:
        release_job_lock(db, lock_key, run_id)

    observe_job(RUN_ANCHOR_DAILY, status.value, time.monotonic() - started)
    logger.info(
        "Billing job %s finished: run=%s status=%s counters=%s",
        RUN_ANCHOR_DAILY,
        run_id,
        status.value,
        counters,
    )
    return BillingJobResult(
        job_name=RUN_ANCHOR_DAILY,
        run_id=run_id,
        status=status,
        target_date=resolved_date,
        started_at=started_at,
        finished_at=as_utc(run.finished_at),
        duration_ms=run.duration_ms or 0,
        counters=counters,
        lock_key=lock_key,
        skipped_locked=False,
        no_op=status == BillingJobRunStatus.no_op,
        error_message=error_message,
    )


def list_recent_job_runs(
    db: Session, job_name: str | None = None, limit: int = 20
) -> list[BillingJobRun]:
    query = db.query(BillingJobRun)
    if job_name:
        query = query.filter(BillingJobRun.job_name == job_name)
    return query.order_by(BillingJobRun.started_at.desc()).limit(limit).all()
