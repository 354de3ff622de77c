import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import require_runner_secret
from app.db import get_db
from app.models.billing_jobs import BillingJobSource
from app.schemas.collections import (
    BillingJobResult,
    BillingJobRunRead,
    RunAnchorDailyJobRequest,
    RunAnchorRequest,
    RunAnchorSummary,
)
from app.services.collections import jobs as jobs_service
from app.services.collections.run_anchor import run_anchor

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/collections",
    tags=["collections"],
    dependencies=[Depends(require_runner_secret)],
)


@router.post("/anchor-runs", response_model=RunAnchorSummary)
def create_anchor_run(payload: RunAnchorRequest, db: Session = Depends(get_db)):
    if payload.agency_ids is None and payload.actor_agency_id is not None:
        payload = payload.model_copy(update={"agency_ids": [payload.actor_agency_id]})
    summary = run_anchor(db, payload)
    if summary.errors:
        logger.warning(
            "Anchor run %s finished with %d errors",
            summary.anchor_date,
            len(summary.errors),
        )
    return summary


@router.post("/jobs/run-anchor-daily", response_model=BillingJobResult)
def trigger_run_anchor_daily(
    payload: RunAnchorDailyJobRequest,
    db: Session = Depends(get_db),
):
    return jobs_service.run_anchor_daily_job(
        db,
        source=BillingJobSource.manual,
        actor_user_id=payload.actor_user_id,
        target_date=payload.target_date,
        override_fx=payload.override_fx,
    )


@router.get("/job-runs", response_model=list[BillingJobRunRead])
def list_job_runs(
    job_name: str | None = None,
    limit: int = Query(default=20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    return jobs_service.list_recent_job_runs(db, job_name=job_name, limit=limit)
