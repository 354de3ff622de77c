import logging

from app.celery_app import celery_app
from app.db import SessionLocal
from app.models.billing_jobs import BillingJobSource
from app.services.collections import jobs as jobs_service

logger = logging.getLogger(__name__)


@celery_app.task(name="app.tasks.collections.run_anchor_daily")
def run_anchor_daily(target_date: str | None = None, override_fx: bool = False):
    session = SessionLocal()
    try:
        result = jobs_service.run_anchor_daily_job(
            session,
            source=BillingJobSource.cron,
            target_date=target_date,
            override_fx=override_fx,
        )
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
    return result.model_dump(mode="json")
