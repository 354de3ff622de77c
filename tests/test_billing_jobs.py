"""Tests for the scheduled anchor job."""

from datetime import UTC, datetime, timedelta

import pytest

from app.config import settings
from app.models.agency_billing import AgencyBillingCharge
from app.models.billing_jobs import (
    BillingJobLock,
    BillingJobRun,
    BillingJobRunStatus,
    BillingJobSource,
)
from app.services.collections import jobs


@pytest.fixture()
def job_settings(monkeypatch):
    patched = settings.model_copy(
        update={
            "billing_jobs_timezone": "America/Argentina/Buenos_Aires",
            "billing_job_lock_ttl_seconds": 900,
            "rollout_require_agency_flag": True,
        }
    )
    monkeypatch.setattr(jobs, "settings", patched)
    return patched


# =============================================================================
# Helpers
# =============================================================================


class TestJobHelpers:
    """Tests for target date, status and rollout helpers."""

    def test_explicit_target_date_wins(self):
        """Test explicit target date wins."""
        assert jobs.resolve_target_date("2024-02-08", "UTC") == "2024-02-08"

    def test_default_target_date_is_local_today(self):
        """Test default target date is local today."""
        now = datetime(2024, 2, 8, 2, 0, tzinfo=UTC)
        assert (
            jobs.resolve_target_date(None, "America/Argentina/Buenos_Aires", now) == "2024-02-07"
        )
        assert jobs.resolve_target_date("garbage", "UTC", now) == "2024-02-08"

    def test_lock_key(self):
        """Test lock key."""
        assert jobs.run_anchor_lock_key("2024-02-08") == "billing:run_anchor:2024-02-08"

    @pytest.mark.parametrize(
        "processed,errors,expected",
        [
            (2, 0, BillingJobRunStatus.success),
            (2, 1, BillingJobRunStatus.partial),
            (0, 1, BillingJobRunStatus.failed),
            (0, 0, BillingJobRunStatus.no_op),
        ],
    )
    def test_job_status(self, processed, errors, expected):
        """Test job status."""
        assert jobs.job_status_for(processed, errors) == expected

    def test_rollout_flags(self, db_session, make_subscription):
        """Test rollout flags."""
        enabled = make_subscription(agency_id=1, collections_enabled=True)
        unset = make_subscription(agency_id=2)
        suspended = make_subscription(
            agency_id=3, collections_enabled=True, collections_suspended=True
        )

        assert jobs.is_agency_collections_enabled(enabled, True) is True
        assert jobs.is_agency_collections_enabled(unset, True) is False
        assert jobs.is_agency_collections_enabled(unset, False) is True
        assert jobs.is_agency_collections_enabled(suspended, False) is False

        stats = jobs.resolve_rollout_stats(db_session, require_agency_flag=True)
        assert stats.agencies_considered == 3
        assert stats.eligible_agency_ids == [1]
        assert stats.agencies_skipped_disabled == 2


# =============================================================================
# Lease locks
# =============================================================================


class TestJobLocks:
    """Tests for acquire_job_lock / release_job_lock."""

    def test_second_owner_blocked_until_release(self, db_session):
        """Test second owner blocked until release."""
        assert jobs.acquire_job_lock(db_session, "billing:test", "run-a", 900) is True
        assert jobs.acquire_job_lock(db_session, "billing:test", "run-b", 900) is False

        jobs.release_job_lock(db_session, "billing:test", "run-a")

        assert jobs.acquire_job_lock(db_session, "billing:test", "run-b", 900) is True

    def test_release_by_other_owner_is_ignored(self, db_session):
        """Test release by other owner is ignored."""
        jobs.acquire_job_lock(db_session, "billing:test", "run-a", 900)
        jobs.release_job_lock(db_session, "billing:test", "run-b")
        assert db_session.query(BillingJobLock).count() == 1

    def test_expired_lease_taken_over(self, db_session):
        """Test expired lease taken over."""
        past = datetime.now(UTC) - timedelta(hours=2)
        assert jobs.acquire_job_lock(db_session, "billing:test", "run-a", 60, now=past) is True
        assert jobs.acquire_job_lock(db_session, "billing:test", "run-b", 60) is True
        lock = db_session.query(BillingJobLock).one()
        assert lock.owner_run_id == "run-b"


# =============================================================================
# run_anchor_daily_job
# =============================================================================


class TestRunAnchorDailyJob:
    """Tests for run_anchor_daily_job."""

    def test_no_eligible_agency_is_no_op(self, db_session, job_settings, make_subscription):
        """Test no eligible agency is a no-op."""
        make_subscription(agency_id=1)

        result = jobs.run_anchor_daily_job(db_session, target_date="2024-02-08")

        assert result.status == BillingJobRunStatus.no_op
        assert result.no_op is True
        assert result.counters["agencies_considered"] == 1
        assert result.counters["agencies_skipped_disabled"] == 1
        assert db_session.query(AgencyBillingCharge).count() == 0
        run = db_session.query(BillingJobRun).one()
        assert run.status == BillingJobRunStatus.no_op
        assert run.target_date == "2024-02-08"
        assert db_session.query(BillingJobLock).count() == 0

    def test_runs_anchor_for_enabled_agencies(
        self, db_session, job_settings, make_subscription, add_fx_rate
    ):
        """Test runs anchor for enabled agencies."""
        make_subscription(agency_id=1, collections_enabled=True)
        make_subscription(agency_id=2)
        add_fx_rate("2024-02-08", "1000")

        result = jobs.run_anchor_daily_job(
            db_session,
            source=BillingJobSource.manual,
            actor_user_id=7,
            target_date="2024-02-08",
        )

        assert result.status == BillingJobRunStatus.success
        assert result.lock_key == "billing:run_anchor:2024-02-08"
        assert result.counters["anchor_date"] == "2024-02-08"
        assert result.counters["charges_created"] == 1
        assert result.counters["agencies_processed"] == 1
        assert result.counters["agencies_skipped_disabled"] == 1
        assert db_session.query(AgencyBillingCharge).filter_by(agency_id=2).count() == 0
        run = db_session.query(BillingJobRun).one()
        assert run.source == BillingJobSource.manual
        assert run.actor_user_id == 7
        assert run.metadata_["fx_rates_used"][0]["date"] == "2024-02-08"
        assert run.duration_ms is not None
        assert db_session.query(BillingJobLock).count() == 0

    def test_anchor_errors_mark_job_failed(self, db_session, job_settings, make_subscription):
        """Test anchor errors mark job failed."""
        make_subscription(agency_id=1, collections_enabled=True)

        result = jobs.run_anchor_daily_job(db_session, target_date="2024-02-08")

        assert result.status == BillingJobRunStatus.failed
        assert result.counters["errors_count"] == 1
        run = db_session.query(BillingJobRun).one()
        assert run.metadata_["errors"][0]["agency_id"] == 1

    def test_held_lock_skips_run(self, db_session, job_settings, make_subscription):
        """Test held lock skips run."""
        make_subscription(agency_id=1, collections_enabled=True)
        jobs.acquire_job_lock(db_session, "billing:run_anchor:2024-02-08", "other-run", 900)

        result = jobs.run_anchor_daily_job(db_session, target_date="2024-02-08")

        assert result.status == BillingJobRunStatus.skipped_locked
        assert result.skipped_locked is True
        assert result.counters == {"skipped_locked": 1}
        lock = db_session.query(BillingJobLock).one()
        assert lock.owner_run_id == "other-run"

    def test_unexpected_failure_recorded(
        self, db_session, job_settings, make_subscription, monkeypatch
    ):
        """Test unexpected failure recorded."""
        make_subscription(agency_id=1, collections_enabled=True)

        def _boom(db, payload):
            raise RuntimeError("database went away")

        monkeypatch.setattr(jobs, "run_anchor", _boom)

        result = jobs.run_anchor_daily_job(db_session, target_date="2024-02-08")

        assert result.status == BillingJobRunStatus.failed
        assert result.error_message == "database went away"
        run = db_session.query(BillingJobRun).one()
        assert run.status == BillingJobRunStatus.failed
        assert "RuntimeError" in run.error_stack
        assert db_session.query(BillingJobLock).count() == 0

    def test_list_recent_job_runs(self, db_session, job_settings):
        """Test list recent job runs."""
        jobs.run_anchor_daily_job(db_session, target_date="2024-02-07")
        jobs.run_anchor_daily_job(db_session, target_date="2024-02-08")

        runs = jobs.list_recent_job_runs(db_session, job_name=jobs.RUN_ANCHOR_DAILY)

        assert len(runs) == 2
        assert {run.target_date for run in runs} == {"2024-02-07", "2024-02-08"}
        assert jobs.list_recent_job_runs(db_session, job_name="other") == []
