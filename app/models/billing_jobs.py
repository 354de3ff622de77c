import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Enum, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base


class BillingJobSource(enum.Enum):
    cron = "cron"
    manual = "manual"
    system = "system"


class BillingJobRunStatus(enum.Enum):
    running = "running"
    success = "success"
    partial = "partial"
    failed = "failed"
    no_op = "no_op"
    skipped_locked = "skipped_locked"


class BillingJobRun(Base):
    __tablename__ = "billing_job_runs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    run_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    job_name: Mapped[str] = mapped_column(String(80), nullable=False, index=True)
    source: Mapped[BillingJobSource] = mapped_column(
        Enum(BillingJobSource), default=BillingJobSource.system
    )
    status: Mapped[BillingJobRunStatus] = mapped_column(
        Enum(BillingJobRunStatus), default=BillingJobRunStatus.running
    )
    target_date: Mapped[str | None] = mapped_column(String(10))
    actor_user_id: Mapped[int | None] = mapped_column(Integer)
    counters: Mapped[dict | None] = mapped_column(JSON)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)
    error_message: Mapped[str | None] = mapped_column(Text)
    error_stack: Mapped[str | None] = mapped_column(Text)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    duration_ms: Mapped[int | None] = mapped_column(Integer)


class BillingJobLock(Base):
    __tablename__ = "billing_job_locks"
    __table_args__ = (UniqueConstraint("lock_key", name="uq_billing_job_locks_key"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    lock_key: Mapped[str] = mapped_column(String(160), nullable=False)
    owner_run_id: Mapped[str] = mapped_column(String(64), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)
