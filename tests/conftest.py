import os
import sqlite3
import uuid
from datetime import UTC, datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base

# Register UUID adapter for SQLite - store as string
sqlite3.register_adapter(uuid.UUID, lambda u: str(u))


# Monkey-patch SQLAlchemy's UUID type for SQLite compatibility
# This must happen before any models are imported
from sqlalchemy.sql import sqltypes

_original_uuid_bind_processor = sqltypes.Uuid.bind_processor
_original_uuid_result_processor = sqltypes.Uuid.result_processor


def _sqlite_uuid_bind_processor(self, dialect):
    if dialect.name == "sqlite":
        def process(value):
            if value is not None:
                if isinstance(value, uuid.UUID):
                    return str(value)
                return str(uuid.UUID(value)) if value else None
            return None
        return process
    return _original_uuid_bind_processor(self, dialect)


def _sqlite_uuid_result_processor(self, dialect, coltype):
    if dialect.name == "sqlite":
        def process(value):
            if value is not None:
                if isinstance(value, uuid.UUID):
                    return value
                return uuid.UUID(value) if value else None
            return None
        return process
    return _original_uuid_result_processor(self, dialect, coltype)


setattr(sqltypes.Uuid, "bind_processor", _sqlite_uuid_bind_processor)
setattr(sqltypes.Uuid, "result_processor", _sqlite_uuid_result_processor)

from app.config import BUENOS_AIRES_TIME_ZONE
from app.models.agency_billing import (
    AgencyBillingAddon,
    AgencyBillingPaymentMethod,
    AgencyBillingSubscription,
    AgencySubscriptionStatus,
    BillingFxRate,
    BillingMethodStatus,
    BillingMethodType,
)
from app.services.collections.dates import start_of_local_day
from app.services.collections.run_anchor import AnchorRunConfig

import app.models  # noqa: F401,E402


@pytest.fixture(scope="session")
def engine():
    database_url = os.getenv("TEST_DATABASE_URL")
    if database_url:
        # Use PostgreSQL for tests (recommended)
        engine = create_engine(database_url)
    else:
        engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={
                "check_same_thread": False,
            },
            poolclass=StaticPool,
        )

        # pysqlite defers BEGIN until the first DML; emit it ourselves so
        # SAVEPOINTs nest inside a real transaction.
        @event.listens_for(engine, "connect")
        def _configure_sqlite(dbapi_connection, _connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _begin_sqlite(conn):
            conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)

    return engine


@pytest.fixture()
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autoflush=False,
        autocommit=False,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture()
def anchor_config():
    """Calendar-day dunning in Buenos Aires with offsets [2, 4]."""
    return AnchorRunConfig(
        timezone=BUENOS_AIRES_TIME_ZONE,
        anchor_day=8,
        retry_days=(2, 4),
        use_business_days=False,
        direct_debit_discount_pct=Decimal("10"),
        fx_type="dolar_bsp",
        collection_channel="direct_debit",
        attempt_channel="office_banking",
        tx_max_wait_ms=10000,
        tx_timeout_ms=45000,
    )


@pytest.fixture()
def make_subscription(db_session):
    def _make(
        agency_id: int,
        anchor_day: int = 8,
        timezone: str | None = BUENOS_AIRES_TIME_ZONE,
        base_amount_usd: str = "100.00",
        method_type: BillingMethodType | None = BillingMethodType.direct_debit,
        method_status: BillingMethodStatus = BillingMethodStatus.active,
        status: AgencySubscriptionStatus = AgencySubscriptionStatus.active,
        **fields,
    ) -> AgencyBillingSubscription:
        subscription = AgencyBillingSubscription(
            agency_id=agency_id,
            status=status,
            anchor_day=anchor_day,
            timezone=timezone,
            plan_key="standard",
            plan_label="Standard plan",
            base_amount_usd=Decimal(base_amount_usd),
            **fields,
        )
        db_session.add(subscription)
        db_session.flush()
        if method_type is not None:
            db_session.add(
                AgencyBillingPaymentMethod(
                    subscription_id=subscription.id,
                    method_type=method_type,
                    status=method_status,
                    is_default=True,
                )
            )
            db_session.flush()
        return subscription

    return _make


@pytest.fixture()
def add_addon(db_session):
    def _add(subscription, addon_key: str, amount_usd: str, is_active: bool = True):
        addon = AgencyBillingAddon(
            subscription_id=subscription.id,
            addon_key=addon_key,
            label=addon_key.replace("_", " ").title(),
            amount_usd=Decimal(amount_usd),
            is_active=is_active,
        )
        db_session.add(addon)
        db_session.flush()
        return addon

    return _add


@pytest.fixture()
def add_fx_rate(db_session):
    def _add(date_key: str, ars_per_usd: str, fx_type: str = "dolar_bsp"):
        rate = BillingFxRate(
            fx_type=fx_type,
            rate_date=start_of_local_day(date_key, BUENOS_AIRES_TIME_ZONE),
            ars_per_usd=Decimal(ars_per_usd),
            source="test",
            created_at=datetime.now(UTC),
        )
        db_session.add(rate)
        db_session.flush()
        return rate

    return _add
