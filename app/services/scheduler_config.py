import logging
import os

from celery.schedules import crontab

from app.config import settings

logger = logging.getLogger(__name__)

RUN_ANCHOR_DAILY_TASK = "app.tasks.collections.run_anchor_daily"


def _env_value(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value


def _env_int(name: str) -> int | None:
    raw = _env_value(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def get_celery_config() -> dict:
    broker = (
        _env_value("CELERY_BROKER_URL")
        or _env_value("REDIS_URL")
        or "redis://localhost:6379/0"
    )
    backend = (
        _env_value("CELERY_RESULT_BACKEND")
        or _env_value("REDIS_URL")
        or "redis://localhost:6379/1"
    )
    config: dict[str, object] = {
        "broker_url": broker,
        "result_backend": backend,
        "timezone": _env_value("CELERY_TIMEZONE") or settings.billing_jobs_timezone,
        "enable_utc": True,
    }
    config["beat_max_loop_interval"] = _env_int("CELERY_BEAT_MAX_LOOP_INTERVAL") or 5
    return config


def build_beat_schedule() -> dict:
    schedule: dict[str, dict] = {}
    if settings.billing_jobs_enabled:
        schedule["run_anchor_daily"] = {
            "task": RUN_ANCHOR_DAILY_TASK,
            "schedule": crontab(minute=0, hour=settings.billing_run_anchor_hour),
        }
    else:
        logger.info("Billing jobs disabled; no anchor run scheduled")
    return schedule
