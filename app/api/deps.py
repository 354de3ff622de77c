import hmac

from fastapi import Header, HTTPException, status

from app.config import settings
from app.db import get_db

RUNNER_SECRET_HEADER = "X-Billing-Runner-Secret"


def require_runner_secret(
    x_billing_runner_secret: str | None = Header(default=None),
):
    """Reject calls without the shared runner secret once one is configured."""
    expected = settings.billing_job_runner_secret
    if not expected:
        return
    provided = (x_billing_runner_secret or "").strip()
    if not provided or not hmac.compare_digest(provided, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "unauthorized", "message": "Invalid runner secret"},
        )


__all__ = [
    "RUNNER_SECRET_HEADER",
    "get_db",
    "require_runner_secret",
]
