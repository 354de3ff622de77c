"""Process-wide logging setup.

Modules log through ``logging.getLogger(__name__)``; this module only wires
the root handler once, from ``LOG_LEVEL`` and ``LOG_JSON``.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}

_configured = False


class _JSONEncoder(json.JSONEncoder):
    def default(self, obj: Any) -> Any:
        if isinstance(obj, (UUID, Decimal)):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record; ``extra=`` fields are copied through."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _STDLIB_KEYS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, cls=_JSONEncoder)


def _env_flag(name: str) -> bool:
    return (os.getenv(name) or "").strip().lower() in ("1", "true", "yes", "on")


def configure_logging(level: str | None = None, json_lines: bool | None = None) -> None:
    global _configured
    if _configured:
        return
    resolved_level = (level or os.getenv("LOG_LEVEL") or "INFO").strip().upper()
    use_json = _env_flag("LOG_JSON") if json_lines is None else json_lines

    handler = logging.StreamHandler()
    if use_json:
        handler.setFormatter(JsonLineFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, resolved_level, logging.INFO))
    _configured = True
