from __future__ import annotations

import argparse
import json
import sys

from pydantic import ValidationError

from app.db import SessionLocal
from app.logging import configure_logging
from app.models.billing_jobs import BillingJobSource
from app.schemas.collections import RunAnchorRequest
from app.services.collections import jobs as jobs_service
from app.services.collections.exceptions import AnchorRunInputError
from app.services.collections.run_anchor import run_anchor


def run_anchor_command(
    anchor_date: str,
    override_fx: bool = False,
    agency_ids: list[int] | None = None,
) -> int:
    try:
        payload = RunAnchorRequest(
            anchor_date=anchor_date,
            override_fx=override_fx,
            agency_ids=agency_ids,
        )
    except ValidationError as exc:
        print(f"invalid input: {exc}", file=sys.stderr)
        return 2
    db = SessionLocal()
    try:
        summary = run_anchor(db, payload)
    except AnchorRunInputError as exc:
        print(f"invalid input: {exc}", file=sys.stderr)
        return 2
    finally:
        db.close()
    print(json.dumps(summary.model_dump(mode="json"), indent=2))
    for error in summary.errors:
        print(f"agency={error.agency_id} error={error.message}", file=sys.stderr)
    return 1 if summary.errors else 0


def run_anchor_daily_command(target_date: str | None, override_fx: bool = False) -> int:
    db = SessionLocal()
    try:
        result = jobs_service.run_anchor_daily_job(
            db,
            source=BillingJobSource.manual,
            target_date=target_date,
            override_fx=override_fx,
        )
    finally:
        db.close()
    print(json.dumps(result.model_dump(mode="json"), indent=2))
    return 1 if result.error_message or result.counters.get("errors_count") else 0


def main(argv: list[str] | None = None) -> None:
    configure_logging()
    parser = argparse.ArgumentParser(description="Agency billing anchor engine")
    commands = parser.add_subparsers(dest="command", required=True)

    anchor = commands.add_parser("run-anchor", help="Freeze cycles and emit charges")
    anchor.add_argument("--date", required=True, help="Reference date, YYYY-MM-DD")
    anchor.add_argument(
        "--override-fx",
        action="store_true",
        help="Use the latest earlier rate when the anchor day has none",
    )
    anchor.add_argument(
        "--agency",
        dest="agency_ids",
        type=int,
        action="append",
        help="Limit the run to this agency id (repeatable)",
    )

    daily = commands.add_parser("run-anchor-daily", help="Run the daily anchor job")
    daily.add_argument("--date", default=None, help="Target date, YYYY-MM-DD")
    daily.add_argument("--override-fx", action="store_true")

    args = parser.parse_args(argv)
    if args.command == "run-anchor":
        raise SystemExit(run_anchor_command(args.date, args.override_fx, args.agency_ids))
    if args.command == "run-anchor-daily":
        raise SystemExit(run_anchor_daily_command(args.date, args.override_fx))


if __name__ == "__main__":
    main()
