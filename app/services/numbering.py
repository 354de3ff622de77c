from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.sequence import AgencyCounter

COUNTER_KEYS = (
    "agency_billing_charge",
    "agency_billing_adjustment",
    "agency_billing_config",
)


class CounterKeyError(ValueError):
    pass


def _normalize_key(key: str) -> str:
    normalized = str(key or "").strip()
    if not normalized:
        raise CounterKeyError("Agency counter key is required")
    if normalized not in COUNTER_KEYS:
        raise CounterKeyError(f"Unknown agency counter key: {normalized}")
    return normalized


def _locked_counter(db: Session, agency_id: int, key: str) -> AgencyCounter | None:
    return (
        db.query(AgencyCounter)
        .filter(AgencyCounter.agency_id == agency_id)
        .filter(AgencyCounter.key == key)
        .with_for_update()
        .first()
    )


def _get_or_create_counter(db: Session, agency_id: int, key: str, start_value: int) -> AgencyCounter:
    counter = _locked_counter(db, agency_id, key)
    if counter:
        return counter
    try:
        with db.begin_nested():
            counter = AgencyCounter(agency_id=agency_id, key=key, next_value=start_value)
            db.add(counter)
            db.flush()
        return counter
    except IntegrityError:
        # Another transaction created the row first; lock theirs.
        counter = _locked_counter(db, agency_id, key)
        if counter is None:
            raise
        return counter


def next_agency_counter(db: Session, agency_id: int, key: str) -> int:
    """Reserve the next human-facing sequence number for an agency.

    The row lock is held until the caller's transaction ends, so concurrent
    runs for the same agency serialize here while different agencies never
    contend.
    """
    normalized = _normalize_key(key)
    counter = _get_or_create_counter(db, agency_id, normalized, 1)
    value = counter.next_value
    counter.next_value = value + 1
    db.flush()
    return value


def ensure_agency_counter_at_least(
    db: Session, agency_id: int, key: str, min_next_value: int
) -> int:
    normalized = _normalize_key(key)
    floor = max(1, int(min_next_value))
    counter = _get_or_create_counter(db, agency_id, normalized, floor)
    if counter.next_value < floor:
        counter.next_value = floor
    db.flush()
    return counter.next_value
