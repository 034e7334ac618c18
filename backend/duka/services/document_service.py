# Overview: Atomic document number allocation for invoices and receipts.

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence

SCOPE_INVOICE = "INVOICE"
SCOPE_RECEIPT = "RECEIPT"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _increment(scope: str, sequence_key: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.scope == scope,
            DocumentSequence.sequence_key == sequence_key,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    db.session.flush()
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(scope=scope, sequence_key=sequence_key)
        .scalar()
    )
    return current - 1


def allocate_sequence_number(*, scope: str, sequence_key: str) -> int:
    """
    Atomically allocate the next number in (scope, sequence_key).

    The UPDATE ... SET next_number = next_number + 1 takes a row lock, so two
    writers can never be handed the same number. The first allocation of a
    period inserts the counter row inside a SAVEPOINT; losing that insert
    race to another writer falls back to the increment.

    Runs inside the caller's transaction: the number is only consumed if the
    caller commits.
    """
    if not scope:
        raise DocumentSequenceError("scope is required")
    if not sequence_key:
        raise DocumentSequenceError("sequence_key is required")

    allocated = _increment(scope, sequence_key)
    if allocated is not None:
        return allocated

    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(scope=scope, sequence_key=sequence_key, next_number=2))
        return 1
    except IntegrityError:
        allocated = _increment(scope, sequence_key)
        if allocated is None:
            raise DocumentSequenceError(f"Could not allocate {scope} number for {sequence_key}")
        return allocated


def next_daily_number(*, scope: str, prefix: str, on: date, pad: int = 4) -> str:
    """
    Daily document number: "{prefix}-{YYYYMMDD}-{sequence}", restarting at 1 each day.

    >>> next_daily_number(scope="INVOICE", prefix="INV", on=date(2026, 10, 17))  # doctest: +SKIP
    'INV-20261017-0001'
    """
    day_key = on.strftime("%Y%m%d")
    number = allocate_sequence_number(scope=scope, sequence_key=day_key)
    return f"{prefix}-{day_key}-{number:0{pad}d}"
