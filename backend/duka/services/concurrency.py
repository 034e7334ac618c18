# Overview: Row locking for stock decrements and invoice transitions.

from __future__ import annotations

from typing import Iterable

from ..extensions import db


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE on the given query.

    SQLite ignores the clause (its writer lock already serializes commits);
    PostgreSQL / MySQL hold the rows until the caller's transaction ends.
    """
    return query.with_for_update()


def lock_by_ids(model, ids: Iterable[int]) -> dict:
    """Lock rows of model by primary key, returned as {id: row}; missing ids are absent."""
    ids = list(ids)
    if not ids:
        return {}
    rows = lock_for_update(db.session.query(model).filter(model.id.in_(ids)).order_by(model.id)).all()
    return {row.id: row for row in rows}
