from __future__ import annotations

from ..extensions import db
from duka.time_utils import to_utc_z


class DocumentSequence(db.Model):
    """
    Atomic document sequences.

    scope is the document family ("INVOICE", "RECEIPT"); sequence_key is the
    period the counter restarts on (the calendar day, "20261017").
    Numbers are allocated with an in-place increment, never by counting rows.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("scope", "sequence_key", name="uq_doc_sequences_scope_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(32), nullable=False, index=True)
    sequence_key = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "scope": self.scope,
            "sequence_key": self.sequence_key,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
