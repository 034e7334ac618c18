from __future__ import annotations

from ..extensions import db
from duka.time_utils import to_utc_z

BATCH_RUNNING = "RUNNING"
BATCH_COMPLETED = "COMPLETED"
BATCH_FAILED = "FAILED"
BATCH_CANCELLED = "CANCELLED"


class ImportBatch(db.Model):
    """
    One run of the product (or sales) import.

    LIFECYCLE:
    1. RUNNING: commit phase in progress
    2. COMPLETED: at least one record inserted
    3. FAILED: nothing inserted (empty file, every record rejected)
    4. CANCELLED: stopped by the caller; inserted records are kept

    Validation errors are not stored here: they are returned to the caller,
    which shows them against the user's CSV line numbers.
    """
    __tablename__ = "import_batches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    import_type = db.Column(db.String(32), nullable=False, index=True)  # products, sales
    status = db.Column(db.String(16), nullable=False, default=BATCH_RUNNING, index=True)

    source_file_name = db.Column(db.String(255), nullable=True)

    total_rows = db.Column(db.Integer, nullable=False, default=0)
    invalid_rows = db.Column(db.Integer, nullable=False, default=0)
    success_count = db.Column(db.Integer, nullable=False, default=0)
    failed_count = db.Column(db.Integer, nullable=False, default=0)
    last_processed_row = db.Column(db.Integer, nullable=False, default=0)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "import_type": self.import_type,
            "status": self.status,
            "source_file_name": self.source_file_name,
            "total_rows": self.total_rows,
            "invalid_rows": self.invalid_rows,
            "success_count": self.success_count,
            "failed_count": self.failed_count,
            "last_processed_row": self.last_processed_row,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
        }
