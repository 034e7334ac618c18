# Overview: Service-layer operations for JSON backup export and restore.

"""
Backup / Restore

Document layout (version 1):
    {
        "version": 1,
        "exportDate": "2026-10-17T08:00:00Z",
        "users": [...], "categories": [...], "products": [...],
        "sales": [...], "saleItems": [...],
        "invoices": [...], "invoiceItems": [...], "invoicePayments": [...]
    }

Rows carry raw column values (cents, ISO dates). Restore modes:
- replace: clear every collection, then insert rows with their ids.
- merge: append rows under new ids and remap foreign keys. Rows whose
  natural key already exists (user email, category name, product barcode,
  receipt number, invoice number) are matched to the existing row instead,
  since those columns are unique.

The whole document is parsed and type-checked before anything is written.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from flask import current_app
from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    Category,
    ImportBatch,
    Invoice,
    InvoiceItem,
    InvoicePayment,
    Product,
    Sale,
    SaleItem,
    SessionToken,
    User,
)
from ..models.catalog import quantity_to_json
from duka.time_utils import parse_iso_date, parse_iso_datetime, to_iso_date, to_utc_z, utcnow


BACKUP_VERSION = 1

MODE_REPLACE = "replace"
MODE_MERGE = "merge"
RESTORE_MODES = (MODE_REPLACE, MODE_MERGE)

# Parent tables first
COLLECTIONS: list[tuple[str, Any]] = [
    ("users", User),
    ("categories", Category),
    ("products", Product),
    ("sales", Sale),
    ("saleItems", SaleItem),
    ("invoices", Invoice),
    ("invoiceItems", InvoiceItem),
    ("invoicePayments", InvoicePayment),
]

# column -> collection whose ids it references
FOREIGN_KEYS: dict[str, dict[str, str]] = {
    "products": {"category_id": "categories", "created_by_user_id": "users"},
    "sales": {"cashier_id": "users"},
    "saleItems": {"sale_id": "sales", "product_id": "products"},
    "invoices": {"created_by_user_id": "users"},
    "invoiceItems": {"invoice_id": "invoices", "product_id": "products"},
    "invoicePayments": {"invoice_id": "invoices", "recorded_by_user_id": "users"},
}

# Natural keys used to match rows during merge
NATURAL_KEYS: dict[str, str] = {
    "users": "email",
    "categories": "name_key",
    "products": "barcode",
    "sales": "receipt_number",
    "invoices": "invoice_number",
}

# child collection -> (parent column, parent collection)
DOCUMENT_PARENTS: dict[str, tuple[str, str]] = {
    "saleItems": ("sale_id", "sales"),
    "invoiceItems": ("invoice_id", "invoices"),
    "invoicePayments": ("invoice_id", "invoices"),
}

# Columns never carried across a restore
DROPPED_COLUMNS: dict[str, set[str]] = {
    "products": {"imported_from_batch_id"},
}


class BackupError(ValueError):
    """Raised when a backup document is malformed or cannot be restored."""
    pass


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def _serialize(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_utc_z(value)
    if isinstance(value, date):
        return to_iso_date(value)
    if isinstance(value, Decimal):
        return quantity_to_json(value)
    return value


def _row_to_dict(obj) -> dict:
    return {col.key: _serialize(getattr(obj, col.key)) for col in obj.__table__.columns}


def export_backup() -> dict:
    document: dict[str, Any] = {}
    for key, model in COLLECTIONS:
        rows = db.session.query(model).order_by(model.id.asc()).all()
        document[key] = [_row_to_dict(r) for r in rows]
    document["exportDate"] = to_utc_z(utcnow())
    document["version"] = BACKUP_VERSION
    return document


# ---------------------------------------------------------------------------
# Restore
# ---------------------------------------------------------------------------

def _coerce(col, value: Any, where: str) -> Any:
    if value is None:
        return None
    try:
        if isinstance(col.type, Boolean):
            if isinstance(value, bool):
                return value
            if isinstance(value, (int, str)) and str(value).strip().lower() in {"1", "0", "true", "false"}:
                return str(value).strip().lower() in {"1", "true"}
            raise ValueError("expected a boolean")
        if isinstance(col.type, Integer):
            if isinstance(value, bool):
                raise ValueError("expected an integer")
            if isinstance(value, float) and not value.is_integer():
                raise ValueError("expected an integer")
            return int(value)
        if isinstance(col.type, Numeric):
            return Decimal(str(value))
        if isinstance(col.type, DateTime):
            return parse_iso_datetime(str(value))
        if isinstance(col.type, Date):
            return parse_iso_date(value)
    except (TypeError, ValueError, InvalidOperation) as exc:
        raise BackupError(f"{where}.{col.key}: invalid value {value!r} ({exc})")
    return value if isinstance(value, str) else str(value)


def _required_columns(model) -> list:
    return [
        col for col in model.__table__.columns
        if not col.nullable and not col.primary_key and col.default is None and col.server_default is None
    ]


def _prepare(document: Any) -> dict[str, list[dict]]:
    """Parse and type-check every row. Raises BackupError; never writes."""
    if not isinstance(document, dict):
        raise BackupError("Backup must be a JSON object")
    version = document.get("version")
    if version != BACKUP_VERSION:
        raise BackupError(f"Unsupported backup version: {version!r}")
    if not any(key in document for key, _ in COLLECTIONS):
        raise BackupError("Backup contains no collections")

    prepared: dict[str, list[dict]] = {}
    for key, model in COLLECTIONS:
        rows = document.get(key, [])
        if not isinstance(rows, list):
            raise BackupError(f"'{key}' must be a list")
        columns = {col.key: col for col in model.__table__.columns}
        dropped = DROPPED_COLUMNS.get(key, set())
        required = _required_columns(model)
        out = []
        for index, row in enumerate(rows):
            where = f"{key}[{index}]"
            if not isinstance(row, dict):
                raise BackupError(f"{where} must be an object")
            values = {
                name: _coerce(columns[name], value, where)
                for name, value in row.items()
                if name in columns and name not in dropped
            }
            if model is Category and not values.get("name_key"):
                values["name_key"] = Category.key_for(values.get("name") or "")
            for col in required:
                if values.get(col.key) in (None, ""):
                    raise BackupError(f"{where}.{col.key} is required")
            out.append(values)
        prepared[key] = out
    return prepared


def _clear_all() -> None:
    # Children first
    for model in (InvoicePayment, InvoiceItem, Invoice, SaleItem, Sale, Product, ImportBatch, Category, SessionToken, User):
        db.session.query(model).delete(synchronize_session=False)
    db.session.flush()
    # Restored rows reuse ids, so nothing stale may stay in the identity map
    db.session.expunge_all()


def _restore_replace(prepared: dict[str, list[dict]]) -> dict[str, int]:
    _clear_all()
    counts = {}
    for key, model in COLLECTIONS:
        for values in prepared[key]:
            db.session.add(model(**values))
        db.session.flush()
        counts[key] = len(prepared[key])
    return counts


def _existing_by_natural_key(key: str, model, value: Any):
    column = NATURAL_KEYS.get(key)
    if not column or value in (None, ""):
        return None
    return db.session.query(model).filter(getattr(model, column) == value).first()


def _restore_merge(prepared: dict[str, list[dict]]) -> dict[str, int]:
    id_maps: dict[str, dict[int, int]] = {key: {} for key, _ in COLLECTIONS}
    matched: dict[str, set[int]] = {key: set() for key, _ in COLLECTIONS}
    counts = {}
    for key, model in COLLECTIONS:
        inserted = 0
        fks = FOREIGN_KEYS.get(key, {})
        for values in prepared[key]:
            values = dict(values)
            old_id = values.pop("id", None)

            skip = False
            for column, target in fks.items():
                old_ref = values.get(column)
                if old_ref is None:
                    continue
                new_ref = id_maps[target].get(old_ref)
                if new_ref is None and not model.__table__.columns[column].nullable:
                    skip = True
                    break
                values[column] = new_ref
            if skip:
                continue

            # Lines and payments of a document that already exists are not re-appended
            parent = DOCUMENT_PARENTS.get(key)
            if parent and values.get(parent[0]) in matched[parent[1]]:
                continue

            column = NATURAL_KEYS.get(key)
            existing = _existing_by_natural_key(key, model, values.get(column)) if column else None
            if existing is not None:
                if old_id is not None:
                    id_maps[key][old_id] = existing.id
                matched[key].add(existing.id)
                continue

            obj = model(**values)
            db.session.add(obj)
            db.session.flush()
            if old_id is not None:
                id_maps[key][old_id] = obj.id
            inserted += 1
        counts[key] = inserted
    return counts


def restore_backup(document: Any, mode: str = MODE_REPLACE) -> dict:
    """
    Restore a backup document in "replace" or "merge" mode.

    Raises BackupError for a malformed document (before any write) or when
    the database rejects the restored rows (after rolling back).
    """
    if mode not in RESTORE_MODES:
        raise BackupError(f"mode must be one of: {', '.join(RESTORE_MODES)}")
    prepared = _prepare(document)

    try:
        if mode == MODE_REPLACE:
            counts = _restore_replace(prepared)
        else:
            counts = _restore_merge(prepared)
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise BackupError(f"Restore rejected by the database: {exc.orig}") from exc

    current_app.logger.info("Restored backup (%s): %s", mode, counts)
    return {"mode": mode, "restored": counts}
