# Overview: Service-layer operations for catalog and sales imports; parses uploads, commits validated records.

from __future__ import annotations

import csv
import io
import json
import re
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable

from flask import current_app

from ..extensions import db
from ..models import Category, ImportBatch, Product, Sale, SaleItem, User
from ..models.imports import BATCH_CANCELLED, BATCH_COMPLETED, BATCH_FAILED, BATCH_RUNNING
from ..money_utils import to_cents
from duka.time_utils import parse_iso_datetime, utcnow
from .category_service import get_or_create_category
from .import_schemas import (
    FIRST_DATA_ROW,
    ImportOptions,
    ProductRecord,
    SourceRow,
    ValidationReport,
    template_rows,
    validate_rows,
)
from .tax_service import VatMode, line_totals, vat_for_subtotal


class CatalogImportError(ValueError):
    """Raised when an upload cannot be read at all (as opposed to per-row errors)."""


SUPPORTED_EXTENSIONS = {"csv", "json", "xlsx", "xlsm", "xltx", "xltm"}

CHUNK_SIZE_DEFAULT = 50

IMPORT_TYPE_PRODUCTS = "products"
IMPORT_TYPE_SALES = "sales"

SALES_COLUMNS = ["Receipt Number", "Date", "Items", "Total Amount", "Payment Method", "Cashier"]

# "Dove Soap Bar (2)" -> ("Dove Soap Bar", "2")
_ITEM_PATTERN = re.compile(r"^(?P<name>.+?)\s*\((?P<qty>\d+)\)$")

_SALE_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%m/%d/%Y, %I:%M:%S %p",
    "%d/%m/%Y, %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
)


@dataclass
class ImportResult:
    batch_id: int | None = None
    success_count: int = 0
    failed_count: int = 0
    cancelled: bool = False
    created_categories: list[str] = field(default_factory=list)
    failures: list[dict] = field(default_factory=list)

    @property
    def catalog_changed(self) -> bool:
        return self.success_count > 0

    @property
    def ok(self) -> bool:
        return self.success_count > 0

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "ok": self.ok,
            "success_count": self.success_count,
            "failed_count": self.failed_count,
            "cancelled": self.cancelled,
            "created_categories": list(self.created_categories),
            "catalog_changed": self.catalog_changed,
            "failures": list(self.failures),
        }


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _read_bytes(stream: Any) -> bytes:
    if isinstance(stream, (bytes, bytearray)):
        return bytes(stream)
    if isinstance(stream, str):
        return stream.encode("utf-8")
    data = stream.read()
    return data.encode("utf-8") if isinstance(data, str) else data


def _clean_rows(rows: Iterable[dict]) -> list[dict]:
    """
    Trim / lower-case header names and drop fully blank rows.

    Every kept row is a SourceRow numbered by its position in the upload,
    so dropping blanks never shifts the row numbers of later errors.
    """
    cleaned = []
    for index, row in enumerate(rows):
        if not isinstance(row, dict):
            raise CatalogImportError("Each row must be an object")
        out = SourceRow(row_number=getattr(row, "row_number", None) or index + FIRST_DATA_ROW)
        for key, value in row.items():
            if key is None:
                continue
            if isinstance(value, str):
                value = value.strip()
            out[str(key).strip().lower()] = value
        if all(v is None or v == "" for v in out.values()):
            continue
        cleaned.append(out)
    return cleaned


def _decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise CatalogImportError("File is not valid UTF-8 text") from exc


def parse_csv_text(text: str) -> list[dict]:
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames or not any((h or "").strip() for h in reader.fieldnames):
        raise CatalogImportError("CSV file has no header row")
    # line_num is the file line the record ends on
    numbered = (SourceRow(row, row_number=reader.line_num) for row in reader)
    try:
        return _clean_rows(numbered)
    except csv.Error as exc:
        raise CatalogImportError(f"Malformed CSV: {exc}") from exc


def _parse_json(data: bytes) -> list[dict]:
    try:
        rows = json.loads(_decode_text(data))
    except json.JSONDecodeError as exc:
        raise CatalogImportError(f"Malformed JSON: {exc.msg}") from exc
    if isinstance(rows, dict):
        rows = rows.get("rows", [])
    if not isinstance(rows, list):
        raise CatalogImportError("JSON upload must be a list of rows or {\"rows\": [...]}")
    return _clean_rows(rows)


def _parse_xlsx(data: bytes) -> list[dict]:
    from openpyxl import load_workbook
    from openpyxl.utils.exceptions import InvalidFileException

    try:
        wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise CatalogImportError("Unreadable Excel workbook") from exc

    try:
        sheet = wb.worksheets[0]
        values = list(sheet.iter_rows(values_only=True))
    finally:
        wb.close()

    if not values or not any(h is not None for h in values[0]):
        raise CatalogImportError("Workbook has no header row")
    headers = [str(h) if h is not None else "" for h in values[0]]
    rows = [
        {headers[i]: row[i] for i in range(min(len(headers), len(row))) if headers[i]}
        for row in values[1:]
    ]
    return _clean_rows(rows)


def parse_upload(filename: str, stream: Any) -> list[dict]:
    """
    Turn an uploaded .csv / .json / .xlsx file into raw row dicts.

    Raises CatalogImportError for anything structurally unreadable.
    """
    ext = (filename or "").rsplit(".", 1)[-1].lower() if "." in (filename or "") else ""
    if ext not in SUPPORTED_EXTENSIONS:
        raise CatalogImportError("Unsupported file format (expected .csv, .json or .xlsx)")

    data = _read_bytes(stream)
    if ext == "csv":
        return parse_csv_text(_decode_text(data))
    if ext == "json":
        return _parse_json(data)
    return _parse_xlsx(data)


def template_csv() -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerows(template_rows())
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Product import
# ---------------------------------------------------------------------------

def current_options() -> ImportOptions:
    return ImportOptions.from_config(current_app.config)


def validate_products(rows: list[dict], options: ImportOptions | None = None) -> ValidationReport:
    """Validation pass against the categories currently in the database."""
    known = [name for (name,) in db.session.query(Category.name).all()]
    return validate_rows(rows, known, options or current_options())


def _product_from_record(record: ProductRecord, category: Category, batch_id: int, user_id: int | None) -> Product:
    return Product(
        name=record.name,
        brand=record.brand,
        category_id=category.id,
        unit_size=record.unit_size,
        barcode=record.barcode,
        buying_price_cents=record.buying_price_cents,
        selling_price_cents=record.selling_price_cents,
        stock=record.stock,
        reorder_level=record.reorder_level,
        supplier=record.supplier,
        imported_from_batch_id=batch_id,
        created_by_user_id=user_id,
    )


def _start_batch(import_type: str, *, source_file_name, total_rows, invalid_rows, created_by_user_id) -> ImportBatch:
    batch = ImportBatch(
        import_type=import_type,
        status=BATCH_RUNNING,
        source_file_name=source_file_name,
        total_rows=total_rows,
        invalid_rows=invalid_rows,
        created_by_user_id=created_by_user_id,
    )
    db.session.add(batch)
    db.session.commit()
    return batch


def _finish_batch(batch: ImportBatch, result: ImportResult, last_row: int) -> None:
    batch.success_count = result.success_count
    batch.failed_count = result.failed_count
    batch.last_processed_row = last_row
    if result.cancelled:
        batch.status = BATCH_CANCELLED
    elif result.success_count > 0:
        batch.status = BATCH_COMPLETED
    else:
        batch.status = BATCH_FAILED
    batch.completed_at = utcnow()
    db.session.commit()


def import_batch(
    records: list[ProductRecord],
    *,
    created_by_user_id: int | None = None,
    source_file_name: str | None = None,
    total_rows: int | None = None,
    invalid_rows: int = 0,
    on_progress: Callable[[int], None] | None = None,
    should_cancel: Callable[[], bool] | None = None,
) -> ImportResult:
    """
    Commit phase: insert validated records one at a time.

    Each record gets its own SAVEPOINT covering category resolution and the
    product insert. A failing record rolls back only its savepoint (so a
    category it would have created is discarded too) and the loop moves on;
    earlier inserts are never undone. Cancellation is checked before each
    record and keeps everything inserted so far.
    """
    records = list(records)
    total = len(records)
    batch = _start_batch(
        IMPORT_TYPE_PRODUCTS,
        source_file_name=source_file_name,
        total_rows=total_rows if total_rows is not None else total,
        invalid_rows=invalid_rows,
        created_by_user_id=created_by_user_id,
    )
    result = ImportResult(batch_id=batch.id)
    last_row = 0

    for index, record in enumerate(records, start=1):
        if should_cancel is not None and should_cancel():
            result.cancelled = True
            break

        nested = db.session.begin_nested()
        try:
            category, created = get_or_create_category(record.category)
            product = _product_from_record(record, category, batch.id, created_by_user_id)
            db.session.add(product)
            db.session.flush()
            nested.commit()
            result.success_count += 1
            if created:
                result.created_categories.append(category.name)
        except Exception as exc:  # noqa: BLE001
            nested.rollback()
            result.failed_count += 1
            result.failures.append({"row": record.row_number, "message": str(exc.__cause__ or exc)})
            current_app.logger.warning(
                "Import batch %s: row %s (%r) failed: %s", batch.id, record.row_number, record.name, exc
            )

        last_row = record.row_number
        if on_progress is not None:
            on_progress(round(index / total * 100))
        if index % CHUNK_SIZE_DEFAULT == 0:
            db.session.commit()

    _finish_batch(batch, result, last_row)
    current_app.logger.info(
        "Import batch %s %s: %s inserted, %s failed, %s new categories",
        batch.id,
        batch.status,
        result.success_count,
        result.failed_count,
        len(result.created_categories),
    )
    return result


def import_products_file(
    filename: str,
    stream: Any,
    *,
    created_by_user_id: int | None = None,
    options: ImportOptions | None = None,
    on_progress: Callable[[int], None] | None = None,
    should_cancel: Callable[[], bool] | None = None,
) -> dict:
    """Parse, validate and commit an upload. Row-level errors are returned, not raised."""
    rows = parse_upload(filename, stream)
    report = validate_products(rows, options)
    result = import_batch(
        report.records,
        created_by_user_id=created_by_user_id,
        source_file_name=filename,
        total_rows=report.total_rows,
        invalid_rows=report.invalid_rows,
        on_progress=on_progress,
        should_cancel=should_cancel,
    )
    errors = [e.to_dict() for e in report.errors]
    errors.extend({"row": f["row"], "field": None, "message": f["message"]} for f in result.failures)
    return {
        **result.to_dict(),
        "total_rows": report.total_rows,
        "invalid_rows": report.invalid_rows,
        "categories_to_create": report.categories_to_create,
        "errors": errors,
    }


# ---------------------------------------------------------------------------
# Sales CSV re-import
# ---------------------------------------------------------------------------

def parse_sale_items(text: str) -> list[tuple[str, int]]:
    """'Dove Soap Bar (2), Nivea Lotion (1)' -> [('Dove Soap Bar', 2), ('Nivea Lotion', 1)]"""
    items = []
    for part in (text or "").split(", "):
        part = part.strip()
        if not part:
            continue
        m = _ITEM_PATTERN.match(part)
        if not m:
            raise CatalogImportError(f"Unreadable item '{part}'")
        items.append((m.group("name").strip(), int(m.group("qty"))))
    return items


def parse_sale_date(value: str | None) -> datetime:
    text = (value or "").strip()
    if not text:
        return utcnow()
    try:
        return parse_iso_datetime(text)
    except ValueError:
        pass
    for fmt in _SALE_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    raise CatalogImportError(f"Unreadable date '{text}'")


def _sale_from_row(row: dict, actor: User | None) -> Sale:
    receipt = (row.get("Receipt Number") or "").strip()
    total_cents = to_cents(row.get("Total Amount") or 0)
    sale = Sale(
        receipt_number=receipt,
        payment_method=(row.get("Payment Method") or "cash").strip().lower(),
        subtotal_cents=total_cents,
        vat_cents=vat_for_subtotal(total_cents, VatMode.INCLUSIVE),
        total_cents=total_cents,
        amount_paid_cents=total_cents,
        change_cents=0,
        cashier_id=actor.id if actor else None,
        cashier_name=(row.get("Cashier") or "").strip() or (actor.full_name if actor else None),
        created_at=parse_sale_date(row.get("Date")),
    )
    for name, qty in parse_sale_items(row.get("Items") or ""):
        product = db.session.query(Product).filter_by(name=name).first()
        price = product.selling_price_cents if product else 0
        line = line_totals(qty, price, VatMode.INCLUSIVE)
        sale.items.append(
            SaleItem(
                product_id=product.id if product else None,
                product_name=name,
                quantity=qty,
                unit_price_cents=price,
                subtotal_cents=line.subtotal_cents,
                vat_cents=line.vat_cents,
                unit_cost_cents=product.buying_price_cents if product else None,
            )
        )
    return sale


def import_sales_csv(stream: Any, *, actor: User | None = None, source_file_name: str | None = None) -> dict:
    """
    Re-import a receipts CSV. Receipts that already exist are skipped;
    items resolve to products by exact name, unknown ones are priced at 0.
    """
    text = _decode_text(_read_bytes(stream))
    reader = csv.DictReader(io.StringIO(text))
    headers = [(h or "").strip() for h in (reader.fieldnames or [])]
    missing = [c for c in ("Receipt Number", "Items", "Total Amount") if c not in headers]
    if missing:
        raise CatalogImportError(f"Sales CSV is missing columns: {', '.join(missing)}")

    rows = []
    for raw in reader:
        row = {(k or "").strip(): (v or "").strip() for k, v in raw.items() if k is not None}
        if any(row.values()):
            rows.append(row)

    batch = _start_batch(
        IMPORT_TYPE_SALES,
        source_file_name=source_file_name,
        total_rows=len(rows),
        invalid_rows=0,
        created_by_user_id=actor.id if actor else None,
    )
    existing = {r for (r,) in db.session.query(Sale.receipt_number).all()}
    result = ImportResult(batch_id=batch.id)
    skipped = 0
    last_row = 0

    for index, row in enumerate(rows, start=2):
        last_row = index
        receipt = row.get("Receipt Number")
        if not receipt or receipt in existing:
            skipped += 1
            continue

        nested = db.session.begin_nested()
        try:
            db.session.add(_sale_from_row(row, actor))
            db.session.flush()
            nested.commit()
            existing.add(receipt)
            result.success_count += 1
        except Exception as exc:  # noqa: BLE001
            nested.rollback()
            result.failed_count += 1
            result.failures.append({"row": index, "message": str(exc)})
            current_app.logger.warning("Sales import row %s (%s) failed: %s", index, receipt, exc)

    _finish_batch(batch, result, last_row)
    current_app.logger.info(
        "Sales import batch %s: %s imported, %s skipped, %s failed",
        batch.id,
        result.success_count,
        skipped,
        result.failed_count,
    )
    return {
        "batch_id": batch.id,
        "imported": result.success_count,
        "skipped": skipped,
        "failed": result.failed_count,
        "failures": result.failures,
    }
